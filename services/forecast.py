"""Pressure-tendency nowcast.

Builds a small feature vector from the last day of pressure history and the
outdoor humidity/temperature series, then walks a fixed decision table. There
is no fitted model; every threshold lives in :class:`ForecastThresholds`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Optional, Sequence, Tuple

from models.records import Sample, Series
from services.pipeline_config import ForecastThresholds

logger = logging.getLogger(__name__)


class PressureLevel(str, Enum):
    high = "high"
    normal = "normal"
    low = "low"
    unknown = "unknown"


class PressureTrend(str, Enum):
    strong_up = "strong_up"
    up = "up"
    stable = "stable"
    down = "down"
    strong_down = "strong_down"
    unknown = "unknown"


class ForecastIcon(str, Enum):
    clear = "clear"
    partly = "partly"
    cloudy = "cloudy"
    rain = "rain"
    storm = "storm"
    snow = "snow"
    ice = "ice"
    frost = "frost"
    unknown = "unknown"


_RISING = {PressureTrend.strong_up, PressureTrend.up}
_FALLING = {PressureTrend.strong_down, PressureTrend.down}
_WET = {ForecastIcon.rain, ForecastIcon.storm}
_DRY = {ForecastIcon.clear, ForecastIcon.partly, ForecastIcon.cloudy}


@dataclass(frozen=True)
class FeatureVector:
    p_now: Optional[float]
    dp1h: Optional[float]
    dp3h: Optional[float]
    dp6h: Optional[float]
    humidity: Optional[float]
    temperature: Optional[float]
    du3h: Optional[float]
    du6h: Optional[float]
    hour_sin: float
    hour_cos: float
    doy_sin: float
    doy_cos: float
    sample_count: int


@dataclass(frozen=True)
class ForecastResult:
    icon: ForecastIcon
    summary: str
    detail: str
    ice_risk: bool
    trend: PressureTrend
    instability_index: float
    pressure_level: PressureLevel


def _usable(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


def last_known(series: Sequence[Sample]) -> Optional[float]:
    """Value of the newest sample that carries a finite reading."""
    for sample in reversed(series):
        if _usable(sample.value):
            return sample.value
    return None


def delta_over_window(series: Sequence[Sample], window_hours: float) -> Optional[float]:
    """Change between the first and last reading of the trailing window."""
    if not series:
        return None
    cutoff = series[-1].timestamp - timedelta(hours=window_hours)
    first_val: Optional[float] = None
    last_val: Optional[float] = None
    for sample in series:
        if sample.timestamp < cutoff or not _usable(sample.value):
            continue
        if first_val is None:
            first_val = sample.value
        last_val = sample.value
    if first_val is None or last_val is None:
        return None
    return last_val - first_val


def day_of_year(moment: datetime) -> int:
    # Whole days since 1 January, 1-indexed. Leap years are not corrected for.
    year_start = moment.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return (moment - year_start).days + 1


def cyclical_features(moment: datetime) -> Tuple[float, float, float, float]:
    hour_angle = 2 * math.pi * moment.hour / 24
    doy_angle = 2 * math.pi * day_of_year(moment) / 365
    return (
        math.sin(hour_angle),
        math.cos(hour_angle),
        math.sin(doy_angle),
        math.cos(doy_angle),
    )


class FeatureBuilder:
    def __init__(self, thresholds: ForecastThresholds, timezone: Optional[tzinfo] = None) -> None:
        self.thresholds = thresholds
        self.timezone = timezone

    def build(
        self,
        pressure: Series,
        humidity: Series = (),
        temperature: Series = (),
    ) -> Optional[FeatureVector]:
        """Return ``None`` when the last day holds too few pressure samples."""
        if not pressure:
            return None

        latest = pressure[-1].timestamp
        cutoff = latest - timedelta(hours=self.thresholds.history_hours)
        recent = tuple(sample for sample in pressure if sample.timestamp >= cutoff)
        if len(recent) < self.thresholds.min_pressure_samples:
            return None

        local = latest.astimezone(self.timezone) if self.timezone else latest
        hour_sin, hour_cos, doy_sin, doy_cos = cyclical_features(local)

        return FeatureVector(
            p_now=last_known(recent),
            dp1h=delta_over_window(recent, 1),
            dp3h=delta_over_window(recent, 3),
            dp6h=delta_over_window(recent, 6),
            humidity=last_known(humidity),
            temperature=last_known(temperature),
            du3h=delta_over_window(humidity, 3),
            du6h=delta_over_window(humidity, 6),
            hour_sin=hour_sin,
            hour_cos=hour_cos,
            doy_sin=doy_sin,
            doy_cos=doy_cos,
            sample_count=len(recent),
        )


def pressure_level(p_now: Optional[float], thresholds: ForecastThresholds) -> PressureLevel:
    if p_now is None:
        return PressureLevel.unknown
    if p_now >= thresholds.high_pressure:
        return PressureLevel.high
    if p_now <= thresholds.low_pressure:
        return PressureLevel.low
    return PressureLevel.normal


def pressure_trend(dp3h: Optional[float], thresholds: ForecastThresholds) -> PressureTrend:
    if dp3h is None:
        return PressureTrend.unknown
    if dp3h <= -thresholds.strong_trend:
        return PressureTrend.strong_down
    if dp3h <= -thresholds.moderate_trend:
        return PressureTrend.down
    if dp3h >= thresholds.strong_trend:
        return PressureTrend.strong_up
    if dp3h >= thresholds.moderate_trend:
        return PressureTrend.up
    return PressureTrend.stable


def instability_index(features: FeatureVector) -> float:
    total = 0.0
    for weight, delta in ((1.0, features.dp3h), (0.5, features.dp6h), (0.3, features.dp1h)):
        if delta is not None:
            total += weight * abs(delta)
    if features.humidity is not None:
        total += 0.02 * max(0.0, features.humidity - 70)
    if features.du3h is not None and features.du3h > 0:
        total += 0.3 * (features.du3h / 10)
    if features.du6h is not None and features.du6h > 0:
        total += 0.5 * (features.du6h / 10)
    # Mild seasonal modulation.
    return total * (1 + 0.1 * features.doy_sin)


class ForecastEngine:
    def __init__(
        self,
        thresholds: Optional[ForecastThresholds] = None,
        timezone: Optional[tzinfo] = None,
    ) -> None:
        self.thresholds = thresholds or ForecastThresholds()
        self.builder = FeatureBuilder(self.thresholds, timezone=timezone)

    def forecast(
        self,
        pressure: Series,
        humidity: Series = (),
        temperature: Series = (),
    ) -> Optional[ForecastResult]:
        features = self.builder.build(pressure, humidity, temperature)
        if features is None:
            logger.debug(
                "Not enough pressure history for a nowcast",
                extra={"sample_count": len(pressure), "reason": "insufficient data"},
            )
            return None
        return self.classify(features)

    def classify(self, features: FeatureVector) -> ForecastResult:
        th = self.thresholds
        level = pressure_level(features.p_now, th)
        trend = pressure_trend(features.dp3h, th)
        instability = instability_index(features)

        icon, summary, detail = self._primary(features, level, trend, instability)

        temperature = features.temperature
        humidity = features.humidity
        ice_risk = (
            temperature is not None
            and humidity is not None
            and th.ice_min_temperature <= temperature <= th.ice_max_temperature
            and humidity >= th.ice_humidity
        )

        if temperature is not None and temperature <= th.snow_temperature and icon in _WET:
            if ice_risk:
                icon, summary = ForecastIcon.ice, "Freezing rain or glaze ice"
                detail = f"{detail} Temperature near freezing with saturated air: ice likely."
            else:
                icon, summary = ForecastIcon.snow, "Snow likely"
                detail = f"{detail} Temperature at or below {th.snow_temperature:g} °C: precipitation as snow."
        elif ice_risk and icon in _DRY:
            icon, summary = ForecastIcon.frost, "Frost risk"
            detail = f"{detail} Humid air near freezing: watch for frost and black ice."

        return ForecastResult(
            icon=icon,
            summary=summary,
            detail=detail,
            ice_risk=ice_risk,
            trend=trend,
            instability_index=instability,
            pressure_level=level,
        )

    def _primary(
        self,
        features: FeatureVector,
        level: PressureLevel,
        trend: PressureTrend,
        instability: float,
    ) -> Tuple[ForecastIcon, str, str]:
        th = self.thresholds

        if features.p_now is None:
            if features.humidity is not None and features.humidity > th.rain_humidity:
                return (
                    ForecastIcon.rain,
                    "Possible rain",
                    "No pressure data; very humid air suggests rain.",
                )
            return (
                ForecastIcon.unknown,
                "Uncertain",
                "Missing pressure data.",
            )

        if trend in _RISING:
            if level is PressureLevel.high:
                return ForecastIcon.clear, "Clearing", "Rising high pressure: weather improving."
            return ForecastIcon.partly, "Partial clearing", "Pressure rising: gradual improvement."

        if trend in _FALLING:
            if instability > th.storm_instability:
                return ForecastIcon.storm, "Storm possible", "Pressure falling fast in unstable air."
            return ForecastIcon.rain, "Rain likely", "Pressure falling: weather worsening."

        # Stable, or no 3-hour delta to judge by.
        if level is PressureLevel.high:
            return ForecastIcon.clear, "Fair weather", "High and steady pressure: settled conditions."
        if level is PressureLevel.low:
            if instability > th.unstable_instability:
                return ForecastIcon.rain, "Scattered showers", "Low pressure with unstable air."
            return ForecastIcon.cloudy, "Overcast", "Low steady pressure: cloudy and variable."
        if instability > th.unstable_instability:
            return ForecastIcon.rain, "Showers possible", "Moderate instability."
        return ForecastIcon.partly, "Mostly stable", "Steady pressure: little change expected."
