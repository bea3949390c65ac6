from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from models.records import Sample
from services.forecast import (
    FeatureBuilder,
    FeatureVector,
    ForecastEngine,
    ForecastIcon,
    PressureLevel,
    PressureTrend,
    day_of_year,
    delta_over_window,
    instability_index,
    last_known,
    pressure_level,
    pressure_trend,
)
from services.pipeline_config import ForecastThresholds

THRESHOLDS = ForecastThresholds()
END = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _features(**overrides) -> FeatureVector:
    base = FeatureVector(
        p_now=None,
        dp1h=None,
        dp3h=None,
        dp6h=None,
        humidity=None,
        temperature=None,
        du3h=None,
        du6h=None,
        hour_sin=0.0,
        hour_cos=1.0,
        doy_sin=0.0,
        doy_cos=1.0,
        sample_count=10,
    )
    return replace(base, **overrides)


def _series(values, step_minutes: int = 10, end: datetime = END):
    count = len(values)
    return tuple(
        Sample(timestamp=end - timedelta(minutes=step_minutes * (count - 1 - index)), value=value)
        for index, value in enumerate(values)
    )


@pytest.mark.parametrize(
    ("dp3h", "expected"),
    [
        (-5, PressureTrend.strong_down),
        (-4, PressureTrend.strong_down),
        (-3, PressureTrend.down),
        (-2, PressureTrend.down),
        (0, PressureTrend.stable),
        (2, PressureTrend.up),
        (3, PressureTrend.up),
        (4, PressureTrend.strong_up),
        (5, PressureTrend.strong_up),
        (None, PressureTrend.unknown),
    ],
)
def test_pressure_trend_boundaries(dp3h, expected) -> None:
    assert pressure_trend(dp3h, THRESHOLDS) is expected


@pytest.mark.parametrize(
    ("p_now", "expected"),
    [
        (1020.0, PressureLevel.high),
        (1030.0, PressureLevel.high),
        (1002.0, PressureLevel.low),
        (990.0, PressureLevel.low),
        (1013.0, PressureLevel.normal),
        (None, PressureLevel.unknown),
    ],
)
def test_pressure_level_boundaries(p_now, expected) -> None:
    assert pressure_level(p_now, THRESHOLDS) is expected


def test_instability_without_inputs_is_exactly_zero() -> None:
    assert instability_index(_features()) == 0.0
    assert instability_index(_features(doy_sin=0.8)) == 0.0


def test_instability_weights_and_seasonal_modulation() -> None:
    features = _features(dp3h=-3.0, dp6h=2.0, dp1h=-1.0, humidity=90.0, du3h=10.0, du6h=-5.0)

    assert instability_index(features) == pytest.approx(5.0)
    assert instability_index(replace(features, doy_sin=1.0)) == pytest.approx(5.5)


def test_last_known_skips_missing_readings() -> None:
    series = _series([1010.0, 1011.0, math.nan])

    assert last_known(series) == 1011.0
    assert last_known(()) is None


def test_delta_over_window_uses_trailing_window() -> None:
    series = _series([1000.0, 1005.0, 1006.0, 1008.0], step_minutes=60)

    assert delta_over_window(series, 1) == pytest.approx(2.0)
    assert delta_over_window(series, 3) == pytest.approx(8.0)
    assert delta_over_window(series[:1], 3) == 0.0
    assert delta_over_window((), 3) is None


def test_day_of_year_is_one_indexed() -> None:
    assert day_of_year(datetime(2023, 1, 1, 23, 0)) == 1
    assert day_of_year(datetime(2023, 12, 31)) == 365
    assert day_of_year(datetime(2024, 12, 31)) == 366


def test_feature_builder_requires_three_recent_samples() -> None:
    builder = FeatureBuilder(THRESHOLDS)
    stale = (
        Sample(timestamp=END - timedelta(hours=30), value=1010.0),
        Sample(timestamp=END - timedelta(hours=29), value=1010.0),
    )

    assert builder.build(()) is None
    assert builder.build(_series([1010.0, 1011.0])) is None
    assert builder.build(stale + _series([1010.0, 1011.0])) is None

    features = builder.build(stale + _series([1010.0, 1011.0, 1012.0]))
    assert features is not None
    assert features.sample_count == 3
    assert features.p_now == 1012.0


def test_feature_builder_uses_display_timezone_for_hour() -> None:
    pressure = _series([1013.0] * 4, end=datetime(2024, 1, 15, 5, 0, tzinfo=timezone.utc))

    utc_features = FeatureBuilder(THRESHOLDS).build(pressure)
    berlin_features = FeatureBuilder(THRESHOLDS, timezone=ZoneInfo("Europe/Berlin")).build(pressure)

    assert utc_features is not None and berlin_features is not None
    assert utc_features.hour_sin == pytest.approx(math.sin(2 * math.pi * 5 / 24))
    assert berlin_features.hour_sin == pytest.approx(1.0)
    assert utc_features.doy_sin == pytest.approx(math.sin(2 * math.pi * 15 / 365))


def test_forecast_insufficient_data_returns_none() -> None:
    assert ForecastEngine().forecast(_series([1013.0, 1013.0])) is None


def test_rising_high_pressure_is_clear() -> None:
    # Flat for an hour, then +5 hPa over the last three hours up to 1022.
    values = [1017.0] * 6 + [1017.0 + 5 * step / 18 for step in range(19)]
    pressure = _series(values)
    humidity = _series([60.0] * len(values))
    temperature = _series([15.0] * len(values))

    result = ForecastEngine().forecast(pressure, humidity, temperature)

    assert result is not None
    assert result.pressure_level is PressureLevel.high
    assert result.trend is PressureTrend.strong_up
    assert result.icon is ForecastIcon.clear
    assert result.ice_risk is False


def test_rain_near_freezing_becomes_ice() -> None:
    engine = ForecastEngine()
    features = _features(p_now=1010.0, dp3h=-3.0, humidity=85.0, temperature=0.0)

    result = engine.classify(features)

    assert result.trend is PressureTrend.down
    assert result.icon is ForecastIcon.ice
    assert result.ice_risk is True


def test_rain_below_freezing_without_ice_risk_becomes_snow() -> None:
    result = ForecastEngine().classify(
        _features(p_now=1010.0, dp3h=-3.0, humidity=70.0, temperature=-6.0)
    )

    assert result.icon is ForecastIcon.snow
    assert result.ice_risk is False


def test_dry_icon_with_ice_risk_becomes_frost() -> None:
    result = ForecastEngine().classify(
        _features(p_now=1025.0, dp3h=0.5, humidity=90.0, temperature=-1.0)
    )

    assert result.icon is ForecastIcon.frost
    assert result.ice_risk is True


def test_fast_fall_in_unstable_air_is_storm() -> None:
    result = ForecastEngine().classify(_features(p_now=1005.0, dp3h=-5.0, dp6h=-6.0))

    assert result.trend is PressureTrend.strong_down
    assert result.instability_index == pytest.approx(8.0)
    assert result.icon is ForecastIcon.storm


@pytest.mark.parametrize(
    ("overrides", "icon"),
    [
        ({"p_now": 1025.0, "dp3h": 0.0}, ForecastIcon.clear),
        ({"p_now": 1000.0, "dp3h": 0.0}, ForecastIcon.cloudy),
        ({"p_now": 1000.0, "dp3h": 0.0, "dp6h": 12.0}, ForecastIcon.rain),
        ({"p_now": 1012.0, "dp3h": 1.0}, ForecastIcon.partly),
        ({"p_now": 1012.0, "dp3h": 1.0, "dp6h": 10.0, "dp1h": 1.0}, ForecastIcon.rain),
        ({"p_now": 1012.0, "dp3h": 2.5}, ForecastIcon.partly),
        ({"p_now": 1012.0, "dp3h": -2.5}, ForecastIcon.rain),
        ({"p_now": 1012.0}, ForecastIcon.partly),
    ],
)
def test_primary_decision_table(overrides, icon) -> None:
    assert ForecastEngine().classify(_features(**overrides)).icon is icon


def test_missing_pressure_falls_back_to_humidity() -> None:
    engine = ForecastEngine()

    assert engine.classify(_features(humidity=85.0)).icon is ForecastIcon.rain
    assert engine.classify(_features(humidity=60.0)).icon is ForecastIcon.unknown
    assert engine.classify(_features()).icon is ForecastIcon.unknown


def test_classification_is_deterministic() -> None:
    engine = ForecastEngine()
    features = _features(p_now=1008.0, dp3h=-2.0, dp6h=-3.0, humidity=88.0, du3h=6.0)

    assert engine.classify(features) == engine.classify(features)
