"""Static configuration of the cleaning pipeline and the nowcast classifier."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Dict, Mapping, Optional

from models.ranges import RangeKey
from settings import get_settings


@dataclass(frozen=True)
class MetricLimits:
    """Closed interval of physically plausible values."""

    minimum: float
    maximum: float


@dataclass(frozen=True)
class MetricSpec:
    """Where a metric lives in the feed and how it is cleaned."""

    name: str
    field_index: int
    limits: MetricLimits
    spike_delta: float

    @property
    def field_name(self) -> str:
        return f"field{self.field_index}"


@dataclass(frozen=True)
class ForecastThresholds:
    high_pressure: float = 1020.0
    low_pressure: float = 1002.0
    strong_trend: float = 4.0
    moderate_trend: float = 2.0
    storm_instability: float = 6.0
    unstable_instability: float = 5.0
    rain_humidity: float = 80.0
    ice_min_temperature: float = -3.0
    ice_max_temperature: float = 1.0
    ice_humidity: float = 80.0
    snow_temperature: float = 1.0
    history_hours: float = 24.0
    min_pressure_samples: int = 3


PRESSURE = "pressure"
OUTDOOR_TEMPERATURE = "outdoor_temperature"
OUTDOOR_HUMIDITY = "outdoor_humidity"
INDOOR_TEMPERATURE = "indoor_temperature"
INDOOR_HUMIDITY = "indoor_humidity"

DEFAULT_METRICS: Dict[str, MetricSpec] = {
    INDOOR_TEMPERATURE: MetricSpec(INDOOR_TEMPERATURE, 1, MetricLimits(-40.0, 60.0), 5.0),
    INDOOR_HUMIDITY: MetricSpec(INDOOR_HUMIDITY, 2, MetricLimits(0.0, 100.0), 10.0),
    PRESSURE: MetricSpec(PRESSURE, 3, MetricLimits(900.0, 1100.0), 4.0),
    OUTDOOR_TEMPERATURE: MetricSpec(OUTDOOR_TEMPERATURE, 4, MetricLimits(-50.0, 60.0), 5.0),
    OUTDOOR_HUMIDITY: MetricSpec(OUTDOOR_HUMIDITY, 5, MetricLimits(0.0, 100.0), 10.0),
}

# Samples requested per retrieval; 8000 is the most the feed will return.
DEFAULT_STEP_TABLE: Dict[RangeKey, int] = {
    RangeKey.hour: 100,
    RangeKey.three_hours: 250,
    RangeKey.six_hours: 500,
    RangeKey.twelve_hours: 1000,
    RangeKey.day: 2000,
    RangeKey.week: 4000,
    RangeKey.month: 8000,
    RangeKey.quarter: 8000,
    RangeKey.year: 8000,
    RangeKey.two_years: 8000,
}


@dataclass(frozen=True)
class PipelineConfig:
    metrics: Mapping[str, MetricSpec] = field(default_factory=lambda: dict(DEFAULT_METRICS))
    step_table: Mapping[RangeKey, int] = field(default_factory=lambda: dict(DEFAULT_STEP_TABLE))
    thresholds: ForecastThresholds = field(default_factory=ForecastThresholds)

    def metric(self, name: str) -> MetricSpec:
        try:
            return self.metrics[name]
        except KeyError:
            raise KeyError(f"Unknown metric {name!r}.") from None

    def samples_for(self, key: RangeKey) -> int:
        return self.step_table[key]

    def with_field_map(self, field_map: Optional[Mapping[str, int]]) -> "PipelineConfig":
        """Return a copy whose metrics read from the overridden field indexes."""
        if not field_map:
            return self
        metrics = {
            name: replace(spec, field_index=field_map.get(name, spec.field_index))
            for name, spec in self.metrics.items()
        }
        return replace(self, metrics=metrics)


@lru_cache
def get_pipeline_config() -> PipelineConfig:
    return PipelineConfig().with_field_map(get_settings().field_map)
