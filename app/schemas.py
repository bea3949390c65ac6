"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from models.ranges import RangeKey
from models.records import Sample, Series
from services.aggregator import WindowExtrema
from services.forecast import ForecastIcon, ForecastResult, PressureLevel, PressureTrend


class ForecastStatus(str, Enum):
    """Whether a nowcast could be produced."""

    ok = "ok"
    insufficient_data = "insufficient_data"


class Point(BaseModel):
    timestamp: datetime
    value: float

    @classmethod
    def from_sample(cls, sample: Sample) -> "Point":
        return cls(timestamp=sample.timestamp, value=sample.value)


class RangeInfo(BaseModel):
    """One horizon of the range chain."""

    range_key: RangeKey
    duration_seconds: int = Field(..., gt=0)
    parent: Optional[RangeKey] = None
    cached: bool = False
    fetched_at: Optional[datetime] = None


class SeriesResponse(BaseModel):
    range_key: RangeKey
    metric: str
    point_count: int = Field(..., ge=0)
    points: List[Point] = Field(default_factory=list)

    @classmethod
    def build(cls, range_key: RangeKey, metric: str, series: Series) -> "SeriesResponse":
        return cls(
            range_key=range_key,
            metric=metric,
            point_count=len(series),
            points=[Point.from_sample(sample) for sample in series],
        )


class Extrema(BaseModel):
    """Lowest and highest point inside a window."""

    min: Point
    max: Point
    sample_count: int = Field(..., ge=1)

    @classmethod
    def from_window(cls, window: Optional[WindowExtrema]) -> Optional["Extrema"]:
        if window is None:
            return None
        return cls(
            min=Point.from_sample(window.minimum),
            max=Point.from_sample(window.maximum),
            sample_count=window.sample_count,
        )


class ExtremaResponse(BaseModel):
    range_key: RangeKey
    metric: str
    start: datetime
    end: datetime
    extrema: Optional[Extrema] = None


class ViewportRequest(BaseModel):
    range_key: RangeKey = RangeKey.day
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "ViewportRequest":
        if self.end < self.start:
            raise ValueError("Viewport end must not precede its start.")
        return self


class ViewportResponse(BaseModel):
    generation: int = Field(..., ge=1)
    range_key: RangeKey
    start: datetime
    end: datetime
    extrema: Dict[str, Optional[Extrema]] = Field(default_factory=dict)


class Forecast(BaseModel):
    icon: ForecastIcon
    summary: str
    detail: str
    ice_risk: bool
    trend: PressureTrend
    pressure_level: PressureLevel
    instability_index: float

    @classmethod
    def from_result(cls, result: ForecastResult) -> "Forecast":
        return cls(
            icon=result.icon,
            summary=result.summary,
            detail=result.detail,
            ice_risk=result.ice_risk,
            trend=result.trend,
            pressure_level=result.pressure_level,
            instability_index=round(result.instability_index, 3),
        )


class ForecastResponse(BaseModel):
    status: ForecastStatus
    forecast: Optional[Forecast] = None

    @classmethod
    def from_result(cls, result: Optional[ForecastResult]) -> "ForecastResponse":
        if result is None:
            return cls(status=ForecastStatus.insufficient_data)
        return cls(status=ForecastStatus.ok, forecast=Forecast.from_result(result))


class DashboardResponse(BaseModel):
    """Everything the renderer needs for one horizon."""

    generation: int = Field(..., ge=1)
    range_key: RangeKey
    computed_at: datetime
    series: Dict[str, List[Point]] = Field(default_factory=dict)
    extrema: Dict[str, Optional[Extrema]] = Field(default_factory=dict)
    forecast: ForecastResponse


def duration_seconds(delta: timedelta) -> int:
    return int(delta.total_seconds())
