"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Mapping, Tuple

if TYPE_CHECKING:
    from models.ranges import RangeKey


@dataclass(frozen=True, slots=True)
class Sample:
    """A single cleaned reading of one metric."""

    timestamp: datetime
    value: float


# Ordered by timestamp; every pipeline stage returns a new tuple.
Series = Tuple[Sample, ...]

# One row of the telemetry feed as delivered by the collaborator.
TelemetryRow = Mapping[str, Any]


@dataclass(frozen=True)
class CacheEntry:
    """Cleaned series for every metric of one retrieval, held for the session."""

    range_key: RangeKey
    series: Mapping[str, Series]
    fetched_at: datetime

    @classmethod
    def create(
        cls, range_key: RangeKey, series: Dict[str, Series], fetched_at: datetime
    ) -> CacheEntry:
        return cls(
            range_key=range_key,
            series=MappingProxyType(dict(series)),
            fetched_at=fetched_at,
        )

    def sample_count(self) -> int:
        return sum(len(values) for values in self.series.values())
