"""Extrema of a series inside the visible time window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from models.records import Sample


@dataclass(frozen=True)
class WindowExtrema:
    """Lowest and highest sample within a window."""

    minimum: Sample
    maximum: Sample
    sample_count: int


class WindowAggregator:
    """Pure aggregation component, recomputed in full on every viewport change."""

    def extrema(
        self, series: Iterable[Sample], start: datetime, end: datetime
    ) -> Optional[WindowExtrema]:
        minimum: Sample | None = None
        maximum: Sample | None = None
        count = 0

        for sample in series:
            if sample.timestamp < start or sample.timestamp > end:
                continue
            count += 1

            # Strict comparisons keep the first occurrence on ties.
            if minimum is None or sample.value < minimum.value:
                minimum = sample
            if maximum is None or sample.value > maximum.value:
                maximum = sample

        if minimum is None or maximum is None:
            return None
        return WindowExtrema(minimum=minimum, maximum=maximum, sample_count=count)
