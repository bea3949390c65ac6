"""Greedy bounded-delta outlier rejection."""

from __future__ import annotations

import logging

from models.records import Series

logger = logging.getLogger(__name__)


class SpikeFilter:
    """Drops samples that jump more than ``delta`` from the last kept sample.

    The scan never backtracks. A genuine step change larger than ``delta``
    therefore rejects every following sample until one happens to land within
    ``delta`` of the stale kept value again.
    """

    def filter(self, series: Series, delta: float, metric: str | None = None) -> Series:
        if len(series) < 2:
            return series

        kept = [series[0]]
        for sample in series[1:]:
            if abs(sample.value - kept[-1].value) <= delta:
                kept.append(sample)

        dropped = len(series) - len(kept)
        if dropped:
            logger.info(
                "Spike filter dropped samples",
                extra={"metric": metric, "dropped": dropped, "sample_count": len(kept)},
            )
        return tuple(kept)
