from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Dict, List, Mapping, Optional

from models.ranges import RangeKey
from models.records import CacheEntry, Series, TelemetryRow
from services.errors import FetchError, PipelineError
from services.pipeline_config import PipelineConfig, get_pipeline_config
from services.spike_filter import SpikeFilter
from services.validator import Validator
from settings import get_settings
from telemetry.source import TelemetrySource, build_default_source

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RangeCache:
    """Session cache of cleaned series, one entry per horizon.

    At most one retrieval per horizon is in flight; concurrent callers await
    the same task. Entries are never refreshed in place, only dropped together
    by :meth:`reload`.
    """

    def __init__(
        self,
        source: TelemetrySource,
        config: PipelineConfig,
        validator: Optional[Validator] = None,
        spike_filter: Optional[SpikeFilter] = None,
        fetch_timeout: Optional[float] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.source = source
        self.config = config
        self.validator = validator or Validator()
        self.spike_filter = spike_filter or SpikeFilter()
        self.fetch_timeout = fetch_timeout
        self._clock = clock
        self._entries: Dict[RangeKey, CacheEntry] = {}
        self._inflight: Dict[RangeKey, asyncio.Task[CacheEntry]] = {}
        self._superseded: Dict[RangeKey, asyncio.Task[CacheEntry]] = {}
        self._epoch = 0

    def get_entry(self, key: RangeKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def is_cached(self, key: RangeKey) -> bool:
        return key in self._entries

    def is_loading(self, key: RangeKey) -> bool:
        return key in self._inflight

    def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    def now(self) -> datetime:
        return self._clock()

    async def load_range(self, key: RangeKey) -> CacheEntry:
        """Return the entry for ``key``, retrieving it at most once."""
        entry = self._entries.get(key)
        if entry is not None:
            return entry

        task = self._inflight.get(key)
        if task is None:
            previous = self._superseded.get(key)
            task = asyncio.ensure_future(self._retrieve(key, self._epoch, previous))
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._clear_inflight(k, done))
        # A cancelled caller must not cancel the retrieval other callers share.
        return await asyncio.shield(task)

    async def get_data_for_range(
        self, key: RangeKey, now: Optional[datetime] = None
    ) -> Mapping[str, Series]:
        """Serve ``key`` from its own entry or by slicing the nearest cached ancestor."""
        entry = self._entries.get(key)
        if entry is not None:
            return entry.series

        parent = key.parent
        if parent is None:
            return (await self.load_range(key)).series

        now = now or self._clock()
        parent_series = await self.get_data_for_range(parent, now=now)
        cutoff = now - key.duration
        return {
            metric: tuple(sample for sample in values if sample.timestamp >= cutoff)
            for metric, values in parent_series.items()
        }

    def reload(self) -> None:
        """Discard every entry; retrievals already in flight will not be stored."""
        self._epoch += 1
        self._entries.clear()
        self._superseded.update(self._inflight)
        self._inflight.clear()
        logger.info("Range cache cleared", extra={"reason": "manual reload"})

    def _clear_inflight(self, key: RangeKey, task: asyncio.Task[CacheEntry]) -> None:
        if self._inflight.get(key) is task:
            self._inflight.pop(key, None)
        if self._superseded.get(key) is task:
            self._superseded.pop(key, None)
        if not task.cancelled():
            # Marks the exception as retrieved when every caller went away.
            task.exception()

    async def _retrieve(
        self,
        key: RangeKey,
        epoch: int,
        previous: Optional[asyncio.Task[CacheEntry]] = None,
    ) -> CacheEntry:
        if previous is not None:
            # A retrieval started before a reload still holds the feed for this key.
            await asyncio.wait({previous})
        requested = self.config.samples_for(key)
        start_time = time.perf_counter()
        try:
            rows = await asyncio.wait_for(
                self.source.fetch_rows(requested), timeout=self.fetch_timeout
            )
            series = self._clean(rows)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Telemetry retrieval timed out",
                extra={"range_key": key.value, "requested": requested},
            )
            raise FetchError(
                f"Telemetry retrieval for {key.value} timed out after {self.fetch_timeout}s.",
                range_key=key.value,
            ) from exc
        except PipelineError as exc:
            exc.range_key = exc.range_key or key.value
            logger.warning(
                "Telemetry retrieval failed",
                extra={"range_key": key.value, "requested": requested, "reason": str(exc)},
            )
            raise

        entry = CacheEntry.create(key, series, fetched_at=self._clock())
        if epoch == self._epoch:
            self._entries[key] = entry
        logger.info(
            "Loaded range",
            extra={
                "range_key": key.value,
                "requested": requested,
                "row_count": len(rows),
                "sample_count": entry.sample_count(),
                "elapsed_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return entry

    def _clean(self, rows: List[TelemetryRow]) -> Dict[str, Series]:
        cleaned: Dict[str, Series] = {}
        for name, spec in self.config.metrics.items():
            validated = self.validator.validate(rows, spec)
            cleaned[name] = self.spike_filter.filter(validated, spec.spike_delta, metric=name)
        return cleaned


@lru_cache
def build_default_cache() -> RangeCache:
    settings = get_settings()
    return RangeCache(
        source=build_default_source(),
        config=get_pipeline_config(),
        fetch_timeout=settings.fetch_timeout,
    )
