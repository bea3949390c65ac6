"""Pipeline entry point used by the HTTP layer and the refresh timer."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Awaitable, Callable, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from datastore.range_cache import RangeCache, build_default_cache
from models.ranges import RangeKey
from models.records import Series
from services.aggregator import WindowAggregator, WindowExtrema
from services.errors import PipelineError
from services.forecast import ForecastEngine, ForecastResult
from services.pipeline_config import OUTDOOR_HUMIDITY, OUTDOOR_TEMPERATURE, PRESSURE
from settings import get_settings

logger = logging.getLogger(__name__)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class GenerationCounter:
    """Monotonic request ids; only the newest one may publish a result."""

    def __init__(self) -> None:
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, generation: int) -> bool:
        return generation == self._latest


@dataclass(frozen=True)
class ViewportChange:
    range_key: RangeKey
    start: datetime
    end: datetime
    generation: int


ViewportListener = Callable[[ViewportChange], Awaitable[None]]


class ViewportChannel:
    """Fan-out of pan/zoom notifications to async listeners."""

    def __init__(self) -> None:
        self._listeners: List[ViewportListener] = []

    def subscribe(self, listener: ViewportListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    async def publish(self, change: ViewportChange) -> None:
        for listener in list(self._listeners):
            await listener(change)


@dataclass(frozen=True)
class ViewportResult:
    change: ViewportChange
    extrema: Mapping[str, Optional[WindowExtrema]]


@dataclass(frozen=True)
class DashboardSnapshot:
    generation: int
    range_key: RangeKey
    series: Mapping[str, Series]
    extrema: Mapping[str, Optional[WindowExtrema]]
    forecast: Optional[ForecastResult]
    computed_at: datetime


class DashboardService:
    """Coordinates the cache, the window aggregator and the nowcast."""

    def __init__(
        self,
        cache: RangeCache,
        aggregator: Optional[WindowAggregator] = None,
        engine: Optional[ForecastEngine] = None,
        default_range: RangeKey = RangeKey.day,
        forecast_range: RangeKey = RangeKey.day,
    ) -> None:
        self.cache = cache
        self.aggregator = aggregator or WindowAggregator()
        self.engine = engine or ForecastEngine(cache.config.thresholds)
        self.active_range = default_range
        self.forecast_range = forecast_range
        self.generations = GenerationCounter()
        self.viewport = ViewportChannel()
        self.viewport.subscribe(self._on_viewport_change)
        self._snapshot: Optional[DashboardSnapshot] = None
        self._viewport_result: Optional[ViewportResult] = None
        self._refresh_task: Optional[asyncio.Task[None]] = None

    @property
    def snapshot(self) -> Optional[DashboardSnapshot]:
        return self._snapshot

    @property
    def viewport_result(self) -> Optional[ViewportResult]:
        return self._viewport_result

    def metric_names(self) -> List[str]:
        return list(self.cache.config.metrics)

    async def series(self, key: RangeKey, metric: str) -> Series:
        self.cache.config.metric(metric)
        data = await self.cache.get_data_for_range(key)
        return data.get(metric, ())

    async def extrema(
        self, key: RangeKey, metric: str, start: datetime, end: datetime
    ) -> Optional[WindowExtrema]:
        series = await self.series(key, metric)
        return self.aggregator.extrema(series, _as_utc(start), _as_utc(end))

    async def nowcast(self) -> Optional[ForecastResult]:
        data = await self.cache.get_data_for_range(self.forecast_range)
        return self.engine.forecast(
            data.get(PRESSURE, ()),
            data.get(OUTDOOR_HUMIDITY, ()),
            data.get(OUTDOOR_TEMPERATURE, ()),
        )

    async def refresh(self, key: Optional[RangeKey] = None) -> Optional[DashboardSnapshot]:
        """Run the whole pipeline for ``key``; ``None`` if a newer request overtook it."""
        key = key or self.active_range
        generation = self.generations.issue()
        self.active_range = key

        data = await self.cache.get_data_for_range(key)
        forecast = await self.nowcast()
        end = self.cache.now()
        start = end - key.duration
        extrema: Dict[str, Optional[WindowExtrema]] = {
            metric: self.aggregator.extrema(values, start, end) for metric, values in data.items()
        }

        if not self.generations.is_current(generation):
            logger.debug(
                "Discarding superseded refresh",
                extra={"range_key": key.value, "generation": generation},
            )
            return None

        self._snapshot = DashboardSnapshot(
            generation=generation,
            range_key=key,
            series=data,
            extrema=extrema,
            forecast=forecast,
            computed_at=datetime.now(timezone.utc),
        )
        return self._snapshot

    async def change_viewport(
        self, key: RangeKey, start: datetime, end: datetime
    ) -> Optional[ViewportResult]:
        change = ViewportChange(
            range_key=key,
            start=_as_utc(start),
            end=_as_utc(end),
            generation=self.generations.issue(),
        )
        await self.viewport.publish(change)
        result = self._viewport_result
        if result is None or result.change.generation != change.generation:
            return None
        return result

    async def _on_viewport_change(self, change: ViewportChange) -> None:
        data = await self.cache.get_data_for_range(change.range_key)
        extrema = {
            metric: self.aggregator.extrema(values, change.start, change.end)
            for metric, values in data.items()
        }
        if not self.generations.is_current(change.generation):
            logger.debug(
                "Discarding superseded viewport",
                extra={"range_key": change.range_key.value, "generation": change.generation},
            )
            return
        self._viewport_result = ViewportResult(change=change, extrema=extrema)

    def reload(self) -> None:
        self.cache.reload()

    def start_periodic_refresh(self, interval: float) -> None:
        if interval <= 0 or self._refresh_task is not None:
            return
        self._refresh_task = asyncio.create_task(self._refresh_loop(interval))

    async def stop_periodic_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def shutdown(self) -> None:
        await self.stop_periodic_refresh()
        await self.cache.source.aclose()

    async def _refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            # Timer refreshes fetch fresh data, which means dropping the whole cache.
            self.cache.reload()
            try:
                await self.refresh()
            except PipelineError as exc:
                logger.warning(
                    "Periodic refresh failed",
                    extra={"range_key": self.active_range.value, "reason": str(exc)},
                )
            except Exception:
                logger.exception(
                    "Unexpected error during periodic refresh",
                    extra={"range_key": self.active_range.value},
                )


def _resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown display timezone, using UTC", extra={"reason": name})
        return ZoneInfo("UTC")


def _resolve_range(value: str) -> RangeKey:
    try:
        return RangeKey(value)
    except ValueError:
        return RangeKey.day


@lru_cache
def build_default_dashboard() -> DashboardService:
    """Factory that wires the dashboard with the configured telemetry source."""
    settings = get_settings()
    cache = build_default_cache()
    engine = ForecastEngine(
        cache.config.thresholds, timezone=_resolve_timezone(settings.display_timezone)
    )
    return DashboardService(
        cache=cache,
        engine=engine,
        default_range=_resolve_range(settings.default_range),
    )
