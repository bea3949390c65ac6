from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from datastore.range_cache import RangeCache
from models.ranges import RangeKey
from services.dashboard import DashboardService, GenerationCounter, ViewportChannel, ViewportChange
from services.errors import FetchError
from services.forecast import ForecastIcon
from services.pipeline_config import PRESSURE, PipelineConfig
from telemetry.mock_feed import MockTelemetryFeed, failing_feed, synthetic_rows

END = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _build_dashboard(feed: MockTelemetryFeed) -> DashboardService:
    cache = RangeCache(source=feed, config=PipelineConfig(), fetch_timeout=5.0, clock=lambda: END)
    return DashboardService(cache=cache)


def test_generation_counter_only_latest_is_current() -> None:
    counter = GenerationCounter()
    first = counter.issue()
    second = counter.issue()

    assert second > first
    assert counter.is_current(second)
    assert not counter.is_current(first)


def test_viewport_channel_fans_out_until_unsubscribed() -> None:
    channel = ViewportChannel()
    seen: list[int] = []

    async def listener(change: ViewportChange) -> None:
        seen.append(change.generation)

    unsubscribe = channel.subscribe(listener)
    change = ViewportChange(RangeKey.day, END - timedelta(hours=1), END, generation=1)

    asyncio.run(channel.publish(change))
    unsubscribe()
    asyncio.run(channel.publish(change))

    assert seen == [1]


def test_outlier_is_removed_end_to_end() -> None:
    rows = synthetic_rows(30, end=END)
    for row in rows:
        row["field3"] = "1013.0"
    rows[12]["field3"] = "1100.0"
    dashboard = _build_dashboard(MockTelemetryFeed(rows=rows))

    snapshot = asyncio.run(dashboard.refresh(RangeKey.day))

    assert snapshot is not None
    pressure = snapshot.series[PRESSURE]
    assert len(pressure) == len(rows) - 1
    assert all(sample.value == 1013.0 for sample in pressure)
    window = snapshot.extrema[PRESSURE]
    assert window is not None
    assert window.maximum.value == 1013.0


def test_refresh_builds_snapshot_with_forecast() -> None:
    dashboard = _build_dashboard(MockTelemetryFeed(rows=synthetic_rows(288, end=END)))

    snapshot = asyncio.run(dashboard.refresh(RangeKey.six_hours))

    assert snapshot is not None
    assert snapshot.generation == 1
    assert snapshot.range_key is RangeKey.six_hours
    assert dashboard.active_range is RangeKey.six_hours
    assert len(snapshot.series[PRESSURE]) == 37
    assert snapshot.forecast is not None
    assert snapshot.forecast.icon is ForecastIcon.partly
    assert dashboard.snapshot is snapshot


def test_refresh_without_history_has_no_forecast() -> None:
    dashboard = _build_dashboard(MockTelemetryFeed(rows=synthetic_rows(2, end=END)))

    snapshot = asyncio.run(dashboard.refresh(RangeKey.hour))

    assert snapshot is not None
    assert snapshot.forecast is None


def test_slow_earlier_refresh_is_discarded(caplog) -> None:
    feed = MockTelemetryFeed(rows=synthetic_rows(288, end=END), delay=0.05)
    dashboard = _build_dashboard(feed)

    async def scenario():
        slow = asyncio.ensure_future(dashboard.refresh(RangeKey.week))
        await asyncio.sleep(0)
        # The newer request is served once the shared root retrieval lands.
        fast = asyncio.ensure_future(dashboard.refresh(RangeKey.hour))
        return await slow, await fast

    with caplog.at_level(logging.DEBUG, logger="services.dashboard"):
        stale, latest = asyncio.run(scenario())

    assert stale is None
    assert latest is not None
    assert latest.generation == 2
    assert dashboard.snapshot is latest
    assert any("superseded" in record.getMessage() for record in caplog.records)


def test_viewport_change_returns_window_extrema() -> None:
    rows = synthetic_rows(12, end=END)
    for index, row in enumerate(rows):
        row["field3"] = str(1010.0 + (index % 4))
    dashboard = _build_dashboard(MockTelemetryFeed(rows=rows))

    result = asyncio.run(
        dashboard.change_viewport(RangeKey.day, END - timedelta(minutes=30), END)
    )

    assert result is not None
    window = result.extrema[PRESSURE]
    assert window is not None
    assert window.sample_count == 4
    assert window.minimum.value == 1010.0
    assert window.maximum.value == 1013.0
    assert dashboard.viewport_result is result


def test_superseded_viewport_is_discarded() -> None:
    feed = MockTelemetryFeed(rows=synthetic_rows(12, end=END), delay=0.05)
    dashboard = _build_dashboard(feed)

    async def scenario():
        first = asyncio.ensure_future(
            dashboard.change_viewport(RangeKey.day, END - timedelta(hours=1), END)
        )
        await asyncio.sleep(0)
        second = asyncio.ensure_future(
            dashboard.change_viewport(RangeKey.day, END - timedelta(minutes=20), END)
        )
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first is None
    assert second is not None
    assert second.change.generation == 2
    assert feed.call_count == 1


def test_naive_window_bounds_are_treated_as_utc() -> None:
    dashboard = _build_dashboard(MockTelemetryFeed(rows=synthetic_rows(12, end=END)))
    naive_end = END.replace(tzinfo=None)

    window = asyncio.run(
        dashboard.extrema(RangeKey.day, PRESSURE, naive_end - timedelta(minutes=10), naive_end)
    )

    assert window is not None
    assert window.sample_count == 2


def test_unknown_metric_raises_key_error() -> None:
    dashboard = _build_dashboard(MockTelemetryFeed(rows=synthetic_rows(3, end=END)))

    with pytest.raises(KeyError):
        asyncio.run(dashboard.series(RangeKey.day, "wind_speed"))


def test_fetch_error_reaches_the_caller() -> None:
    dashboard = _build_dashboard(failing_feed())

    with pytest.raises(FetchError):
        asyncio.run(dashboard.refresh(RangeKey.day))

    assert dashboard.snapshot is None


def test_periodic_refresh_reloads_and_survives_failures() -> None:
    feed = MockTelemetryFeed(rows=synthetic_rows(24, end=END))
    dashboard = _build_dashboard(feed)

    async def scenario():
        dashboard.start_periodic_refresh(0.01)
        await asyncio.sleep(0.05)
        feed.fail_with = FetchError("down")
        await asyncio.sleep(0.03)
        await dashboard.shutdown()

    asyncio.run(scenario())

    assert feed.call_count >= 2
    assert dashboard.snapshot is not None


def test_periodic_refresh_logs_unexpected_errors_and_keeps_running(caplog) -> None:
    feed = MockTelemetryFeed(rows=synthetic_rows(24, end=END))
    feed.fail_with = RuntimeError("feed exploded")
    dashboard = _build_dashboard(feed)

    async def scenario():
        dashboard.start_periodic_refresh(0.01)
        await asyncio.sleep(0.04)
        feed.fail_with = None
        await asyncio.sleep(0.04)
        await dashboard.shutdown()

    with caplog.at_level(logging.ERROR, logger="services.dashboard"):
        asyncio.run(scenario())

    errors = [r for r in caplog.records if r.getMessage() == "Unexpected error during periodic refresh"]
    assert errors
    assert errors[0].exc_info is not None
    assert dashboard.snapshot is not None
