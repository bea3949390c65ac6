from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from models.records import TelemetryRow
from services.errors import FetchError


class MockTelemetryFeed:
    """In-memory stand-in for the telemetry collaborator.

    Serves the most recent ``results`` rows like the real feed, records every
    request, and can be told to fail or to stall. ``peak_active`` is the
    largest number of ``fetch_rows`` calls seen running at once.
    """

    def __init__(self, rows: Optional[Iterable[Mapping[str, Any]]] = None, delay: float = 0.0) -> None:
        self._rows: List[Dict[str, Any]] = [dict(row) for row in rows or ()]
        self.delay = delay
        self.fail_with: Optional[Exception] = None
        self.requests: List[int] = []
        self.active = 0
        self.peak_active = 0

    def put_rows(self, rows: Iterable[Mapping[str, Any]]) -> None:
        self._rows.extend(dict(row) for row in rows)

    def clear(self) -> None:
        self._rows.clear()

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def fetch_rows(self, results: int) -> List[TelemetryRow]:
        self.requests.append(results)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            return [dict(row) for row in self._rows[-results:]] if results > 0 else []
        finally:
            self.active -= 1

    async def aclose(self) -> None:
        return None


def synthetic_rows(
    count: int,
    end: Optional[datetime] = None,
    step: timedelta = timedelta(minutes=10),
) -> List[Dict[str, Any]]:
    """Steady readings ending at ``end``, used for offline development."""
    end = end or datetime.now(timezone.utc).replace(microsecond=0)
    start = end - step * (count - 1)
    rows: List[Dict[str, Any]] = []
    for index in range(count):
        created_at = start + step * index
        rows.append(
            {
                "created_at": created_at.isoformat().replace("+00:00", "Z"),
                "entry_id": index + 1,
                "field1": "21.5",
                "field2": "45",
                "field3": "1013.2",
                "field4": "12.0",
                "field5": "70",
            }
        )
    return rows


def failing_feed(message: str = "telemetry unavailable") -> MockTelemetryFeed:
    feed = MockTelemetryFeed()
    feed.fail_with = FetchError(message)
    return feed
