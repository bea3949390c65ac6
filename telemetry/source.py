from __future__ import annotations

from functools import lru_cache
from typing import List, Protocol

from models.records import TelemetryRow
from settings import get_settings
from telemetry.mock_feed import MockTelemetryFeed, synthetic_rows
from telemetry.thingspeak import ThingSpeakSource


class TelemetrySource(Protocol):
    """Anything that returns the most recent N feed rows."""

    async def fetch_rows(self, results: int) -> List[TelemetryRow]:
        ...

    async def aclose(self) -> None:
        ...


@lru_cache
def build_default_source() -> TelemetrySource:
    settings = get_settings()
    if settings.telemetry_source == "mock":
        # Two days of ten-minute readings.
        return MockTelemetryFeed(rows=synthetic_rows(288))
    return ThingSpeakSource(
        channel_id=settings.channel_id,
        api_key=settings.api_key,
        base_url=settings.telemetry_base_url,
        timeout=settings.fetch_timeout,
    )
