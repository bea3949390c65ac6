from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from models.records import TelemetryRow
from services.errors import FetchError, StructuralError

logger = logging.getLogger(__name__)

MAX_RESULTS = 8000


class ThingSpeakSource:
    """Reads the most recent feed entries of one ThingSpeak channel."""

    def __init__(
        self,
        channel_id: str,
        api_key: Optional[str] = None,
        base_url: str = "https://api.thingspeak.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.channel_id = channel_id
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_rows(self, results: int) -> List[TelemetryRow]:
        """Return up to ``results`` most recent rows, oldest first."""
        params: Dict[str, Any] = {"results": max(1, min(results, MAX_RESULTS))}
        if self._api_key:
            params["api_key"] = self._api_key

        try:
            response = await self._client.get(
                f"/channels/{self.channel_id}/feeds.json", params=params
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                f"Telemetry request failed with status {exc.response.status_code}."
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Telemetry request failed: {exc!r}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise StructuralError("Telemetry response is not valid JSON.") from exc

        # An unknown channel or a bad key is answered with a bare ``-1``.
        if not isinstance(payload, dict):
            raise StructuralError("Telemetry response is not a JSON object.")
        feeds = payload.get("feeds")
        if not isinstance(feeds, list):
            raise StructuralError("Telemetry response has no 'feeds' list.")

        logger.debug(
            "Fetched telemetry rows",
            extra={"requested": params["results"], "row_count": len(feeds)},
        )
        return feeds
