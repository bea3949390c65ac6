from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional


_SOURCE_ENV = "TELEMETRY_SOURCE"
_BASE_URL_ENV = "TELEMETRY_BASE_URL"
_CHANNEL_ENV = "TELEMETRY_CHANNEL_ID"
_API_KEY_ENV = "TELEMETRY_API_KEY"
_FETCH_TIMEOUT_ENV = "TELEMETRY_FETCH_TIMEOUT"
_FIELD_MAP_ENV = "TELEMETRY_FIELD_MAP"
_REFRESH_INTERVAL_ENV = "REFRESH_INTERVAL_SECONDS"
_DEFAULT_RANGE_ENV = "DEFAULT_RANGE"
_TIMEZONE_ENV = "DISPLAY_TIMEZONE"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_KNOWN_SOURCES = {"thingspeak", "mock"}


@dataclass(frozen=True)
class Settings:
    telemetry_source: str
    telemetry_base_url: str
    channel_id: str
    api_key: Optional[str]
    fetch_timeout: float
    field_map: Dict[str, int]
    refresh_interval: float
    default_range: str
    display_timezone: str
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_float_env(name: str, default: float, allow_zero: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if parsed > 0 or (allow_zero and parsed == 0):
        return parsed
    return default


def _read_source(default: str) -> str:
    candidate = _read_str_env(_SOURCE_ENV, default).lower()
    return candidate if candidate in _KNOWN_SOURCES else default


def _read_field_map() -> Dict[str, int]:
    """Parse ``metric=index`` pairs, ignoring malformed entries."""
    value = os.getenv(_FIELD_MAP_ENV)
    if value is None:
        return {}
    overrides: Dict[str, int] = {}
    for chunk in value.split(","):
        name, sep, raw_index = chunk.partition("=")
        if not sep:
            continue
        try:
            index = int(raw_index.strip())
        except ValueError:
            continue
        if name.strip() and index > 0:
            overrides[name.strip()] = index
    return overrides


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        telemetry_source=_read_source("thingspeak"),
        telemetry_base_url=_read_str_env(_BASE_URL_ENV, "https://api.thingspeak.com").rstrip("/"),
        channel_id=_read_str_env(_CHANNEL_ENV, "3152991"),
        api_key=_read_optional_env(_API_KEY_ENV, None),
        fetch_timeout=_read_float_env(_FETCH_TIMEOUT_ENV, 10.0),
        field_map=_read_field_map(),
        refresh_interval=_read_float_env(_REFRESH_INTERVAL_ENV, 300.0, allow_zero=True),
        default_range=_read_str_env(_DEFAULT_RANGE_ENV, "1d"),
        display_timezone=_read_str_env(_TIMEZONE_ENV, "UTC"),
        log_level=_read_log_level("INFO"),
    )
