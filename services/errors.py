"""Failure taxonomy of the telemetry pipeline.

Samples rejected by range or spike validation and forecasts without enough
pressure history are not errors; they only show up as shorter series or an
absent forecast.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for failures that abort a retrieval."""

    def __init__(self, message: str, range_key: Optional[str] = None) -> None:
        super().__init__(message)
        self.range_key = range_key


class StructuralError(PipelineError):
    """The telemetry collaborator returned rows that do not match the schema."""


class FetchError(PipelineError):
    """Transport or HTTP failure while talking to the telemetry collaborator."""
