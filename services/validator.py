"""Range validation of raw telemetry rows."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from models.records import Sample, Series, TelemetryRow
from services.errors import StructuralError
from services.pipeline_config import MetricLimits, MetricSpec

logger = logging.getLogger(__name__)

TIMESTAMP_FIELD = "created_at"


def is_valid(value: Optional[float], limits: MetricLimits) -> bool:
    """True iff ``value`` is a finite number inside the closed interval."""
    if value is None or isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    if not math.isfinite(value):
        return False
    return limits.minimum <= value <= limits.maximum


def parse_value(raw: Any) -> Optional[float]:
    """Coerce a feed value to float, ``None`` when it is not numeric."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if not isinstance(raw, str):
        return None
    candidate = raw.strip()
    if not candidate:
        return None
    try:
        return float(candidate)
    except ValueError:
        return None


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise StructuralError("Telemetry row has an empty timestamp.")
        candidate = value.strip()
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise StructuralError(f"Invalid timestamp {value!r}.") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class Validator:
    """Turns raw rows into a series of plausible samples for one metric."""

    def validate(self, rows: Iterable[TelemetryRow], metric: MetricSpec) -> Series:
        samples: List[Sample] = []
        dropped = 0
        field_name = metric.field_name

        for row_number, row in enumerate(rows, start=1):
            if not isinstance(row, Mapping):
                raise StructuralError(f"Telemetry row {row_number} is not an object.")
            if TIMESTAMP_FIELD not in row:
                raise StructuralError(
                    f"Telemetry row {row_number} is missing {TIMESTAMP_FIELD!r}."
                )

            timestamp = parse_timestamp(row[TIMESTAMP_FIELD])
            raw = row.get(field_name)
            value = parse_value(raw)
            if value is None or not is_valid(value, metric.limits):
                dropped += 1
                logger.debug(
                    "Dropping implausible sample",
                    extra={"metric": metric.name, "reason": f"{field_name}={raw!r}"},
                )
                continue

            samples.append(Sample(timestamp=timestamp, value=value))

        if dropped:
            logger.info(
                "Range validation dropped samples",
                extra={"metric": metric.name, "dropped": dropped, "sample_count": len(samples)},
            )
        return tuple(samples)
