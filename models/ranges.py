"""Display horizons and the parent chain used to derive them."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Dict, Optional


class RangeKey(str, Enum):
    """Display horizons selectable by the renderer."""

    hour = "1h"
    three_hours = "3h"
    six_hours = "6h"
    twelve_hours = "12h"
    day = "1d"
    week = "1w"
    month = "1m"
    quarter = "3m"
    year = "1y"
    two_years = "2y"

    @property
    def duration(self) -> timedelta:
        return _DURATIONS[self]

    @property
    def parent(self) -> Optional["RangeKey"]:
        """Next larger horizon, ``None`` for the root of the chain."""
        return _PARENTS.get(self)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @classmethod
    def root(cls) -> "RangeKey":
        return cls.two_years


_DURATIONS: Dict[RangeKey, timedelta] = {
    RangeKey.hour: timedelta(hours=1),
    RangeKey.three_hours: timedelta(hours=3),
    RangeKey.six_hours: timedelta(hours=6),
    RangeKey.twelve_hours: timedelta(hours=12),
    RangeKey.day: timedelta(days=1),
    RangeKey.week: timedelta(weeks=1),
    RangeKey.month: timedelta(days=30),
    RangeKey.quarter: timedelta(days=90),
    RangeKey.year: timedelta(days=365),
    RangeKey.two_years: timedelta(days=730),
}

_ORDER = list(RangeKey)
_PARENTS: Dict[RangeKey, RangeKey] = {
    key: _ORDER[index + 1] for index, key in enumerate(_ORDER[:-1])
}
