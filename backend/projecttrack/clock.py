from __future__ import annotations

import datetime as dt
from typing import Optional

from typing_extensions import Protocol

from .accumulation import as_utc

UTC = dt.timezone.utc


class Clock(Protocol):
    def now(self) -> dt.datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> dt.datetime:
        return dt.datetime.now(UTC)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[dt.datetime] = None) -> None:
        self._now = as_utc(start) if start else dt.datetime.now(UTC)

    def now(self) -> dt.datetime:
        return self._now

    def set(self, value: dt.datetime) -> None:
        self._now = as_utc(value)

    def advance(self, **delta: float) -> dt.datetime:
        self._now = self._now + dt.timedelta(**delta)
        return self._now
