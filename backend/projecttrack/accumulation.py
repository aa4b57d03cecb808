"""Minute arithmetic shared by every session transition and reader.

All consumers that report "minutes so far" go through :func:`current_total` so
live and stored totals round the same way.
"""

from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

UTC = dt.timezone.utc
_HUNDREDTHS = Decimal("0.01")


class _Accumulating(Protocol):
    status: str
    accumulated_minutes: float
    open_since: Optional[dt.datetime]


def as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def round_minutes(value: float) -> float:
    # ROUND_HALF_UP rounds halves away from zero.
    return float(Decimal(repr(value)).quantize(_HUNDREDTHS, rounding=ROUND_HALF_UP))


def close_interval(start: dt.datetime, end: dt.datetime) -> float:
    """Minutes between ``start`` and ``end``; never negative under clock skew."""
    delta = as_utc(end) - as_utc(start)
    return max(0.0, delta.total_seconds() / 60)


def current_total(session: _Accumulating, now: dt.datetime) -> float:
    total = session.accumulated_minutes or 0.0
    if session.status == "active" and session.open_since is not None:
        total += close_interval(session.open_since, now)
    return round_minutes(total)
