"""Data models for the heartbeat agent."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class TrackingStatus:
    """Snapshot of the caller's open session as reported by the API."""

    session_id: int
    status: str
    target_name: str
    total_minutes_now: float
    open_since: Optional[datetime] = None
    last_liveness_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.status == "active"


__all__ = ["TrackingStatus"]
