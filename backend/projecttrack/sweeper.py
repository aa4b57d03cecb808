"""Idle sweeper: force-stops active sessions whose owner stopped sending liveness signals."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .accumulation import as_utc
from .clock import Clock, SystemClock
from .config import Settings
from .models import WorkSession
from .store import find_idle_session_ids, guard_store

logger = logging.getLogger(__name__)

AUTO_STOP_ANNOTATION = "auto-stopped: no liveness signal"


@dataclass(frozen=True)
class SweepConfig:
    interval_seconds: int = 300
    liveness_timeout: dt.timedelta = dt.timedelta(minutes=10)
    grace_window: dt.timedelta = dt.timedelta(minutes=2)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SweepConfig":
        return cls(
            interval_seconds=settings.sweep_interval_seconds,
            liveness_timeout=dt.timedelta(minutes=settings.liveness_timeout_minutes),
            grace_window=dt.timedelta(minutes=settings.grace_minutes),
        )


@dataclass
class SweepResult:
    scanned: int = 0
    stopped: int = 0
    failed: int = 0


def is_idle(session: WorkSession, now: dt.datetime, config: SweepConfig) -> bool:
    if session.status != "active" or session.open_since is None:
        return False
    if as_utc(session.created_at) >= now - config.grace_window:
        return False
    if session.last_liveness_at is None:
        return True
    return as_utc(session.last_liveness_at) < now - config.liveness_timeout


class IdleSweeper:
    """Periodic best-effort reconciliation of abandoned sessions.

    Each candidate is reloaded and stopped in its own unit of work so one
    failing save never blocks the rest of the batch.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: SweepConfig,
        clock: Optional[Clock] = None,
    ) -> None:
        self._session_factory = session_factory
        self.config = config
        self.clock = clock or SystemClock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self) -> SweepResult:
        now = self.clock.now()
        result = SweepResult()
        with self._session_factory() as db, guard_store(db):
            candidates = find_idle_session_ids(
                db,
                grace_cutoff=now - self.config.grace_window,
                liveness_cutoff=now - self.config.liveness_timeout,
            )
        result.scanned = len(candidates)
        for session_id in candidates:
            try:
                if self._stop_one(session_id, now):
                    result.stopped += 1
            except SQLAlchemyError:
                result.failed += 1
                logger.exception("auto-stop failed", extra={"session_id": session_id})
        if result.stopped or result.failed:
            logger.info(
                "idle sweep finished",
                extra={"stopped": result.stopped, "failed": result.failed},
            )
        return result

    def _stop_one(self, session_id: int, now: dt.datetime) -> bool:
        with self._session_factory() as db:
            session = db.get(WorkSession, session_id)
            # Re-check: a live stop/pause/heartbeat may have landed since the scan.
            if session is None or not is_idle(session, now, self.config):
                return False
            session.mark_auto_stopped(now, AUTO_STOP_ANNOTATION)
            db.add(session)
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            logger.info(
                "session auto-stopped",
                extra={"owner_id": session.owner_id, "session_id": session_id},
            )
            return True

    def run_forever(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("idle sweep aborted")
            self._stop_event.wait(self.config.interval_seconds)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="idle-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
