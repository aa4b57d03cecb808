from __future__ import annotations

import datetime as dt

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from projecttrack import models
from projecttrack.accumulation import as_utc, round_minutes
from projecttrack.clock import FixedClock
from projecttrack.config import Settings
from projecttrack.services import pause_session, record_liveness, start_session
from projecttrack.sweeper import AUTO_STOP_ANNOTATION, IdleSweeper, SweepConfig, SweepResult, is_idle
from projecttrack.targets import CustomTarget

OWNER = "emp-1"


def test_session_inside_grace_window_is_left_alone(session: Session, clock: FixedClock, sweeper: IdleSweeper):
    started = start_session(session, OWNER, CustomTarget("Alpha"), clock=clock)
    clock.advance(minutes=1)

    result = sweeper.sweep()

    assert result.stopped == 0
    session.expire_all()
    assert session.get(models.WorkSession, started.id).status == "active"


def test_session_with_stale_liveness_is_auto_stopped(session: Session, clock: FixedClock, sweeper: IdleSweeper):
    # Liveness last seen 15 minutes before the sweep, session created 5 minutes before it.
    clock.advance(minutes=-15)
    start_time = clock.now()
    started = start_session(session, OWNER, CustomTarget("Alpha"), notes="Kickoff", clock=clock)
    record_liveness(session, OWNER, clock=clock)
    started.created_at = start_time + dt.timedelta(minutes=10)
    session.commit()
    clock.advance(minutes=15)

    result = sweeper.sweep()

    assert result.stopped == 1
    assert result.failed == 0
    session.expire_all()
    stopped = session.get(models.WorkSession, started.id)
    assert stopped.status == "stopped"
    assert stopped.open_since is None
    assert len(stopped.segments) == 1
    assert as_utc(stopped.segments[0].end) == clock.now()
    assert round_minutes(stopped.accumulated_minutes) == 15.0
    assert stopped.notes == f"Kickoff | {AUTO_STOP_ANNOTATION}"


def test_session_without_any_liveness_is_stopped_after_grace(session: Session, clock: FixedClock, sweeper: IdleSweeper):
    started = start_session(session, OWNER, CustomTarget("Beta"), clock=clock)
    clock.advance(minutes=3)

    assert sweeper.sweep().stopped == 1
    session.expire_all()
    stopped = session.get(models.WorkSession, started.id)
    assert stopped.notes == AUTO_STOP_ANNOTATION


def test_recent_liveness_keeps_session_running(session: Session, clock: FixedClock, sweeper: IdleSweeper):
    started = start_session(session, OWNER, CustomTarget("Beta"), clock=clock)
    clock.advance(minutes=20)
    record_liveness(session, OWNER, clock=clock)
    clock.advance(minutes=9)

    assert sweeper.sweep().stopped == 0
    session.expire_all()
    assert session.get(models.WorkSession, started.id).status == "active"


def test_paused_sessions_are_never_swept(session: Session, clock: FixedClock, sweeper: IdleSweeper):
    started = start_session(session, OWNER, CustomTarget("Beta"), clock=clock)
    clock.advance(minutes=5)
    pause_session(session, OWNER, clock=clock)
    clock.advance(hours=2)

    assert sweeper.sweep().scanned == 0
    session.expire_all()
    assert session.get(models.WorkSession, started.id).status == "paused"


def test_is_idle_respects_configured_windows(clock: FixedClock):
    now = clock.now()
    config = SweepConfig(
        interval_seconds=60,
        liveness_timeout=dt.timedelta(minutes=30),
        grace_window=dt.timedelta(minutes=10),
    )
    record = models.WorkSession(
        status="active",
        open_since=now - dt.timedelta(minutes=20),
        created_at=now - dt.timedelta(minutes=20),
        last_liveness_at=now - dt.timedelta(minutes=25),
    )
    assert not is_idle(record, now, config)
    record.last_liveness_at = now - dt.timedelta(minutes=31)
    assert is_idle(record, now, config)
    record.created_at = now - dt.timedelta(minutes=5)
    assert not is_idle(record, now, config)


def test_sweep_config_from_settings():
    config = SweepConfig.from_settings(
        Settings(sweep_interval_seconds=120, liveness_timeout_minutes=15, grace_minutes=3)
    )
    assert config.interval_seconds == 120
    assert config.liveness_timeout == dt.timedelta(minutes=15)
    assert config.grace_window == dt.timedelta(minutes=3)


def test_failed_save_does_not_abort_the_sweep(isolated_factory, clock: FixedClock, monkeypatch):
    with isolated_factory() as db:
        for owner in ("stuck", "emp-2", "emp-3"):
            start_session(db, owner, CustomTarget("Alpha"), clock=clock)
    clock.advance(minutes=30)

    original = models.WorkSession.mark_auto_stopped

    def flaky(self, now, annotation):
        if self.owner_id == "stuck":
            raise OperationalError("UPDATE work_sessions", {}, Exception("database is locked"))
        return original(self, now, annotation)

    monkeypatch.setattr(models.WorkSession, "mark_auto_stopped", flaky)

    result = IdleSweeper(isolated_factory, SweepConfig(), clock).sweep()

    assert result.scanned == 3
    assert result.stopped == 2
    assert result.failed == 1
    with isolated_factory() as db:
        statuses = {row.owner_id: row.status for row in db.query(models.WorkSession).all()}
    assert statuses == {"stuck": "active", "emp-2": "stopped", "emp-3": "stopped"}



def test_background_loop_keeps_running_after_unexpected_error(session_factory, clock: FixedClock, monkeypatch):
    sweeper = IdleSweeper(session_factory, SweepConfig(interval_seconds=0), clock)
    passes = []

    def sweep():
        passes.append(len(passes))
        if len(passes) == 1:
            raise RuntimeError("unexpected")
        sweeper.stop()
        return SweepResult()

    monkeypatch.setattr(sweeper, "sweep", sweep)
    sweeper.run_forever()

    assert passes == [0, 1]
