from __future__ import annotations

import datetime as dt
import logging
from typing import Any, List, Optional

from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .clock import Clock, SystemClock
from .config import settings
from .errors import ConflictAlreadyActive, InvalidTarget, NotFound
from .models import Project, WorkSession
from .store import (
    commit,
    find_active_session,
    find_carried_over_sessions,
    find_open_session,
    find_paused_session,
    get_project,
    guard_store,
    list_owner_sessions,
)
from .targets import ProjectTarget, TaskTarget, parse_target, target_columns

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

CARRY_OVER_ANNOTATION = "auto-stopped: left running from a previous day"


def local_day(now: dt.datetime) -> dt.date:
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(LOCAL_TZ).date()


def day_anchor(day: dt.date) -> dt.datetime:
    """Start-of-day anchor for synthetic segments, in UTC."""
    local = dt.datetime.combine(day, settings.manual_anchor_time, tzinfo=LOCAL_TZ)
    return local.astimezone(UTC)


def resolve_target(db: Session, project_id: Optional[int], custom_task: Optional[str]) -> TaskTarget:
    target = parse_target(project_id, custom_task)
    if isinstance(target, ProjectTarget):
        with guard_store(db):
            project = get_project(db, target.project_id)
        if project is None:
            raise InvalidTarget("Project not found")
    return target


def _commit_guarding_active(db: Session) -> None:
    try:
        commit(db)
    except IntegrityError as exc:
        db.rollback()
        raise ConflictAlreadyActive() from exc


def reconcile_carried_over(db: Session, owner_id: str, now: dt.datetime) -> int:
    """Stop sessions still running from an earlier day; does not commit.

    An interval opened today (a session resumed this morning) is credited up to
    ``now``. An interval opened on an earlier day is dropped.
    """
    today = local_day(now)
    stale = find_carried_over_sessions(db, owner_id, today)
    for session in stale:
        if session.open_since is not None and local_day(session.open_since) == today:
            session.mark_auto_stopped(now, CARRY_OVER_ANNOTATION)
        else:
            session.mark_abandoned(CARRY_OVER_ANNOTATION)
        db.add(session)
        logger.info(
            "carried-over session stopped",
            extra={"owner_id": owner_id, "session_id": session.id},
        )
    return len(stale)


def start_session(
    db: Session,
    owner_id: str,
    target: TaskTarget,
    notes: Optional[str] = None,
    device_id: Optional[str] = None,
    device_info: Optional[Any] = None,
    clock: Optional[Clock] = None,
) -> WorkSession:
    now = (clock or SystemClock()).now()
    today = local_day(now)
    with guard_store(db):
        reconcile_carried_over(db, owner_id, now)
        if find_active_session(db, owner_id, today):
            raise ConflictAlreadyActive()
        session = WorkSession(
            owner_id=owner_id,
            day=today,
            status="active",
            open_since=now,
            accumulated_minutes=0.0,
            notes=notes or None,
            device_id=device_id or None,
            device_info=device_info or None,
            created_at=now,
            updated_at=now,
            **target_columns(target),
        )
        db.add(session)
        _commit_guarding_active(db)
        db.refresh(session)
    logger.info("session started", extra={"owner_id": owner_id, "session_id": session.id})
    return session


def pause_session(
    db: Session,
    owner_id: str,
    device_id: Optional[str] = None,
    device_info: Optional[Any] = None,
    clock: Optional[Clock] = None,
) -> WorkSession:
    with guard_store(db):
        session = find_active_session(db, owner_id)
        if not session:
            raise NotFound("No active session found.")
        session.mark_paused((clock or SystemClock()).now())
        session.touch_device(device_id, device_info)
        db.add(session)
        commit(db)
        db.refresh(session)
    logger.info("session paused", extra={"owner_id": owner_id, "session_id": session.id})
    return session


def resume_session(
    db: Session,
    owner_id: str,
    device_id: Optional[str] = None,
    device_info: Optional[Any] = None,
    clock: Optional[Clock] = None,
) -> WorkSession:
    with guard_store(db):
        session = find_paused_session(db, owner_id)
        if not session:
            raise NotFound("No paused session found.")
        if find_active_session(db, owner_id):
            raise ConflictAlreadyActive()
        session.mark_resumed((clock or SystemClock()).now())
        session.touch_device(device_id, device_info)
        db.add(session)
        _commit_guarding_active(db)
        db.refresh(session)
    logger.info("session resumed", extra={"owner_id": owner_id, "session_id": session.id})
    return session


def stop_session(
    db: Session,
    owner_id: str,
    notes: Optional[str] = None,
    device_id: Optional[str] = None,
    device_info: Optional[Any] = None,
    clock: Optional[Clock] = None,
) -> WorkSession:
    with guard_store(db):
        session = find_open_session(db, owner_id)
        if not session:
            raise NotFound("No active/paused session found.")
        session.mark_stopped((clock or SystemClock()).now(), notes)
        session.touch_device(device_id, device_info)
        db.add(session)
        commit(db)
        db.refresh(session)
    logger.info("session stopped", extra={"owner_id": owner_id, "session_id": session.id})
    return session


def record_liveness(db: Session, owner_id: str, clock: Optional[Clock] = None) -> WorkSession:
    with guard_store(db):
        session = find_active_session(db, owner_id)
        if not session:
            raise NotFound("No active session found.")
        session.last_liveness_at = (clock or SystemClock()).now()
        db.add(session)
        commit(db)
        db.refresh(session)
    return session


def get_current_session(db: Session, owner_id: str) -> WorkSession:
    with guard_store(db):
        session = find_open_session(db, owner_id)
    if not session:
        raise NotFound("No active/paused session found.")
    return session


def list_sessions(
    db: Session,
    owner_id: str,
    from_date: Optional[dt.date] = None,
    to_date: Optional[dt.date] = None,
) -> List[WorkSession]:
    with guard_store(db):
        return list_owner_sessions(db, owner_id, from_date, to_date)


def list_projects(db: Session) -> List[Project]:
    with guard_store(db):
        return db.query(Project).order_by(Project.name.asc(), Project.id.asc()).all()


def create_project(db: Session, name: str, company: Optional[str], category: Optional[str]) -> Project:
    project = Project(name=name.strip(), company=company, category=category)
    db.add(project)
    try:
        commit(db)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Project already exists") from exc
    with guard_store(db):
        db.refresh(project)
    return project
