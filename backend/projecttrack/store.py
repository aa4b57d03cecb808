"""Persistence helpers for sessions, segments and manual time requests."""

from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .errors import Transient
from .models import ManualTimeRequest, Project, WorkSession
from .targets import ProjectTarget, TaskTarget

logger = logging.getLogger(__name__)

STORE_ERRORS = (OperationalError, PoolTimeoutError, StaleDataError)


@contextmanager
def guard_store(db: Session) -> Iterator[None]:
    """Turn store unavailability and lost updates inside the block into ``Transient``."""
    try:
        yield
    except STORE_ERRORS as exc:
        db.rollback()
        logger.warning("store access failed: %s", exc.__class__.__name__)
        raise Transient() from exc


def commit(db: Session) -> None:
    with guard_store(db):
        db.commit()


def _owner_sessions(db: Session, owner_id: str):
    return db.query(WorkSession).filter(WorkSession.owner_id == owner_id)


def _newest_first(query):
    return query.order_by(WorkSession.created_at.desc(), WorkSession.id.desc())


def find_active_session(db: Session, owner_id: str, day: Optional[dt.date] = None) -> Optional[WorkSession]:
    query = _owner_sessions(db, owner_id).filter(WorkSession.status == "active")
    if day is not None:
        query = query.filter(WorkSession.day == day)
    return _newest_first(query).first()


def find_paused_session(db: Session, owner_id: str) -> Optional[WorkSession]:
    query = _owner_sessions(db, owner_id).filter(WorkSession.status == "paused")
    return _newest_first(query).first()


def find_open_session(db: Session, owner_id: str) -> Optional[WorkSession]:
    """The owner's running session, else the most recently paused one."""
    return find_active_session(db, owner_id) or find_paused_session(db, owner_id)


def find_carried_over_sessions(db: Session, owner_id: str, today: dt.date) -> List[WorkSession]:
    return (
        _owner_sessions(db, owner_id)
        .filter(WorkSession.status == "active", WorkSession.day != today)
        .all()
    )


def find_bucket_session(db: Session, owner_id: str, day: dt.date, target: TaskTarget) -> Optional[WorkSession]:
    query = _owner_sessions(db, owner_id).filter(WorkSession.day == day)
    if isinstance(target, ProjectTarget):
        query = query.filter(WorkSession.project_id == target.project_id)
    else:
        query = query.filter(WorkSession.project_id.is_(None), WorkSession.custom_task == target.label)
    return _newest_first(query).first()


def find_idle_session_ids(
    db: Session,
    grace_cutoff: dt.datetime,
    liveness_cutoff: dt.datetime,
) -> List[int]:
    rows = (
        db.query(WorkSession.id)
        .filter(
            WorkSession.status == "active",
            WorkSession.open_since.isnot(None),
            WorkSession.created_at < grace_cutoff,
            or_(
                WorkSession.last_liveness_at.is_(None),
                WorkSession.last_liveness_at < liveness_cutoff,
            ),
        )
        .order_by(WorkSession.id.asc())
        .all()
    )
    return [row[0] for row in rows]


def list_owner_sessions(
    db: Session,
    owner_id: str,
    from_date: Optional[dt.date] = None,
    to_date: Optional[dt.date] = None,
) -> List[WorkSession]:
    query = _owner_sessions(db, owner_id)
    if from_date is not None:
        query = query.filter(WorkSession.day >= from_date)
    if to_date is not None:
        query = query.filter(WorkSession.day <= to_date)
    return _newest_first(query).all()


def get_project(db: Session, project_id: int) -> Optional[Project]:
    return db.get(Project, project_id)


def claim_request(
    db: Session,
    request_id: int,
    decision: str,
    reviewer_id: str,
    now: dt.datetime,
) -> bool:
    """Move a request out of ``pending`` in one conditional UPDATE.

    Returns False when the request does not exist or was already decided.
    """
    updated = (
        db.query(ManualTimeRequest)
        .filter(ManualTimeRequest.id == request_id, ManualTimeRequest.status == "pending")
        .update(
            {
                ManualTimeRequest.status: decision,
                ManualTimeRequest.reviewer_id: reviewer_id,
                ManualTimeRequest.reviewed_at: now,
                ManualTimeRequest.updated_at: now,
            },
            synchronize_session="fetch",
        )
    )
    return updated == 1
