"""Manual time requests and their merge into bucket sessions on approval."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .clock import Clock, SystemClock
from .errors import NotFound
from .models import ManualTimeRequest, WorkSession
from .services import day_anchor, local_day, resolve_target
from .store import claim_request, commit, find_bucket_session, guard_store
from .targets import TaskTarget, target_columns

logger = logging.getLogger(__name__)

DECIDED_MESSAGE = "Request not found or already decided"


def create_request(
    db: Session,
    owner_id: str,
    target: TaskTarget,
    requested_minutes: float,
    text: str,
    task_type: str = "Alpha",
    day: Optional[dt.date] = None,
    clock: Optional[Clock] = None,
) -> ManualTimeRequest:
    now = (clock or SystemClock()).now()
    request = ManualTimeRequest(
        owner_id=owner_id,
        day=day or local_day(now),
        requested_minutes=requested_minutes,
        task_type=task_type,
        text=text.strip(),
        status="pending",
        created_at=now,
        updated_at=now,
        **target_columns(target),
    )
    db.add(request)
    with guard_store(db):
        commit(db)
        db.refresh(request)
    logger.info("manual time requested", extra={"owner_id": owner_id, "request_ref": request.id})
    return request


def list_requests(db: Session, owner_id: str) -> List[ManualTimeRequest]:
    with guard_store(db):
        return (
            db.query(ManualTimeRequest)
            .filter(ManualTimeRequest.owner_id == owner_id)
            .order_by(ManualTimeRequest.created_at.desc(), ManualTimeRequest.id.desc())
            .all()
        )


def list_pending_requests(db: Session) -> List[ManualTimeRequest]:
    with guard_store(db):
        return (
            db.query(ManualTimeRequest)
            .filter(ManualTimeRequest.status == "pending")
            .order_by(ManualTimeRequest.created_at.asc(), ManualTimeRequest.id.asc())
            .all()
        )


def _get_own_pending(db: Session, owner_id: str, request_id: int) -> ManualTimeRequest:
    with guard_store(db):
        request = (
            db.query(ManualTimeRequest)
            .filter(
                ManualTimeRequest.id == request_id,
                ManualTimeRequest.owner_id == owner_id,
                ManualTimeRequest.status == "pending",
            )
            .one_or_none()
        )
    if request is None:
        raise NotFound(DECIDED_MESSAGE)
    return request


def update_request(
    db: Session,
    owner_id: str,
    request_id: int,
    changes: Dict[str, Any],
    clock: Optional[Clock] = None,
) -> ManualTimeRequest:
    request = _get_own_pending(db, owner_id, request_id)
    if "project_id" in changes or "custom_task" in changes:
        target = resolve_target(
            db,
            changes.get("project_id"),
            changes.get("custom_task"),
        )
        for key, value in target_columns(target).items():
            setattr(request, key, value)
    if changes.get("text") is not None:
        request.text = changes["text"].strip()
    if changes.get("requested_minutes") is not None:
        request.requested_minutes = changes["requested_minutes"]
    if changes.get("task_type") is not None:
        request.task_type = changes["task_type"]
    if changes.get("day") is not None:
        request.day = changes["day"]
    request.updated_at = (clock or SystemClock()).now()
    db.add(request)
    with guard_store(db):
        commit(db)
        db.refresh(request)
    return request


def delete_request(db: Session, owner_id: str, request_id: int) -> None:
    request = _get_own_pending(db, owner_id, request_id)
    db.delete(request)
    commit(db)


def _resolve_bucket(db: Session, request: ManualTimeRequest, now: dt.datetime) -> WorkSession:
    bucket = find_bucket_session(db, request.owner_id, request.day, request.target)
    if bucket is not None:
        return bucket
    bucket = WorkSession(
        owner_id=request.owner_id,
        day=request.day,
        status="stopped",
        open_since=None,
        accumulated_minutes=0.0,
        created_at=now,
        updated_at=now,
        **target_columns(request.target),
    )
    db.add(bucket)
    return bucket


def approve_request(
    db: Session,
    request_id: int,
    reviewer_id: str,
    clock: Optional[Clock] = None,
) -> WorkSession:
    """Claim a pending request and credit its minutes to the bucket session.

    The claim and the credit are committed together; on any failure both are
    rolled back and the request stays pending.
    """
    now = (clock or SystemClock()).now()
    with guard_store(db):
        claimed = claim_request(db, request_id, "approved", reviewer_id, now)
    if not claimed:
        raise NotFound(DECIDED_MESSAGE)
    try:
        with guard_store(db):
            request = db.get(ManualTimeRequest, request_id)
            bucket = _resolve_bucket(db, request, now)
            bucket.append_manual_minutes(request.requested_minutes, request.id, day_anchor(request.day))
            bucket.updated_at = now
            commit(db)
            db.refresh(bucket)
    except Exception:
        db.rollback()
        raise
    logger.info(
        "manual time approved",
        extra={"owner_id": request.owner_id, "request_ref": request_id, "session_id": bucket.id},
    )
    return bucket


def reject_request(
    db: Session,
    request_id: int,
    reviewer_id: str,
    clock: Optional[Clock] = None,
) -> None:
    now = (clock or SystemClock()).now()
    with guard_store(db):
        claimed = claim_request(db, request_id, "rejected", reviewer_id, now)
    if not claimed:
        raise NotFound(DECIDED_MESSAGE)
    commit(db)
    logger.info("manual time rejected", extra={"request_ref": request_id})
