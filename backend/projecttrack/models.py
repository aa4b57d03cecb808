from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text as sql_text,
)
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base, relationship

from .accumulation import as_utc, close_interval
from .targets import CustomTarget, ProjectTarget, TaskTarget

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


SESSION_STATUSES = ("active", "paused", "stopped")
REQUEST_STATUSES = ("pending", "approved", "rejected")
TASK_TYPES = (
    "Alpha",
    "Beta",
    "CR",
    "Rework",
    "poc",
    "Analysis",
    "Storyboard QA",
    "Output QA",
)

NOTES_SEPARATOR = " | "


def _one_of(column: str, values: tuple) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


def _target_from_columns(project_id: Optional[int], custom_task: Optional[str]) -> TaskTarget:
    if project_id is not None:
        return ProjectTarget(project_id=project_id)
    return CustomTarget(label=custom_task or "")


class Project(Base):
    __tablename__ = "projects"
    __table_args__ = (UniqueConstraint("name", "company", "category", name="uq_projects_name_company_category"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    company = Column(String(200), nullable=True)
    category = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class WorkSession(Base):
    __tablename__ = "work_sessions"
    __table_args__ = (
        CheckConstraint(
            "(project_id IS NULL) != (custom_task IS NULL)",
            name="ck_work_sessions_single_target",
        ),
        CheckConstraint(_one_of("status", SESSION_STATUSES), name="ck_work_sessions_status"),
        # One running session per owner and day, enforced by the store itself.
        Index(
            "uq_work_sessions_owner_day_active",
            "owner_id",
            "day",
            unique=True,
            sqlite_where=sql_text("status = 'active'"),
            postgresql_where=sql_text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True, index=True)
    custom_task = Column(String(200), nullable=True)
    day = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="active", index=True)
    open_since = Column(DateTime(timezone=True), nullable=True)
    accumulated_minutes = Column(Float, nullable=False, default=0.0)
    notes = Column(Text, nullable=True)
    device_id = Column(String(120), nullable=True, index=True)
    device_info = Column(SQLiteJSON, nullable=True)
    last_liveness_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    project = relationship("Project", lazy="joined")
    segments = relationship(
        "SessionSegment",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionSegment.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def target(self) -> TaskTarget:
        return _target_from_columns(self.project_id, self.custom_task)

    @property
    def target_name(self) -> str:
        if self.project_id is not None:
            return self.project.name if self.project else "(No project)"
        return self.custom_task or ""

    def touch_device(self, device_id: Optional[str], device_info: Optional[Any]) -> None:
        if device_id:
            self.device_id = device_id
        if device_info:
            self.device_info = device_info

    def append_note(self, annotation: str) -> None:
        self.notes = f"{self.notes}{NOTES_SEPARATOR}{annotation}" if self.notes else annotation

    def _append_segment(
        self,
        start: dt.datetime,
        end: dt.datetime,
        manual: bool = False,
        source_request_id: Optional[int] = None,
    ) -> SessionSegment:
        segment = SessionSegment(
            position=len(self.segments),
            start=as_utc(start),
            end=as_utc(end),
            manual=manual,
            source_request_id=source_request_id,
        )
        self.segments.append(segment)
        return segment

    def _close_running_interval(self, now: dt.datetime) -> None:
        if self.status != "active" or self.open_since is None:
            return
        self._append_segment(self.open_since, now)
        self.accumulated_minutes = (self.accumulated_minutes or 0.0) + close_interval(self.open_since, now)
        self.open_since = None

    def mark_paused(self, now: dt.datetime) -> None:
        self._close_running_interval(now)
        self.status = "paused"

    def mark_resumed(self, now: dt.datetime) -> None:
        if self.status != "paused":
            return
        self.open_since = as_utc(now)
        self.status = "active"

    def mark_stopped(self, now: dt.datetime, notes: Optional[str] = None) -> None:
        self._close_running_interval(now)
        self.open_since = None
        self.status = "stopped"
        if notes:
            self.notes = notes

    def mark_auto_stopped(self, now: dt.datetime, annotation: str) -> None:
        self.mark_stopped(now)
        self.append_note(annotation)

    def mark_abandoned(self, annotation: str) -> None:
        """Stop without crediting the running interval."""
        self.open_since = None
        self.status = "stopped"
        self.append_note(annotation)

    def append_manual_minutes(
        self,
        minutes: float,
        source_request_id: int,
        anchor: dt.datetime,
    ) -> SessionSegment:
        start = self.segments[-1].end if self.segments else anchor
        end = as_utc(start) + dt.timedelta(minutes=minutes)
        self.accumulated_minutes = (self.accumulated_minutes or 0.0) + minutes
        return self._append_segment(start, end, manual=True, source_request_id=source_request_id)


class SessionSegment(Base):
    __tablename__ = "session_segments"
    __table_args__ = (UniqueConstraint("session_id", "position", name="uq_session_segments_position"),)

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("work_sessions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    start = Column("start_time", DateTime(timezone=True), nullable=False)
    end = Column("end_time", DateTime(timezone=True), nullable=False)
    manual = Column(Boolean, nullable=False, default=False)
    source_request_id = Column(
        Integer,
        ForeignKey("manual_time_requests.id"),
        nullable=True,
        unique=True,
    )

    session = relationship("WorkSession", back_populates="segments")

    @property
    def minutes(self) -> float:
        return close_interval(self.start, self.end)


class ManualTimeRequest(Base):
    __tablename__ = "manual_time_requests"
    __table_args__ = (
        CheckConstraint(
            "(project_id IS NULL) != (custom_task IS NULL)",
            name="ck_manual_time_requests_single_target",
        ),
        CheckConstraint("requested_minutes > 0", name="ck_manual_time_requests_positive"),
        CheckConstraint(_one_of("status", REQUEST_STATUSES), name="ck_manual_time_requests_status"),
        CheckConstraint(_one_of("task_type", TASK_TYPES), name="ck_manual_time_requests_task_type"),
        Index("ix_manual_time_requests_owner_day", "owner_id", "day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    day = Column(Date, nullable=False)
    requested_minutes = Column(Float, nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True)
    custom_task = Column(String(200), nullable=True)
    task_type = Column(String(40), nullable=False, default="Alpha")
    text = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    reviewer_id = Column(String(64), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    project = relationship("Project", lazy="joined")

    @property
    def target(self) -> TaskTarget:
        return _target_from_columns(self.project_id, self.custom_task)

    @property
    def target_name(self) -> str:
        if self.project_id is not None:
            return self.project.name if self.project else "(No project)"
        return self.custom_task or ""
