from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

from .accumulation import current_total, round_minutes
from .models import WorkSession

TaskType = Literal[
    "Alpha",
    "Beta",
    "CR",
    "Rework",
    "poc",
    "Analysis",
    "Storyboard QA",
    "Output QA",
]


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


def _serialize_optional(value: Optional[dt.datetime]) -> Optional[str]:
    return _serialize_datetime(value) if value else None


class SegmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    start: dt.datetime
    end: dt.datetime
    manual: bool
    source_request_id: Optional[int] = None
    minutes: float

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "start": _serialize_datetime(self.start),
            "end": _serialize_datetime(self.end),
            "manual": self.manual,
            "source_request_id": self.source_request_id,
            "minutes": round_minutes(self.minutes),
        }


class WorkSessionResponse(BaseModel):
    id: int
    owner_id: str
    day: dt.date
    status: str
    project_id: Optional[int]
    custom_task: Optional[str]
    target_name: str
    open_since: Optional[dt.datetime]
    accumulated_minutes: float
    total_minutes_now: float
    notes: Optional[str]
    device_id: Optional[str]
    device_info: Optional[Any] = None
    last_liveness_at: Optional[dt.datetime]
    created_at: dt.datetime
    segments: List[SegmentResponse] = Field(default_factory=list)

    @classmethod
    def from_session(cls, session: WorkSession, now: dt.datetime) -> "WorkSessionResponse":
        return cls(
            id=session.id,
            owner_id=session.owner_id,
            day=session.day,
            status=session.status,
            project_id=session.project_id,
            custom_task=session.custom_task,
            target_name=session.target_name,
            open_since=session.open_since,
            accumulated_minutes=round_minutes(session.accumulated_minutes or 0.0),
            total_minutes_now=current_total(session, now),
            notes=session.notes,
            device_id=session.device_id,
            device_info=session.device_info,
            last_liveness_at=session.last_liveness_at,
            created_at=session.created_at,
            segments=[SegmentResponse.model_validate(segment) for segment in session.segments],
        )

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "day": self.day.isoformat(),
            "status": self.status,
            "project_id": self.project_id,
            "custom_task": self.custom_task,
            "target_name": self.target_name,
            "open_since": _serialize_optional(self.open_since),
            "accumulated_minutes": self.accumulated_minutes,
            "total_minutes_now": self.total_minutes_now,
            "notes": self.notes,
            "device_id": self.device_id,
            "device_info": self.device_info,
            "last_liveness_at": _serialize_optional(self.last_liveness_at),
            "created_at": _serialize_datetime(self.created_at),
            "segments": [segment._serialize() for segment in self.segments],
        }


class WorkStartRequest(BaseModel):
    project_id: Optional[int] = None
    custom_task: Optional[str] = None
    notes: Optional[str] = None
    device_id: Optional[str] = None
    device_info: Optional[dict[str, Any]] = None


class WorkDeviceRequest(BaseModel):
    device_id: Optional[str] = None
    device_info: Optional[dict[str, Any]] = None


class WorkStopRequest(WorkDeviceRequest):
    notes: Optional[str] = None


class ProjectCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    company: Optional[str] = None
    category: Optional[str] = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    company: Optional[str]
    category: Optional[str]


class ManualTimeRequestCreate(BaseModel):
    project_id: Optional[int] = None
    custom_task: Optional[str] = None
    requested_minutes: float = Field(gt=0)
    text: str
    task_type: TaskType = "Alpha"
    day: Optional[dt.date] = None

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Remark text cannot be empty")
        return value.strip()


class ManualTimeRequestUpdate(BaseModel):
    project_id: Optional[int] = None
    custom_task: Optional[str] = None
    requested_minutes: Optional[float] = Field(default=None, gt=0)
    text: Optional[str] = None
    task_type: Optional[TaskType] = None
    day: Optional[dt.date] = None

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("Remark text cannot be empty")
        return value


class ManualTimeRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    owner_id: str
    day: dt.date
    requested_minutes: float
    project_id: Optional[int]
    custom_task: Optional[str]
    target_name: str
    task_type: str
    text: str
    status: str
    reviewer_id: Optional[str]
    reviewed_at: Optional[dt.datetime]
    created_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "day": self.day.isoformat(),
            "requested_minutes": self.requested_minutes,
            "project_id": self.project_id,
            "custom_task": self.custom_task,
            "target_name": self.target_name,
            "task_type": self.task_type,
            "text": self.text,
            "status": self.status,
            "reviewer_id": self.reviewer_id,
            "reviewed_at": _serialize_optional(self.reviewed_at),
            "created_at": _serialize_datetime(self.created_at),
        }


class SweepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    scanned: int
    stopped: int
    failed: int
