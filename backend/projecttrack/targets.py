"""Task targets: a session works on either a known project or a free-text task."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .errors import InvalidTarget


@dataclass(frozen=True)
class ProjectTarget:
    project_id: int


@dataclass(frozen=True)
class CustomTarget:
    label: str


TaskTarget = Union[ProjectTarget, CustomTarget]


def parse_target(project_id: Optional[int], custom_task: Optional[str]) -> TaskTarget:
    """Build a target from the two wire fields, rejecting both/neither."""
    label = custom_task.strip() if isinstance(custom_task, str) else None
    if project_id is not None and label:
        raise InvalidTarget("Provide either project_id or custom_task, not both")
    if project_id is not None:
        return ProjectTarget(project_id=project_id)
    if label:
        return CustomTarget(label=label)
    raise InvalidTarget()


def target_columns(target: TaskTarget) -> dict:
    if isinstance(target, ProjectTarget):
        return {"project_id": target.project_id, "custom_task": None}
    return {"project_id": None, "custom_task": target.label}
