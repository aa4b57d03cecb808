from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status


class TrackingError(HTTPException):
    """Base for domain errors; rendered by FastAPI like any HTTPException."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(
            status_code=type(self).status_code,
            detail={"error": self.code, "message": self.message},
        )


class InvalidTarget(TrackingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_target"
    default_message = "Exactly one of project_id or custom_task is required"


class Unauthenticated(TrackingError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    default_message = "Missing caller identity"


class Forbidden(TrackingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Forbidden"


class NotFound(TrackingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class ConflictAlreadyActive(TrackingError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict_already_active"
    default_message = "An active session already exists."


class Transient(TrackingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "transient"
    default_message = "Store unavailable, retry the request"
