"""HTTP client for the ProjectTrack API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from urllib.parse import urljoin

import requests

from .models import TrackingStatus


class ApiError(RuntimeError):
    """Raised when the API cannot be reached or answers with an error."""

    def __init__(self, message: str, *, response: Optional[requests.Response] = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None


class ApiClient:
    """Wraps the session endpoints the desktop side needs."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        device_id: Optional[str] = None,
        timeout: int = 15,
    ) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.user_id = user_id
        self.device_id = device_id
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "X-User-Id": self.user_id}

    def _request(self, method: str, path: str, **kwargs):
        url = urljoin(self.base_url, path.lstrip("/"))
        kwargs.setdefault("timeout", self.timeout)
        headers = kwargs.setdefault("headers", {})
        headers.update(self._headers())
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(str(exc)) from exc

        if response.status_code >= 400:
            raise ApiError(f"API error {response.status_code}: {response.text}", response=response)

        if response.headers.get("Content-Type", "").startswith("application/json"):
            return response.json()
        return response.content

    def _device_payload(self) -> dict[str, Any]:
        return {"device_id": self.device_id} if self.device_id else {}

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------
    def start_tracking(
        self,
        *,
        project_id: Optional[int] = None,
        custom_task: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TrackingStatus:
        payload = {"project_id": project_id, "custom_task": custom_task, "notes": notes}
        payload.update(self._device_payload())
        return self._to_status(self._request("POST", "/work/start", json=payload))

    def pause_tracking(self) -> TrackingStatus:
        return self._to_status(self._request("POST", "/work/pause", json=self._device_payload()))

    def resume_tracking(self) -> TrackingStatus:
        return self._to_status(self._request("POST", "/work/resume", json=self._device_payload()))

    def stop_tracking(self, notes: Optional[str] = None) -> TrackingStatus:
        payload = self._device_payload()
        if notes:
            payload["notes"] = notes
        return self._to_status(self._request("POST", "/work/stop", json=payload))

    def send_heartbeat(self) -> TrackingStatus:
        return self._to_status(self._request("POST", "/work/heartbeat"))

    def get_tracking_status(self) -> Optional[TrackingStatus]:
        try:
            data = self._request("GET", "/work/current")
        except ApiError as exc:
            if exc.status_code == 404:
                return None
            raise
        return self._to_status(data)

    @classmethod
    def _to_status(cls, data: dict[str, Any]) -> TrackingStatus:
        return TrackingStatus(
            session_id=int(data["id"]),
            status=data.get("status", ""),
            target_name=data.get("target_name", ""),
            total_minutes_now=float(data.get("total_minutes_now", 0.0)),
            open_since=cls._parse_datetime(data.get("open_since")),
            last_liveness_at=cls._parse_datetime(data.get("last_liveness_at")),
        )

    @staticmethod
    def _parse_datetime(value: Optional[str]):
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:  # pragma: no cover - malformed server timestamp
            return None


__all__ = ["ApiClient", "ApiError"]
