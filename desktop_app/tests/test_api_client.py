from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any

import pytest
import requests

from projecttrack_agent import api_client as api_module
from projecttrack_agent.api_client import ApiClient, ApiError
from projecttrack_agent.config import load_config
from projecttrack_agent.heartbeat import HeartbeatLoop

SESSION_JSON = {
    "id": 7,
    "status": "active",
    "target_name": "Onboarding Course",
    "total_minutes_now": 12.5,
    "open_since": "2024-03-04T09:00:00+00:00",
    "last_liveness_at": None,
}


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers = {"Content-Type": "application/json"}
        self.text = str(payload)
        self.content = b""

    def json(self) -> Any:
        return self._payload


@pytest.fixture()
def calls(monkeypatch):
    recorded: list[dict[str, Any]] = []
    responses: list[FakeResponse] = []

    def fake_request(method, url, **kwargs):
        recorded.append({"method": method, "url": url, **kwargs})
        return responses.pop(0)

    monkeypatch.setattr(api_module.requests, "request", fake_request)
    return recorded, responses


def test_start_sends_identity_and_device(calls):
    recorded, responses = calls
    responses.append(FakeResponse(201, SESSION_JSON))
    client = ApiClient("http://api.local/", "emp-1", device_id="laptop-7", timeout=3)

    status = client.start_tracking(project_id=4, notes="Kickoff")

    call = recorded[0]
    assert call["method"] == "POST"
    assert call["url"] == "http://api.local/work/start"
    assert call["headers"]["X-User-Id"] == "emp-1"
    assert call["timeout"] == 3
    assert call["json"] == {"project_id": 4, "custom_task": None, "notes": "Kickoff", "device_id": "laptop-7"}
    assert status.session_id == 7
    assert status.is_running
    assert status.total_minutes_now == 12.5
    assert status.open_since == datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
    assert status.last_liveness_at is None


def test_stop_only_sends_notes_when_given(calls):
    recorded, responses = calls
    responses.extend([FakeResponse(200, dict(SESSION_JSON, status="stopped"))] * 2)
    client = ApiClient("http://api.local", "emp-1")

    client.stop_tracking()
    stopped = client.stop_tracking("Done")

    assert recorded[0]["json"] == {}
    assert recorded[1]["json"] == {"notes": "Done"}
    assert not stopped.is_running


def test_status_is_none_without_open_session(calls):
    _, responses = calls
    responses.append(FakeResponse(404, {"detail": {"error": "not_found"}}))
    assert ApiClient("http://api.local", "emp-1").get_tracking_status() is None


def test_error_responses_raise(calls):
    _, responses = calls
    responses.append(FakeResponse(409, {"detail": {"error": "conflict_already_active"}}))
    with pytest.raises(ApiError) as excinfo:
        ApiClient("http://api.local", "emp-1").start_tracking(custom_task="Alpha")
    assert excinfo.value.status_code == 409


def test_network_failure_raises_api_error(monkeypatch):
    def boom(method, url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(api_module.requests, "request", boom)
    with pytest.raises(ApiError) as excinfo:
        ApiClient("http://api.local", "emp-1").send_heartbeat()
    assert excinfo.value.status_code is None


def test_heartbeat_beat_reports_outcome(calls):
    recorded, responses = calls
    responses.extend(
        [
            FakeResponse(200, SESSION_JSON),
            FakeResponse(404, {"detail": {"error": "not_found"}}),
            FakeResponse(503, {"detail": {"error": "transient"}}),
        ]
    )
    loop = HeartbeatLoop(ApiClient("http://api.local", "emp-1"), interval=60)

    assert loop.beat() is True
    assert loop.beat() is False
    assert loop.beat() is False
    assert [call["url"] for call in recorded] == ["http://api.local/work/heartbeat"] * 3


def test_load_config_reads_env_file(tmp_path, monkeypatch):
    for name in (
        "PROJECTTRACK_USER_ID",
        "PROJECTTRACK_API_BASE_URL",
        "PROJECTTRACK_DEVICE_ID",
        "PROJECTTRACK_HEARTBEAT_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text(
        "PROJECTTRACK_USER_ID=emp-9\n"
        "PROJECTTRACK_API_BASE_URL=http://tracker:9000\n"
        "PROJECTTRACK_HEARTBEAT_INTERVAL=30\n"
    )

    config = load_config(env_file)

    assert config.user_id == "emp-9"
    assert config.api_base_url == "http://tracker:9000"
    assert config.device_id is None
    assert config.heartbeat_interval_seconds == 30


def test_load_config_requires_user(tmp_path, monkeypatch):
    monkeypatch.delenv("PROJECTTRACK_USER_ID", raising=False)
    with pytest.raises(RuntimeError):
        load_config(tmp_path / "missing.env")


def test_pause_and_resume_send_device(calls):
    recorded, responses = calls
    responses.extend(
        [
            FakeResponse(200, dict(SESSION_JSON, status="paused", open_since=None)),
            FakeResponse(200, SESSION_JSON),
        ]
    )
    client = ApiClient("http://api.local", "emp-1", device_id="desk-2")

    paused = client.pause_tracking()
    resumed = client.resume_tracking()

    assert [call["url"] for call in recorded] == ["http://api.local/work/pause", "http://api.local/work/resume"]
    assert all(call["json"] == {"device_id": "desk-2"} for call in recorded)
    assert not paused.is_running
    assert paused.open_since is None
    assert resumed.is_running


class CountingClient:
    def __init__(self) -> None:
        self.beats = 0
        self.reached = threading.Event()

    def send_heartbeat(self):
        self.beats += 1
        if self.beats >= 2:
            self.reached.set()


def test_heartbeat_thread_beats_until_stopped():
    client = CountingClient()
    loop = HeartbeatLoop(client, interval=0.01)

    loop.start()
    assert client.reached.wait(timeout=5)
    loop.stop(timeout=5)

    assert loop._thread is None
    stopped_at = client.beats
    assert stopped_at >= 2
    time.sleep(0.05)
    assert client.beats == stopped_at
