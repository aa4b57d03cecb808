"""Configuration for the heartbeat agent."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "http://127.0.0.1:8080"
DEFAULT_HEARTBEAT_INTERVAL = 60


@dataclass(slots=True)
class AgentConfig:
    """Values the agent needs to talk to the API."""

    user_id: str
    api_base_url: str = DEFAULT_API_BASE_URL
    device_id: Optional[str] = None
    heartbeat_interval_seconds: int = DEFAULT_HEARTBEAT_INTERVAL


def load_config(env_path: Optional[Path] = None) -> AgentConfig:
    """Load configuration from the environment and an optional `.env` file."""

    env_path = env_path or Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    user_id = os.getenv("PROJECTTRACK_USER_ID")
    if not user_id:
        raise RuntimeError("PROJECTTRACK_USER_ID is not set")

    return AgentConfig(
        user_id=user_id,
        api_base_url=os.getenv("PROJECTTRACK_API_BASE_URL", DEFAULT_API_BASE_URL),
        device_id=os.getenv("PROJECTTRACK_DEVICE_ID") or None,
        heartbeat_interval_seconds=int(
            os.getenv("PROJECTTRACK_HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL)
        ),
    )


__all__ = ["AgentConfig", "load_config"]
