from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import List

from typing_extensions import Annotated

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="TT_", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "ProjectTrack"
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "INFO"
    cors_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["http://127.0.0.1:5173", "http://localhost:5173"]
    )

    sqlite_path: Path = Path("./data/projecttrack.db")
    store_timeout_seconds: float = 5.0

    timezone: str = "Europe/Berlin"

    sweep_enabled: bool = True
    sweep_interval_seconds: int = 300
    liveness_timeout_minutes: float = 10
    grace_minutes: float = 2

    manual_anchor: str = "09:00"
    reviewer_role: str = "admin"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("manual_anchor")
    @classmethod
    def _check_anchor(cls, value: str) -> str:
        dt.time.fromisoformat(value)
        return value

    @computed_field
    def manual_anchor_time(self) -> dt.time:
        return dt.time.fromisoformat(self.manual_anchor)


settings = Settings()

settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
