from __future__ import annotations

import os
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "FocusFlow"
    environment: str = "development"
    host: str = os.getenv("FF_HOST", "127.0.0.1")
    port: int = int(os.getenv("FF_PORT", "8080"))

    storage_backend: str = os.getenv("FF_STORAGE", "sqlite")
    sqlite_path: Path = Path(os.getenv("FF_SQLITE_PATH", "./data/focusflow.db"))
    namespace_mode: str = os.getenv("FF_NAMESPACE_MODE", "per_user")

    # Unset means the host's local zone
    timezone: Optional[str] = os.getenv("TZ") or None

    user_id: str = os.getenv("FF_USER_ID", "local")
    user_name: Optional[str] = os.getenv("FF_USER_NAME")
    user_email: Optional[str] = os.getenv("FF_USER_EMAIL")
    user_avatar: Optional[str] = os.getenv("FF_USER_AVATAR")

    tick_interval_seconds: float = float(os.getenv("FF_TICK_INTERVAL", "1"))
    reset_check_interval_seconds: float = float(os.getenv("FF_RESET_CHECK_INTERVAL", "60"))
    inbox_clear_delay_seconds: float = float(os.getenv("FF_INBOX_CLEAR_DELAY", "2"))
    reminder_clear_delay_seconds: float = float(os.getenv("FF_REMINDER_CLEAR_DELAY", "1"))

    default_daily_goal_seconds: int = int(os.getenv("FF_DAILY_GOAL", "28800"))

    log_level: str = os.getenv("FF_LOG_LEVEL", "INFO")
    log_dir: Optional[Path] = Path(os.environ["FF_LOG_DIR"]) if os.getenv("FF_LOG_DIR") else None

    @field_validator("storage_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"memory", "sqlite"}:
            raise ValueError(f"Unsupported storage backend: {value}")
        return value

    @field_validator("namespace_mode")
    @classmethod
    def _check_namespace(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"per_user", "flat"}:
            raise ValueError(f"Unsupported namespace mode: {value}")
        return value

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.timezone) if self.timezone else None


settings = Settings()

# Ensure essential directories exist
if settings.storage_backend == "sqlite":
    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
