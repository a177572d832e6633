"""Lifecycle engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SENSITIVE_KEYS: tuple[str, ...] = (
    "password",
    "secret",
    "key",
    "token",
    "credential",
    "private",
)


class TriggerBackend(str, Enum):
    NONE = "none"
    CRONTAB = "crontab"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with LIFECYCLE_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="LIFECYCLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    debug: bool = False

    # Storage
    state_root: Path = Path(".lifecycle")
    state_file_name: str = "terraform.tfstate"

    # Provisioning tool
    provisioning_binary: str = "tofu"
    provisioning_timeout_seconds: int = 1800
    max_retries: int = 3
    retry_backoff_base: float = 2.0
    retry_max_delay: float = 60.0

    # Redaction
    sensitive_keys: list[str] = list(DEFAULT_SENSITIVE_KEYS)
    redaction_sentinel: str = "[REDACTED]"

    # Retention
    default_retention_count: int = 10

    # Lock TTL
    lock_ttl_seconds: int = 3600

    # Scheduler
    scheduler_poll_interval: float = 60.0
    task_timeout_seconds: float = 3600.0
    repository_poll_interval_minutes: int = 5
    trigger_backend: TriggerBackend = TriggerBackend.NONE

    # Telemetry
    structured_logging: bool = False

    @field_validator("sensitive_keys", mode="after")
    @classmethod
    def normalise_sensitive_keys(cls, v: list[str]) -> list[str]:
        keys = [k.strip().lower() for k in v if k.strip()]
        if not keys:
            raise ValueError("sensitive_keys must contain at least one entry")
        return keys

    @property
    def deployments_dir(self) -> Path:
        return self.state_root / "deployments"

    @property
    def snapshots_dir(self) -> Path:
        return self.state_root / "snapshots"

    @property
    def archive_dir(self) -> Path:
        return self.state_root / "automation-archive"

    @property
    def locks_dir(self) -> Path:
        return self.state_root / "locks"


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings (state root: %s)", settings.state_root)

    return settings
