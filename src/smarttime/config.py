"""Configuration management for SmartTime."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import SettingsLoadError

logger = logging.getLogger(__name__)

DEFAULT_ROOT = Path("~/.coft.smarttime")
DEFAULT_INTERVAL_SECONDS = 60


class SmartTimeSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    root: Path = Field(default=DEFAULT_ROOT, validation_alias="SMARTTIME_ROOT")
    interval_seconds: int = Field(
        default=DEFAULT_INTERVAL_SECONDS, validation_alias="SMARTTIME_INTERVAL_SECONDS"
    )
    queue_interval_seconds: float = Field(
        default=10.0, validation_alias="SMARTTIME_QUEUE_INTERVAL_SECONDS"
    )
    collection_interval_seconds: float = Field(
        default=3600.0, validation_alias="SMARTTIME_COLLECTION_INTERVAL_SECONDS"
    )
    max_failures: int = Field(default=5, validation_alias="SMARTTIME_MAX_FAILURES")
    lock_timeout_ms: int = Field(default=1000, validation_alias="SMARTTIME_LOCK_TIMEOUT_MS")
    lock_max_age_seconds: float = Field(
        default=300.0, validation_alias="SMARTTIME_LOCK_MAX_AGE_SECONDS"
    )
    export_dir: Path | None = Field(default=None, validation_alias="SMARTTIME_EXPORT_DIR")
    export_age_days: int = Field(default=90, validation_alias="SMARTTIME_EXPORT_AGE_DAYS")
    git_path: str | None = Field(default=None, validation_alias="SMARTTIME_GIT_PATH")
    log_level: str = Field(default="INFO", validation_alias="SMARTTIME_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SMARTTIME_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("root", mode="before")
    @classmethod
    def _parse_root(cls, value):
        if value is None or value == "":
            return DEFAULT_ROOT
        text = str(value)
        if "\0" in text:
            raise ValueError("SMARTTIME_ROOT must not contain null bytes")
        return Path(text)

    @field_validator("export_dir", mode="before")
    @classmethod
    def _parse_export_dir(cls, value):
        if value is None or value == "":
            return None
        candidate = Path(str(value)).expanduser()
        if "\0" in str(value) or not candidate.is_absolute():
            logger.warning("Export directory is not a valid absolute path, export disabled: %s", value)
            return None
        return candidate

    @field_validator("interval_seconds")
    @classmethod
    def _validate_interval(cls, value: int) -> int:
        if value < 60 or value > 300:
            logger.warning(
                "interval_seconds (%s) is out of range, using default %s",
                value,
                DEFAULT_INTERVAL_SECONDS,
            )
            return DEFAULT_INTERVAL_SECONDS
        return value

    @field_validator("queue_interval_seconds", "collection_interval_seconds", "lock_max_age_seconds")
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("intervals and lock max age must be > 0")
        return value

    @field_validator("max_failures", "export_age_days")
    @classmethod
    def _validate_at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SMARTTIME_MAX_FAILURES and SMARTTIME_EXPORT_AGE_DAYS must be >= 1")
        return value

    @field_validator("lock_timeout_ms")
    @classmethod
    def _validate_lock_timeout(cls, value: int) -> int:
        if value < 0:
            raise ValueError("SMARTTIME_LOCK_TIMEOUT_MS must be >= 0")
        return value

    @property
    def queue(self) -> Path:
        return self.root / "queue"

    @property
    def queue_batch(self) -> Path:
        return self.root / "queue_batch"

    @property
    def queue_backup(self) -> Path:
        return self.root / "queue_backup"

    @property
    def operation_queue(self) -> Path:
        return self.root / "operation_queue"

    @property
    def operation_queue_backup(self) -> Path:
        return self.root / "operation_queue_backup"

    @property
    def data(self) -> Path:
        return self.root / "data"

    @property
    def backup(self) -> Path:
        return self.root / "backup"

    @property
    def batches(self) -> Path:
        return self.data / "batches"

    def directories(self) -> tuple[Path, ...]:
        """Return every directory the service expects to exist."""

        return (
            self.queue,
            self.queue_batch,
            self.queue_backup,
            self.operation_queue,
            self.operation_queue_backup,
            self.data,
            self.batches,
            self.data / "reports",
            self.backup,
        )


def load_settings(path: Path | None = None, **overrides: Any) -> SmartTimeSettings:
    """Build settings from the environment, overlaid by an optional YAML file.

    Values from the YAML document take precedence over environment variables;
    explicit keyword overrides take precedence over both.
    """

    document: dict[str, Any] = {}
    if path is not None:
        try:
            loaded = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise SettingsLoadError(f"Failed to read settings file {path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise SettingsLoadError(f"Settings file {path} must contain a mapping")
        document.update(loaded)
    document.update(overrides)

    try:
        settings = SmartTimeSettings(**document)
    except ValidationError as exc:
        raise SettingsLoadError(f"Invalid settings: {exc}") from exc

    settings.root = settings.root.expanduser().resolve()
    return settings


@lru_cache(maxsize=1)
def get_settings() -> SmartTimeSettings:
    """Return cached settings instance."""

    config_path = os.environ.get("SMARTTIME_CONFIG")
    return load_settings(Path(config_path) if config_path else None)


__all__ = ["SmartTimeSettings", "get_settings", "load_settings"]
