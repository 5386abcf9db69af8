"""Settings for activity-completion-upload.

Settings are stored as TOML at ~/.config/acu/config.toml (or the path in
ACU_CONFIG_PATH). ACU_DB_PATH and ACU_LOG_LEVEL override the file.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w

from acu.completion.retry import RetryPolicy
from acu.ledger.platform import COURSE_LOOKUP_FIELDS, USER_LOOKUP_FIELDS

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def get_default_config_path() -> Path:
    """Return the config file path, honouring ACU_CONFIG_PATH and XDG_CONFIG_HOME."""
    override = os.environ.get("ACU_CONFIG_PATH")
    if override:
        return Path(override).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / "acu" / "config.toml"


def get_default_db_path() -> Path:
    """Return the default database path under XDG_DATA_HOME."""
    base = os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share"
    return Path(base) / "acu" / "platform.db"


@dataclass
class Settings:
    """Upload configuration."""

    db_path: Path = field(default_factory=get_default_db_path)
    config_path: Path = field(default_factory=get_default_config_path)
    log_level: str = "INFO"
    # Columns the course and user values of an upload are matched against
    course_field: str = "shortname"
    user_field: str = "username"
    # Role users are enrolled with when they are not enrolled yet
    student_role: str = "student"
    # User on whose authority completions are overridden
    operator: str = "admin"
    retry_attempts: int = 10
    retry_interval_ms: int = 50

    def validate(self) -> list[str]:
        """Return a list of configuration errors (empty when valid)."""
        errors: list[str] = []
        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        if self.course_field not in COURSE_LOOKUP_FIELDS:
            errors.append(f"course_field must be one of {', '.join(COURSE_LOOKUP_FIELDS)}")
        if self.user_field not in USER_LOOKUP_FIELDS:
            errors.append(f"user_field must be one of {', '.join(USER_LOOKUP_FIELDS)}")
        if not self.student_role:
            errors.append("student_role must not be empty")
        if not self.operator:
            errors.append("operator must not be empty")
        if self.retry_attempts < 1:
            errors.append("retry_attempts must be at least 1")
        if self.retry_interval_ms < 0:
            errors.append("retry_interval_ms must not be negative")
        return errors

    def retry_policy(self) -> RetryPolicy:
        """Build the completion-record wait policy from these settings."""
        return RetryPolicy(
            attempts=self.retry_attempts,
            interval=self.retry_interval_ms / 1000,
        )

    def to_dict(self) -> dict[str, Any]:
        """Values persisted to the config file."""
        return {
            "db_path": str(self.db_path),
            "log_level": self.log_level,
            "course_field": self.course_field,
            "user_field": self.user_field,
            "student_role": self.student_role,
            "operator": self.operator,
            "retry_attempts": self.retry_attempts,
            "retry_interval_ms": self.retry_interval_ms,
        }


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from the config file, then apply environment overrides.

    A missing config file yields defaults.
    """
    config_path = config_path or get_default_config_path()
    settings = Settings(config_path=config_path)

    if config_path.exists():
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)

        if "db_path" in data:
            settings.db_path = Path(data["db_path"]).expanduser()
        for key in ("log_level", "course_field", "user_field", "student_role", "operator"):
            if key in data:
                setattr(settings, key, str(data[key]))
        for key in ("retry_attempts", "retry_interval_ms"):
            if key in data:
                setattr(settings, key, int(data[key]))
    else:
        logger.debug(f"No config file at {config_path}; using defaults")

    if db_override := os.environ.get("ACU_DB_PATH"):
        settings.db_path = Path(db_override).expanduser()
    if level_override := os.environ.get("ACU_LOG_LEVEL"):
        settings.log_level = level_override.upper()

    return settings


def save_settings(settings: Settings) -> None:
    """Write settings to their config file."""
    settings.config_path.parent.mkdir(parents=True, exist_ok=True)
    with settings.config_path.open("wb") as handle:
        tomli_w.dump(settings.to_dict(), handle)


def ensure_directories(settings: Settings) -> None:
    """Create the config and database directories."""
    settings.config_path.parent.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(log_level: str) -> None:
    """Apply the configured level to the acu logger tree.

    Leaves logging alone when --verbose has already enabled debug output.
    """
    acu_logger = logging.getLogger("acu")
    if acu_logger.level == logging.DEBUG:
        return
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT, datefmt="%H:%M:%S")
    acu_logger.setLevel(log_level.upper())


def enable_debug_logging() -> None:
    """Send debug output from every logger (SQL and migrations included) to stderr."""
    logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT, datefmt="%H:%M:%S")
    logging.getLogger("acu").setLevel(logging.DEBUG)
