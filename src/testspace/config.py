"""Package configuration using pydantic-settings.

TestspaceSettings reads optional overrides from environment variables
with the TESTSPACE_ prefix. Every field has a default, so the package
works with no configuration at all.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TestspaceSettings(BaseSettings):
    """Workspace engine configuration from environment variables.

    All environment variables are prefixed with TESTSPACE_
    (e.g., TESTSPACE_BASE_DIR).
    """

    __test__ = False

    model_config = SettingsConfigDict(
        env_prefix="TESTSPACE_",
        case_sensitive=False,
    )

    # Parent directory for generated workspaces; system temp dir when unset
    base_dir: Optional[str] = None

    # Deadline for `git init` during provisioning
    git_init_timeout: float = 3.0

    # Deadline applied to execute() calls that do not pass their own
    default_timeout: Optional[float] = None

    # Level applied by configure_logging()
    log_level: str = "WARNING"

    @field_validator("base_dir")
    @classmethod
    def validate_base_dir(cls, v: Optional[str]) -> Optional[str]:
        """Validate that the base directory is an absolute path."""
        if v is None:
            return v
        if not Path(v).is_absolute():
            raise ValueError("base_dir must be an absolute path")
        return v

    @field_validator("git_init_timeout")
    @classmethod
    def validate_git_init_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("git_init_timeout must be positive")
        return v

    @field_validator("default_timeout")
    @classmethod
    def validate_default_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("default_timeout must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a standard logging level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level


def get_settings() -> TestspaceSettings:
    """Create and return a TestspaceSettings instance.

    Returns:
        TestspaceSettings: Settings read from the current environment.

    Raises:
        pydantic.ValidationError: If an override is invalid.
    """
    return TestspaceSettings()


def configure_logging(level: Optional[str] = None) -> None:
    """Set the level of the package logger.

    The package never installs handlers; this only adjusts the level so
    that callers who already configured logging see the detail they want.

    Args:
        level: Level name; defaults to the configured log_level.
    """
    effective_level = level or get_settings().log_level
    logging.getLogger("testspace").setLevel(effective_level.upper())
