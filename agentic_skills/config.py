"""
Runtime configuration via pydantic-settings.

All settings are loaded from environment variables prefixed with
``AGENTIC_SKILLS_`` (or a .env file in dev). Registries, loaders and the
bootstrap read their defaults from here; explicit constructor arguments
always win.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AGENTIC_SKILLS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON lines instead of the dev console format",
    )

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #
    default_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description=(
            "Deadline applied to execute() calls that do not pass their own timeout. "
            "Leave unset for no deadline."
        ),
    )
    max_concurrent_executions: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Maximum number of skill lifecycles running at once per event loop",
    )

    # ------------------------------------------------------------------ #
    # Skill discovery
    # ------------------------------------------------------------------ #
    skills_dir: Path | None = Field(
        default=None,
        description="Directory of <skill-name>/SKILL.md definitions loaded at bootstrap",
    )
    load_builtin_skills: bool = Field(
        default=True,
        description="Register the built-in skills (web-scraping, form-filling, data-validation) at bootstrap",
    )
    max_description_chars: int = Field(
        default=512,
        ge=16,
        description="Description length cap for skill summaries",
    )

    @model_validator(mode="after")
    def _apply_environment_defaults(self) -> "Settings":
        """Enable debug in dev and require machine-readable logs in production."""
        if self.environment == Environment.DEV:
            self.debug = True
        if self.environment == Environment.PROD and not self.json_logs:
            raise ValueError(
                "json_logs must be enabled in production so log shipping can parse events"
            )
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
