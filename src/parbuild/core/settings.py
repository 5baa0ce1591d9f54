"""
Centralized settings for parbuild.

Manifesto:
    One validated, cached settings object for the coordinator, and one
    small settings object for each worker process. Both read ``PARBUILD_*``
    environment variables (and a ``.env`` file for the coordinator), so the
    CLI only has to override what the user passed explicitly.

Examples:
    >>> from parbuild.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.concurrency
    1

    Environment overrides::

        PARBUILD_CONCURRENCY=4 PARBUILD_BARRIER_TIMEOUT_SECONDS=0 parbuild build

Tags:
    parbuild, configuration, settings, pydantic, environment
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

#: Environment variables the coordinator sets on every worker process.
ENV_TARGET = "PARBUILD_TARGET"
ENV_CHANNEL_HOST = "PARBUILD_CHANNEL_HOST"
ENV_CHANNEL_PORT = "PARBUILD_CHANNEL_PORT"
ENV_CONFIG_FILENAME = "PARBUILD_CONFIG_FILENAME"
ENV_LOG_LEVEL = "PARBUILD_LOG_LEVEL"


class BuildSettings(BaseSettings):
    """Coordinator configuration.

    All fields can be set via ``PARBUILD_*`` environment variables
    (e.g. ``PARBUILD_CONCURRENCY=4``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="PARBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Run ──────────────────────────────────────────────────────
    concurrency: int = Field(default=1, ge=1, description="Maximum simultaneous builds")
    watch: bool = Field(default=False)
    barrier_timeout_seconds: float | None = Field(
        default=30.0,
        description="Seconds to wait for every worker to become ready (0/None disables)",
    )

    # ── Channel ──────────────────────────────────────────────────
    channel_host: str = Field(default="127.0.0.1")
    channel_port: int = Field(default=0, description="0 picks a free port")

    # ── Discovery ────────────────────────────────────────────────
    config_filename: str = Field(default="parbuild.toml")
    packages_file: str = Field(default="packages.json")

    # ── Watch ────────────────────────────────────────────────────
    aggregate_timeout_ms: int = Field(default=300, ge=0)
    poll_interval_ms: int = Field(default=500, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="auto, json or console")

    @field_validator("barrier_timeout_seconds")
    @classmethod
    def _zero_disables_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    def json_logs(self) -> bool | None:
        """Translate ``log_format`` into the ``configure_logging`` flag."""
        return {"json": True, "console": False}.get(self.log_format.lower())


class WorkerSettings(BaseSettings):
    """Per-process settings for a worker, passed through the environment."""

    model_config = SettingsConfigDict(env_prefix="PARBUILD_", extra="ignore")

    target: str = Field(default_factory=lambda: str(Path.cwd()))
    channel_host: str = Field(default="127.0.0.1")
    channel_port: int
    config_filename: str = Field(default="parbuild.toml")
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> BuildSettings:
    """Return the cached coordinator settings."""
    return BuildSettings()


def clear_settings_cache() -> None:
    """Drop the cached settings (tests, config reloads)."""
    get_settings.cache_clear()


__all__ = [
    "BuildSettings",
    "WorkerSettings",
    "get_settings",
    "clear_settings_cache",
    "ENV_TARGET",
    "ENV_CHANNEL_HOST",
    "ENV_CHANNEL_PORT",
    "ENV_CONFIG_FILENAME",
    "ENV_LOG_LEVEL",
]
