"""
Core primitives shared by the coordinator, the workers and the CLI.

Modules
-------
errors      ParbuildError hierarchy
logging     structlog configuration and get_logger()
settings    BuildSettings / WorkerSettings (pydantic-settings)
"""

from parbuild.core.errors import (
    BarrierTimeoutError,
    BuildError,
    BuildFailedError,
    ConfigError,
    CoordinationError,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    MissingConfigError,
    ParbuildError,
    ProtocolError,
    SpawnError,
)
from parbuild.core.logging import LogContext, configure_logging, get_logger
from parbuild.core.settings import BuildSettings, WorkerSettings, get_settings

__all__ = [
    "BarrierTimeoutError",
    "BuildError",
    "BuildFailedError",
    "BuildSettings",
    "ConfigError",
    "CoordinationError",
    "ErrorCategory",
    "ErrorContext",
    "InvalidConfigError",
    "LogContext",
    "MissingConfigError",
    "ParbuildError",
    "ProtocolError",
    "SpawnError",
    "WorkerSettings",
    "configure_logging",
    "get_logger",
    "get_settings",
]
