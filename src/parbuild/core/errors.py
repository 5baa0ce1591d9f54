"""
Structured error types for parbuild.

Every failure the coordinator or a worker can observe is expressed as a
``ParbuildError`` subclass carrying a category, structured context and an
optional chained cause. The coordinator is the single aggregation point for
worker failures; these types are what it hands back to the caller.

Manifesto:
    - **Typed Error Hierarchy:** Different error types for different stages
    - **Rich Context:** Errors carry the target and run they belong to
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      ParbuildError                            │
        │              (category, context, cause)                       │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  ConfigError        ProtocolError       SpawnError            │
        │  (CONFIG)           (PROTOCOL)          (PROCESS)             │
        │     │                                                         │
        │  MissingConfig      BuildError          CoordinationError     │
        │  InvalidConfig      (BUILD)             (COORDINATION)        │
        │                                            │                  │
        │                                  BuildFailedError             │
        │                                  BarrierTimeoutError          │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = BuildFailedError("/src/app", "syntax error")
    >>> error.target
    '/src/app'
    >>> error.to_dict()["category"]
    'BUILD'

    Adding context fluently:

    >>> error = SpawnError("worker did not start").with_context(target="/src/app")
    >>> error.context.target
    '/src/app'

Guardrails:
    ❌ DON'T: Raise bare Exception from coordinator code paths
    ✅ DO: Use the matching ParbuildError subclass

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, error-context, parbuild
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and log routing.

    Attributes:
        CONFIG: Missing or invalid settings, unreadable build configuration
        PROTOCOL: Malformed or unexpected channel messages
        PROCESS: Worker process could not be started or signalled
        BUILD: The build tool reported a failure
        COORDINATION: Run-level failures (first build failure, stalled barrier)
        INTERNAL: Bugs, unexpected state
    """

    CONFIG = "CONFIG"
    PROTOCOL = "PROTOCOL"
    PROCESS = "PROCESS"
    BUILD = "BUILD"
    COORDINATION = "COORDINATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        target: Target the error relates to
        run_id: Coordinator run identifier
        pid: Worker process id, if one was running
        metadata: Additional key-value pairs
    """

    target: str | None = None
    run_id: str | None = None
    pid: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["target", "run_id", "pid"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ParbuildError(Exception):
    """
    Base exception for all parbuild errors.

    Subclasses set ``default_category`` to classify themselves. All
    instances carry a message, a category, an :class:`ErrorContext` and an
    optional ``cause`` which is also chained as ``__cause__``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ParbuildError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SpawnError("failed").with_context(target="/src/app", pid=42)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }

        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict

        if self.cause is not None:
            result["cause"] = str(self.cause)

        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(ParbuildError):
    """
    Configuration error.

    Raised for invalid run parameters and unreadable build configuration.
    """

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None, **kwargs: Any):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}", **kwargs)


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None, **kwargs: Any):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}", **kwargs)


# =============================================================================
# CHANNEL / PROCESS ERRORS
# =============================================================================


class ProtocolError(ParbuildError):
    """A channel frame could not be decoded or was not expected."""

    default_category = ErrorCategory.PROTOCOL


class SpawnError(ParbuildError):
    """A worker process could not be launched."""

    default_category = ErrorCategory.PROCESS


# =============================================================================
# BUILD ERRORS
# =============================================================================


class BuildError(ParbuildError):
    """The build command for a target failed."""

    default_category = ErrorCategory.BUILD

    def __init__(self, message: str, *, returncode: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.returncode = returncode

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.returncode is not None:
            result["returncode"] = self.returncode
        return result


# =============================================================================
# COORDINATION ERRORS
# =============================================================================


class CoordinationError(ParbuildError):
    """A run reached a failed outcome."""

    default_category = ErrorCategory.COORDINATION


class BuildFailedError(CoordinationError):
    """
    The first worker failure of a one-shot run.

    This is the single aggregate reason the completion signal rejects with.
    """

    default_category = ErrorCategory.BUILD

    def __init__(self, target: str, error: str, **kwargs: Any):
        self.target = target
        self.error = error
        super().__init__(f"An error occurred while building {target}: {error}", **kwargs)
        self.context.target = target


class BarrierTimeoutError(CoordinationError):
    """Some workers never announced readiness within the barrier timeout."""

    def __init__(self, missing: Iterable[str], timeout: float, **kwargs: Any):
        self.missing = list(missing)
        self.timeout = timeout
        super().__init__(
            f"{len(self.missing)} worker(s) not ready after {timeout:g}s: {', '.join(self.missing)}",
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["missing"] = self.missing
        result["timeout"] = self.timeout
        return result


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ParbuildError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "ProtocolError",
    "SpawnError",
    "BuildError",
    "CoordinationError",
    "BuildFailedError",
    "BarrierTimeoutError",
]
