"""Application-level exception types.

Startup failures (configuration, binding) and per-connection I/O failures are
raised as subclasses of AppError so the entry point can report them uniformly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for logs."""

    hint: str
    setting: str
    port: int
    peer: str
    step: str


@dataclass
class AppError(Exception):
    """Base error for service failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when settings or the quote corpus are unusable."""


class BindAppError(AppError):
    """Raised when the listening socket cannot be set up."""


class ConnectionAppError(AppError):
    """Raised when accepting, writing to or closing one connection fails."""
