"""
Exception hierarchy for rtry.

Errors raised by the wrapped operation are never wrapped or replaced: the
engine re-raises them unchanged. The classes below cover the library's own
failure modes: invalid configuration, malformed duration tokens and the
synthetic errors the engine produces when it has to give up without any
operation error to propagate.

Each exception includes:
- Unique error code for logging and debugging
- Descriptive message
- Optional context dictionary for additional debugging info
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# =============================================================================
# BASE EXCEPTIONS
# =============================================================================

@dataclass(eq=False)
class RtryError(Exception):
    """
    Base exception for all rtry errors.

    Attributes:
        message: Human-readable error description
        error_code: Unique identifier for the error type (e.g., "RETRY_001")
        context: Optional dictionary with debugging information
        timestamp: When the error occurred
    """
    message: str
    error_code: str = "GENERAL_001"
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message with code and context."""
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base += f" | Context: {context_str}"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        return self.format_message()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r})"
        )


@dataclass(eq=False)
class ConfigurationError(RtryError):
    """Invalid policy or component configuration."""
    error_code: str = "CONFIG_001"


# =============================================================================
# VALIDATION EXCEPTIONS
# =============================================================================

@dataclass(eq=False)
class ValidationError(RtryError):
    """Base exception for validation errors."""
    error_code: str = "VAL_000"


@dataclass(eq=False)
class InvalidDurationError(ValidationError, ValueError):
    """Duration token is empty or does not match <number>[ms|s|m|h]."""
    error_code: str = "VAL_001"
    token: Optional[str] = None


# =============================================================================
# RETRY EXCEPTIONS
# =============================================================================

@dataclass(eq=False)
class RetryError(RtryError):
    """
    Base exception for errors synthesized by the retry engine.

    Only raised when the engine must stop and no operation error exists yet.
    """
    error_code: str = "RETRY_000"
    attempts: int = 0
    elapsed_ms: int = 0


@dataclass(eq=False)
class DeadlineExceededError(RetryError):
    """Deadline budget exhausted before any attempt failed."""
    error_code: str = "RETRY_001"
    deadline_budget_ms: Optional[int] = None


@dataclass(eq=False)
class StartAfterExceedsDeadlineError(RetryError):
    """The delay before the first attempt would overrun the deadline."""
    error_code: str = "RETRY_002"
    start_after_ms: Optional[int] = None


@dataclass(eq=False)
class RetryExhaustedError(RetryError):
    """Attempt loop ended without a result and without a recorded error."""
    error_code: str = "RETRY_003"


# =============================================================================
# EXCEPTION MAPPING
# =============================================================================

ERROR_CODE_MAP: dict[str, type[RtryError]] = {
    "GENERAL_001": RtryError,
    "CONFIG_001": ConfigurationError,
    "VAL_000": ValidationError,
    "VAL_001": InvalidDurationError,
    "RETRY_000": RetryError,
    "RETRY_001": DeadlineExceededError,
    "RETRY_002": StartAfterExceedsDeadlineError,
    "RETRY_003": RetryExhaustedError,
}


__all__ = [
    "RtryError",
    "ConfigurationError",
    "ValidationError",
    "InvalidDurationError",
    "RetryError",
    "DeadlineExceededError",
    "StartAfterExceedsDeadlineError",
    "RetryExhaustedError",
    "ERROR_CODE_MAP",
]
