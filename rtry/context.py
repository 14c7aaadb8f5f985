"""Per-attempt context and outcome objects handed to operations, deciders and hooks."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .metadata import dedupe


class AttemptContext:
    """
    Snapshot of where a retry sequence stands when an attempt starts.

    Immutable except for ``remaining_budget_ms``, which the engine zeroes when
    a deadline check forces give-up.
    """

    __slots__ = (
        "_attempt_number",
        "_max_attempts",
        "_scheduled_delay_ms",
        "_elapsed_since_first_ms",
        "remaining_budget_ms",
        "_context",
    )

    def __init__(
        self,
        attempt_number: int,
        max_attempts: int,
        scheduled_delay_ms: int,
        elapsed_since_first_ms: int,
        remaining_budget_ms: Optional[int],
        context: Optional[Mapping[str, Any]] = None,
    ):
        self._attempt_number = attempt_number
        self._max_attempts = max_attempts
        self._scheduled_delay_ms = scheduled_delay_ms
        self._elapsed_since_first_ms = elapsed_since_first_ms
        self.remaining_budget_ms = remaining_budget_ms
        self._context: Mapping[str, Any] = MappingProxyType(dict(context or {}))

    @property
    def attempt_number(self) -> int:
        return self._attempt_number

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def scheduled_delay_ms(self) -> int:
        """Delay slept before this attempt."""
        return self._scheduled_delay_ms

    @property
    def elapsed_since_first_ms(self) -> int:
        return self._elapsed_since_first_ms

    @property
    def context(self) -> Mapping[str, Any]:
        """Caller context, extended by classifier patches from earlier attempts."""
        return self._context

    @property
    def is_last_attempt(self) -> bool:
        return self._attempt_number >= self._max_attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_number": self._attempt_number,
            "max_attempts": self._max_attempts,
            "scheduled_delay_ms": self._scheduled_delay_ms,
            "elapsed_since_first_ms": self._elapsed_since_first_ms,
            "remaining_budget_ms": self.remaining_budget_ms,
            "context": dict(self._context),
        }

    def __repr__(self) -> str:
        return (
            f"AttemptContext(attempt={self._attempt_number}/{self._max_attempts}, "
            f"scheduled_delay_ms={self._scheduled_delay_ms}, "
            f"elapsed_since_first_ms={self._elapsed_since_first_ms}, "
            f"remaining_budget_ms={self.remaining_budget_ms})"
        )


@dataclass
class AttemptOutcome:
    """Result of an attempt: a value, or an error with its classification."""

    result: Any = None
    error: Optional[BaseException] = None
    status_code: Optional[int] = None
    tags: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.tags = dedupe(self.tags)

    @property
    def is_success(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the result, raising the recorded error for a failed outcome."""
        if self.error is not None:
            raise self.error
        return self.result


__all__ = ["AttemptContext", "AttemptOutcome"]
