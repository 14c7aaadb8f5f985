"""
Retry policy.

A policy aggregates everything the engine needs to drive a retry sequence:
attempt count, timing budgets, the backoff model (linear, exponential or an
explicit sequence), jitter, cap, hedge parameters, the decider and the
failure classifier. It also computes the nominal delay before each attempt.

Delay formulas (``n`` is the attempt number, 1-based):

- linear:      ``max(1, n - 1) * delay_ms``
- sequence:    ``sequence.delay_by_position(n)`` or 0
- exponential: ``round(start_after_ms * base ** (max(0, n - 1) - 1))``

The nominal delay is then jittered (seeded when ``seed`` is set) and finally
clamped to ``cap_ms`` when a cap is configured.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Union

from .classifier import RuleBasedFailureClassifier
from .deciders import AlwaysRetryDecider, RetryDecider, TokenDecider
from .duration import format_ms
from .exceptions import ConfigurationError
from .hedge import Hedge
from .jitter import Jitter
from .sequence import Sequence
from .tokens import Token

logger = logging.getLogger(__name__)

# Ceiling for exponential delays, also used when one is too large to compute
MAX_DELAY_MS = 2**31 - 1


class BackoffMode(str, Enum):
    """Backoff models."""
    LINEAR = "lin"
    EXPONENTIAL = "exp"
    SEQUENCE = "seq"

    @classmethod
    def parse(cls, value: Union[str, "BackoffMode"]) -> "BackoffMode":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        aliases = {
            "lin": cls.LINEAR,
            "linear": cls.LINEAR,
            "exp": cls.EXPONENTIAL,
            "exponential": cls.EXPONENTIAL,
            "seq": cls.SEQUENCE,
            "sequence": cls.SEQUENCE,
        }
        if text not in aliases:
            raise ConfigurationError(message=f"Invalid backoff mode: {value}", context={"mode": value})
        return aliases[text]


@dataclass
class RetryPolicy:
    """
    Configuration for one logical retry strategy.

    Attributes:
        attempts: Total attempts including the first (>= 1)
        attempt_timeout_ms: Advisory per-attempt timeout; never enforced
        deadline_budget_ms: Wall-clock budget measured from the start of the sequence
        start_after_ms: Delay before the first attempt; exponential base delay
        backoff_mode: Linear, exponential or sequence
        exponential_base: Growth factor for exponential mode
        delay_ms: Increment for linear mode
        follow_headers: Let classifier hints raise the computed delay
        cap_ms: Final clamp on every computed delay; None means no cap
        sequence: Explicit delays for sequence mode
        hedge: Hedged-request parameters (not executed by the engine)
        jitter: Perturbation applied to computed delays
        decider: Approves or denies another attempt
        classifier: Turns raised errors into failure metadata
        seed: Makes jitter deterministic
        retry_on_tokens: Tokens pushed into a token decider
        canonical_spec: Canonical ``rtry:`` rendering of the policy, if known

    The delay cursor used by :meth:`next_delay_ms` without an attempt number
    persists across calls; reuse across independent sequences needs
    :meth:`reset_cursor`. A policy must not be shared by concurrent sequences.
    """
    attempts: int = 3
    attempt_timeout_ms: Optional[int] = None
    deadline_budget_ms: Optional[int] = None
    start_after_ms: int = 0
    backoff_mode: BackoffMode = BackoffMode.EXPONENTIAL
    exponential_base: Optional[float] = 2.0
    delay_ms: Optional[int] = None
    follow_headers: bool = True
    cap_ms: Optional[int] = None
    sequence: Optional[Sequence] = None
    hedge: Optional[Hedge] = None
    jitter: Optional[Jitter] = None
    decider: RetryDecider = field(default_factory=AlwaysRetryDecider)
    classifier: Optional[RuleBasedFailureClassifier] = None
    seed: Optional[int] = None
    retry_on_tokens: List[Token] = field(default_factory=list)
    canonical_spec: str = ""
    _cursor: int = field(default=0, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        self.backoff_mode = BackoffMode.parse(self.backoff_mode)
        if self.attempts < 1:
            raise ConfigurationError(message="attempts must be >= 1", context={"attempts": self.attempts})
        if self.start_after_ms < 0:
            raise ConfigurationError(message="start_after_ms must be >= 0")
        for name in ("attempt_timeout_ms", "deadline_budget_ms", "cap_ms", "delay_ms"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigurationError(message=f"{name} must be >= 0", context={name: value})
        if self.retry_on_tokens:
            self._push_tokens()

    # ------------------------------------------------------------------
    # Mode-switching setters
    # ------------------------------------------------------------------

    def set_delay_ms(self, milliseconds: Optional[int]) -> "RetryPolicy":
        """Set the linear increment and switch to linear mode."""
        self.backoff_mode = BackoffMode.LINEAR
        self.delay_ms = milliseconds
        return self

    def set_exponential_base(self, base: Optional[float]) -> "RetryPolicy":
        """Set the exponential base; a non-None base switches to exponential mode."""
        if base is not None:
            self.backoff_mode = BackoffMode.EXPONENTIAL
        self.exponential_base = base
        return self

    def set_sequence(self, sequence: Sequence) -> "RetryPolicy":
        """Install an explicit delay sequence and switch to sequence mode."""
        self.backoff_mode = BackoffMode.SEQUENCE
        self.sequence = sequence
        return self

    def set_decider(self, decider: RetryDecider) -> "RetryPolicy":
        self.decider = decider
        self._push_tokens()
        return self

    def set_retry_on_tokens(self, tokens: Iterable[Token]) -> "RetryPolicy":
        self.retry_on_tokens = list(tokens)
        self._push_tokens()
        return self

    def _push_tokens(self) -> None:
        if isinstance(self.decider, TokenDecider) and self.retry_on_tokens:
            self.decider.set_tokens(self.retry_on_tokens)

    # ------------------------------------------------------------------
    # Delay computation
    # ------------------------------------------------------------------

    @property
    def cursor(self) -> int:
        return self._cursor

    def reset_cursor(self) -> None:
        """Rewind the implicit attempt cursor used by ``next_delay_ms()``."""
        self._cursor = 0

    def start_after_delay_ms(self) -> int:
        """Delay before the first attempt, jittered when jitter is configured."""
        if self.jitter is not None:
            return self.jitter.apply(self.start_after_ms, self.seed)
        return self.start_after_ms

    def next_delay_ms(self, attempt_number: Optional[int] = None) -> int:
        """
        Delay to sleep before ``attempt_number``.

        Without an attempt number the internal cursor is used and advanced,
        starting from 0.
        """
        delay = self.nominal_delay_ms(attempt_number)
        if self.jitter is not None:
            delay = self.jitter.apply(delay, self.seed)
        if self.cap_ms is not None:
            delay = min(delay, self.cap_ms)
        return max(0, delay)

    def nominal_delay_ms(self, attempt_number: Optional[int] = None) -> int:
        if attempt_number is None:
            attempt_number = self._cursor
            self._cursor += 1
        else:
            attempt_number = max(1, attempt_number)

        if self.backoff_mode == BackoffMode.LINEAR:
            return max(1, attempt_number - 1) * (self.delay_ms or 0)

        if self.backoff_mode == BackoffMode.SEQUENCE:
            if self.sequence is None:
                return 0
            return self.sequence.delay_by_position(attempt_number) or 0

        base = self.exponential_base if self.exponential_base is not None else 2.0
        exponent = max(0, attempt_number - 1) - 1
        try:
            delay = int(round(self.start_after_ms * (base ** exponent)))
            delay = min(delay, MAX_DELAY_MS)
        except (OverflowError, ZeroDivisionError):
            logger.debug("Exponential delay out of range for attempt %d", attempt_number)
            delay = MAX_DELAY_MS
        return max(0, delay)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def to_spec(self) -> str:
        """Render the policy as a canonical ``rtry:`` string."""
        parts = [f"a={self.attempts}"]
        if self.backoff_mode == BackoffMode.LINEAR:
            parts.append(f"d={format_ms(self.delay_ms or 0)}")
        elif self.backoff_mode == BackoffMode.SEQUENCE and self.sequence is not None:
            parts.append(str(self.sequence))
        else:
            parts.append(f"m={self.backoff_mode.value}")
            if self.exponential_base is not None:
                parts.append(f"b={self.exponential_base:g}")
        if self.start_after_ms:
            parts.append(f"sa={format_ms(self.start_after_ms)}")
        if self.cap_ms is not None:
            parts.append(f"cap={format_ms(self.cap_ms)}")
        if self.attempt_timeout_ms is not None:
            parts.append(f"t={format_ms(self.attempt_timeout_ms)}")
        if self.deadline_budget_ms is not None:
            parts.append(f"dl={format_ms(self.deadline_budget_ms)}")
        if self.retry_on_tokens:
            parts.append("on=" + ",".join(str(t) for t in self.retry_on_tokens))
        parts.append(f"fh={'1' if self.follow_headers else '0'}")
        if self.jitter is not None:
            parts.append(str(self.jitter))
        if self.hedge is not None:
            parts.append(str(self.hedge))
        return "rtry:" + ";".join(parts)


__all__ = ["BackoffMode", "RetryPolicy", "MAX_DELAY_MS"]
