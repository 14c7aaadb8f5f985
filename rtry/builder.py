"""
Fluent construction of retry policies, plus ready-made presets.

Example:
    policy = (
        RetryBuilder()
        .with_attempts(5)
        .with_linear_backoff("250ms")
        .with_jitter(percent=20, mode="pm")
        .with_cap("5s")
        .retry_on("5xx", 429, "ETIMEDOUT")
        .build()
    )
"""

import re
from typing import Iterable, List, Optional, Union

from .classifier import RuleBasedFailureClassifier
from .deciders import AlwaysRetryDecider, OnTokensDecider, RetryDecider
from .duration import parse_duration_ms
from .hedge import Hedge
from .jitter import Jitter
from .policy import BackoffMode, RetryPolicy
from .rules import MethodStatusRule, RateLimitBackoffRule, Rule
from .sequence import Sequence
from .tokens import FailureToken, Token, expand_tokens

Duration = Union[int, str]


def to_ms(value: Duration) -> int:
    """Accept whole milliseconds or a duration token such as ``"1.5s"``."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return parse_duration_ms(str(value))


def is_rate_limit_token(token: Token) -> bool:
    """True for tokens such as ``429``, ``RATE_LIMITED``, ``too-many-requests`` or ``throttled``."""
    normalized = re.sub(r"[^A-Z0-9]", "", str(token).upper())
    if "429" in normalized:
        return True
    if "RATELIMIT" in normalized or "TOOMANYREQUESTS" in normalized or "THROTTL" in normalized:
        return True
    return "RATE" in normalized and "LIMIT" in normalized


class RetryBuilder:
    """Fluent builder for :class:`RetryPolicy`."""

    def __init__(self):
        self._attempts = 3
        self._attempt_timeout_ms: Optional[int] = None
        self._deadline_budget_ms: Optional[int] = None
        self._start_after_ms = 0
        self._mode = BackoffMode.EXPONENTIAL
        self._exponential_base: Optional[float] = 2.0
        self._delay_ms: Optional[int] = None
        self._cap_ms: Optional[int] = None
        self._follow_headers = True
        self._sequence: Optional[Sequence] = None
        self._jitter: Optional[Jitter] = None
        self._hedge: Optional[Hedge] = None
        self._tokens: Optional[List[Token]] = None
        self._rules: List[Rule] = []
        self._decider: Optional[RetryDecider] = None
        self._seed: Optional[int] = None

    def with_attempts(self, n: int) -> "RetryBuilder":
        """Set the total number of attempts, including the first."""
        self._attempts = n
        return self

    def with_timeout(self, per_attempt: Duration) -> "RetryBuilder":
        """Set the advisory per-attempt timeout."""
        self._attempt_timeout_ms = to_ms(per_attempt)
        return self

    def with_deadline(self, budget: Duration) -> "RetryBuilder":
        """Set the total wall-clock budget for the whole sequence."""
        self._deadline_budget_ms = to_ms(budget)
        return self

    def with_start_after(self, delay: Duration) -> "RetryBuilder":
        """Delay before the first attempt; also the exponential base delay."""
        self._start_after_ms = to_ms(delay)
        return self

    def with_linear_backoff(self, increment: Duration) -> "RetryBuilder":
        self._mode = BackoffMode.LINEAR
        self._delay_ms = to_ms(increment)
        return self

    def with_exponential_backoff(self, base: float = 2.0, start_after: Optional[Duration] = None) -> "RetryBuilder":
        self._mode = BackoffMode.EXPONENTIAL
        self._exponential_base = base
        if start_after is not None:
            self._start_after_ms = to_ms(start_after)
        return self

    def with_sequence(self, delays: Union[str, Iterable[Duration]], repeat_last: bool = False) -> "RetryBuilder":
        """Use explicit delays, given as a list or as a ``"100,250,1s*"`` token."""
        self._mode = BackoffMode.SEQUENCE
        if isinstance(delays, str):
            self._sequence = Sequence.from_token(delays)
        else:
            self._sequence = Sequence([to_ms(d) for d in delays], repeat_last)
        return self

    def with_jitter(
        self,
        window: Optional[Duration] = None,
        mode: str = "full",
        percent: Optional[float] = None,
    ) -> "RetryBuilder":
        self._jitter = Jitter(to_ms(window) if window is not None else None, mode, percent)
        return self

    def with_hedge(self, lanes: int, stagger: Duration, cancel_policy: Optional[int] = None) -> "RetryBuilder":
        self._hedge = Hedge.create(lanes, to_ms(stagger), cancel_policy)
        return self

    def with_cap(self, cap: Duration) -> "RetryBuilder":
        self._cap_ms = to_ms(cap)
        return self

    def follow_headers(self, enabled: bool = True) -> "RetryBuilder":
        """Let rate-limit hints from the classifier raise computed delays."""
        self._follow_headers = enabled
        return self

    def retry_on(self, *tokens: Token) -> "RetryBuilder":
        """
        Retry only failures matching these tokens.

        ``default``/``standard`` (or no tokens at all) expand to
        :meth:`FailureToken.defaults`.
        """
        self._tokens = expand_tokens(tokens)
        return self

    def classify_with(self, *rules: Rule) -> "RetryBuilder":
        self._rules.extend(rules)
        return self

    def with_decider(self, decider: RetryDecider) -> "RetryBuilder":
        self._decider = decider
        return self

    def with_seed(self, seed: Optional[int]) -> "RetryBuilder":
        """Make jitter deterministic."""
        self._seed = seed
        return self

    def _build_classifier(self) -> Optional[RuleBasedFailureClassifier]:
        if not self._rules and self._tokens is None:
            return None

        classifier = RuleBasedFailureClassifier(self._rules)
        if self._tokens is not None:
            if not classifier.has_rule_of_type(MethodStatusRule):
                classifier.add_rule(MethodStatusRule())
            if any(is_rate_limit_token(t) for t in self._tokens) and not classifier.has_rule_of_type(RateLimitBackoffRule):
                classifier.add_rule(RateLimitBackoffRule())
        return classifier

    def build(self) -> RetryPolicy:
        """Build the retry policy."""
        if self._decider is not None:
            decider = self._decider
        elif self._tokens is not None:
            decider = OnTokensDecider(self._tokens)
        else:
            decider = AlwaysRetryDecider()

        policy = RetryPolicy(
            attempts=self._attempts,
            attempt_timeout_ms=self._attempt_timeout_ms,
            deadline_budget_ms=self._deadline_budget_ms,
            start_after_ms=self._start_after_ms,
            backoff_mode=self._mode,
            exponential_base=self._exponential_base,
            delay_ms=self._delay_ms,
            follow_headers=self._follow_headers,
            cap_ms=self._cap_ms,
            sequence=self._sequence,
            hedge=self._hedge,
            jitter=self._jitter,
            decider=decider,
            classifier=self._build_classifier(),
            seed=self._seed,
            retry_on_tokens=list(self._tokens or []),
        )
        policy.canonical_spec = policy.to_spec()
        return policy


# =============================================================================
# PRESETS
# =============================================================================

def http_retry_policy() -> RetryPolicy:
    """Outbound HTTP calls: 5xx, 429 and transport failures, honouring rate-limit headers."""
    return (
        RetryBuilder()
        .with_attempts(4)
        .with_linear_backoff("250ms")
        .with_jitter(percent=20, mode="pm")
        .with_cap("5s")
        .with_deadline("30s")
        .retry_on("default", 429)
        .build()
    )


def database_retry_policy() -> RetryPolicy:
    """Transactions that can lose a deadlock or time out waiting for a lock."""
    return (
        RetryBuilder()
        .with_attempts(5)
        .with_linear_backoff("50ms")
        .with_jitter("25ms")
        .with_cap("1s")
        .follow_headers(False)
        .retry_on(FailureToken.DEADLOCK.value, FailureToken.ETIMEDOUT.value)
        .build()
    )


__all__ = [
    "RetryBuilder",
    "Duration",
    "to_ms",
    "is_rate_limit_token",
    "http_retry_policy",
    "database_retry_policy",
]
