"""
rtry

Retry policies for flaky operations: linear, exponential and sequence backoff,
jitter, deadlines, failure classification and rate-limit header handling.
"""

__version__ = "1.0.0"

from .builder import RetryBuilder, database_retry_policy, http_retry_policy
from .classifier import RuleBasedFailureClassifier
from .config import Settings, get_settings
from .context import AttemptContext, AttemptOutcome
from .deciders import AlwaysRetryDecider, CompositeDecider, OnTokensDecider, RetryDecider
from .duration import format_ms, parse_duration_ms
from .exceptions import (
    ConfigurationError,
    DeadlineExceededError,
    InvalidDurationError,
    RetryError,
    RetryExhaustedError,
    RtryError,
    StartAfterExceedsDeadlineError,
)
from .hedge import Hedge
from .jitter import Jitter
from .policy import BackoffMode, RetryPolicy
from .retry import Retry, retrying
from .rules import InstanceOfRule, MessageRegexRule, MethodStatusRule, RateLimitBackoffRule
from .sequence import Sequence
from .tokens import FailureToken

__all__ = [
    "Retry",
    "retrying",
    "RetryPolicy",
    "RetryBuilder",
    "BackoffMode",
    "http_retry_policy",
    "database_retry_policy",
    "AttemptContext",
    "AttemptOutcome",
    "Jitter",
    "Sequence",
    "Hedge",
    "FailureToken",
    "RetryDecider",
    "AlwaysRetryDecider",
    "OnTokensDecider",
    "CompositeDecider",
    "RuleBasedFailureClassifier",
    "InstanceOfRule",
    "MessageRegexRule",
    "MethodStatusRule",
    "RateLimitBackoffRule",
    "parse_duration_ms",
    "format_ms",
    "Settings",
    "get_settings",
    "RtryError",
    "ConfigurationError",
    "InvalidDurationError",
    "RetryError",
    "DeadlineExceededError",
    "StartAfterExceedsDeadlineError",
    "RetryExhaustedError",
]
