"""
Rule-based failure classification.

Runs an ordered list of rules against a raised error and folds their
fragments into one :class:`FailureMetadata`:

- status code: the last non-null value wins
- tags: union in rule order, then tags derived from the error chain, deduplicated
- context patch: later keys overwrite earlier ones
- minimum delay / not-before: maximum across fragments
- headers: merged by lowercase name, values deduplicated per name

When no rule supplies a status code, an HTTP-range ``status_code``,
``status`` or ``code`` attribute on the error is used instead.
"""

import asyncio
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Type

import aiohttp
import httpx

from .metadata import FailureMetadata, dedupe
from .rules import Rule, is_http_status
from .tokens import FailureToken

logger = logging.getLogger(__name__)

TIMEOUT_MARKERS = ("timeout", "timed out")
RESET_MARKERS = ("connection reset",)
REFUSED_MARKERS = ("refused",)
NETWORK_MARKERS = (
    "network error",
    "network timeout",
    "network is unreachable",
    "host unreachable",
    "no route to host",
)
DEADLOCK_MARKERS = (
    "deadlock",
    "lock wait timeout exceeded",
    "database is locked",
    "could not serialize access",
    "serialization failure",
)

NETWORK_ERROR_TYPES = (
    ConnectionError,
    httpx.NetworkError,
    aiohttp.ClientConnectionError,
)

# asyncio.TimeoutError is only an alias of TimeoutError from 3.11 on
TIMEOUT_ERROR_TYPES = (
    TimeoutError,
    asyncio.TimeoutError,
    httpx.TimeoutException,
)

# 40001: serialization failure, 40P01: deadlock detected (PostgreSQL)
DEADLOCK_SQLSTATES = frozenset({"40001", "40P01"})
# 1213: ER_LOCK_DEADLOCK (MySQL), 1205: lock wait timeout / deadlock victim
DEADLOCK_VENDOR_CODES = frozenset({1213, 1205})
# DB-API 2.0 exception names; vendor codes are only read from these
DB_API_ERROR_NAMES = frozenset({"DatabaseError", "OperationalError"})


def error_chain(error: BaseException) -> Iterator[BaseException]:
    """Yield ``error`` and the errors it was raised from, oldest last."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or (None if current.__suppress_context__ else current.__context__)


def _contains_any(haystack: str, needles: Sequence[str]) -> bool:
    return any(needle and needle in haystack for needle in needles)


def _sqlstate(error: BaseException) -> Optional[str]:
    for attr in ("sqlstate", "pgcode"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value:
            return value.upper()
    return None


def _is_database_error(error: BaseException) -> bool:
    if _sqlstate(error) is not None:
        return True
    return any(cls.__name__ in DB_API_ERROR_NAMES for cls in type(error).__mro__)


def _vendor_code(error: BaseException) -> Optional[int]:
    if not _is_database_error(error):
        return None
    errno = getattr(error, "errno", None)
    if isinstance(errno, int) and not isinstance(errno, bool):
        return errno
    # DB-API drivers such as PyMySQL raise Error(code, message)
    args = getattr(error, "args", ())
    if len(args) >= 2:
        first = args[0]
        if isinstance(first, int) and not isinstance(first, bool):
            return first
        if isinstance(first, str) and first.isdigit():
            return int(first)
    return None


class RuleBasedFailureClassifier:
    """Maps raised errors to :class:`FailureMetadata` through ordered rules."""

    def __init__(self, rules: Optional[Sequence[Rule]] = None):
        self._rules: List[Rule] = list(rules or [])

    @property
    def rules(self) -> List[Rule]:
        return list(self._rules)

    def add_rule(self, rule: Rule) -> "RuleBasedFailureClassifier":
        self._rules.append(rule)
        return self

    def has_rule_of_type(self, rule_type: Type[Rule]) -> bool:
        return any(isinstance(rule, rule_type) for rule in self._rules)

    def classify(self, error: BaseException) -> FailureMetadata:
        status: Optional[int] = None
        tags: List[str] = []
        context_patch: Dict[str, Any] = {}
        min_next_delay_ms: Optional[int] = None
        not_before_unix_ms: Optional[int] = None
        headers: Dict[str, List[str]] = {}

        for fragment in self._apply_rules(error):
            if fragment.status_code is not None:
                status = fragment.status_code

            tags.extend(fragment.tags)
            context_patch.update(fragment.context_patch)

            if fragment.min_next_delay_ms is not None:
                min_next_delay_ms = (
                    fragment.min_next_delay_ms
                    if min_next_delay_ms is None
                    else max(min_next_delay_ms, fragment.min_next_delay_ms)
                )

            if fragment.not_before_unix_ms is not None:
                not_before_unix_ms = (
                    fragment.not_before_unix_ms
                    if not_before_unix_ms is None
                    else max(not_before_unix_ms, fragment.not_before_unix_ms)
                )

            self._merge_headers(headers, fragment.headers)

        tags = dedupe(tags + self.collect_tags(error))

        if status is None:
            status = self.extract_status_code(error)

        return FailureMetadata(status, tags, context_patch, min_next_delay_ms, not_before_unix_ms, headers)

    def _apply_rules(self, error: BaseException) -> List[FailureMetadata]:
        fragments: List[FailureMetadata] = []
        for rule in self._rules:
            result = rule.apply(error)
            if result is None:
                continue
            if isinstance(result, FailureMetadata):
                fragments.append(result)
                continue
            fragments.extend(item for item in result if isinstance(item, FailureMetadata))
        return fragments

    @staticmethod
    def _merge_headers(base: Dict[str, List[str]], add: Dict[str, Any]) -> None:
        for name, values in add.items():
            key = str(name).lower()
            if isinstance(values, (list, tuple)):
                merged = base.get(key, []) + list(values)
            else:
                merged = base.get(key, []) + [values]
            base[key] = dedupe(merged)

    @staticmethod
    def extract_status_code(error: BaseException) -> Optional[int]:
        for attr in ("status_code", "status", "code"):
            value = getattr(error, attr, None)
            if is_http_status(value):
                return value
        return None

    def collect_tags(self, error: BaseException) -> List[str]:
        """Tags derived from the error's message and type, including its causes."""
        tags: List[str] = []
        chain = list(error_chain(error))
        message = " | ".join(str(current).lower() for current in chain)

        timed_out = any(isinstance(current, TIMEOUT_ERROR_TYPES) for current in chain)
        if timed_out or _contains_any(message, TIMEOUT_MARKERS):
            tags.append(FailureToken.ETIMEDOUT.value)
        if _contains_any(message, RESET_MARKERS):
            tags.append(FailureToken.ECONNRESET.value)
        if _contains_any(message, REFUSED_MARKERS):
            tags.append(FailureToken.ECONNREFUSED.value)
        if self.is_network_error(error, message):
            tags.append(FailureToken.NETWORK_ERROR.value)
        if self.is_deadlock(error):
            tags.append(FailureToken.DEADLOCK.value)

        return tags

    @staticmethod
    def is_network_error(error: BaseException, message: str) -> bool:
        if any(isinstance(e, NETWORK_ERROR_TYPES) for e in error_chain(error)):
            return True
        return _contains_any(message, NETWORK_MARKERS)

    @staticmethod
    def is_deadlock(error: BaseException) -> bool:
        for current in error_chain(error):
            if _contains_any(str(current).lower(), DEADLOCK_MARKERS):
                return True

            sqlstate = _sqlstate(current)
            if sqlstate is not None and sqlstate in DEADLOCK_SQLSTATES:
                return True

            vendor_code = _vendor_code(current)
            if vendor_code is not None and vendor_code in DEADLOCK_VENDOR_CODES:
                return True

        return False


__all__ = [
    "RuleBasedFailureClassifier",
    "error_chain",
    "NETWORK_ERROR_TYPES",
    "TIMEOUT_ERROR_TYPES",
    "DEADLOCK_SQLSTATES",
    "DEADLOCK_VENDOR_CODES",
]
