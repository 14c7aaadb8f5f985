"""
Classification rules.

A rule looks at one raised error and either declines (returns ``None``) or
returns one or more :class:`FailureMetadata` fragments. The classifier runs
every rule in order and folds the fragments together.
"""

import logging
import math
import re
from abc import ABC, abstractmethod
from email.utils import parsedate_to_datetime
from datetime import timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Type, Union

import aiohttp

from .metadata import FailureMetadata
from .tokens import FailureToken

logger = logging.getLogger(__name__)

RuleResult = Union[FailureMetadata, Iterable[FailureMetadata], None]


def is_http_status(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599


def response_status(value: Any) -> Optional[int]:
    """
    Status of a response-like object, or ``None``.

    httpx and requests responses expose ``status_code``; aiohttp responses
    and ``aiohttp.ClientResponseError`` expose ``status``.
    """
    if value is None or isinstance(value, (int, str, bytes)):
        return None
    for attr in ("status_code", "status"):
        status = getattr(value, attr, None)
        if isinstance(status, int) and not isinstance(status, bool):
            return status
    return None


def extract_response(error: BaseException) -> Optional[Any]:
    """Find a response-like object carried by an error."""
    for name in ("response", "get_response"):
        try:
            value = getattr(error, name, None)
            if callable(value) and name.startswith("get_"):
                value = value()
        except Exception:
            continue
        if response_status(value) is not None and getattr(value, "headers", None) is not None:
            return value

    if isinstance(error, aiohttp.ClientResponseError):
        return error
    return None


def normalize_headers(raw: Any) -> Dict[str, str]:
    """Lowercase header name -> first non-empty value, stripped."""
    if raw is None:
        return {}

    if hasattr(raw, "multi_items"):
        pairs: Iterable[Tuple[Any, Any]] = raw.multi_items()
    elif hasattr(raw, "items"):
        pairs = raw.items()
    else:
        pairs = raw

    out: Dict[str, str] = {}
    for name, values in pairs:
        if isinstance(values, (list, tuple)):
            first = str(values[0]) if values else ""
        else:
            first = "" if values is None else str(values)
        first = first.strip()
        key = str(name).lower()
        if first and key not in out:
            out[key] = first
    return out


def _as_number(value: str) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class Rule(ABC):
    """A single classification capability."""

    @abstractmethod
    def apply(self, error: BaseException) -> RuleResult:
        """Return metadata for ``error`` or ``None`` to decline."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class InstanceOfRule(Rule):
    """Matches errors by type and attaches a fixed status and tags."""

    def __init__(
        self,
        error_type: Union[Type[BaseException], Tuple[Type[BaseException], ...]],
        status_code: Optional[int] = None,
        tags: Sequence[str] = (),
    ):
        self.error_type = error_type
        self.status_code = status_code
        self.tags = list(tags)

    def apply(self, error: BaseException) -> Optional[FailureMetadata]:
        if isinstance(error, self.error_type):
            return FailureMetadata(self.status_code, list(self.tags))
        return None


class MessageRegexRule(Rule):
    """Matches the error message against a pattern; invalid patterns never match."""

    def __init__(self, pattern: str, status_code: Optional[int] = None, tags: Sequence[str] = ()):
        self.pattern = pattern
        self.status_code = status_code
        self.tags = list(tags)
        try:
            self._regex: Optional[re.Pattern] = re.compile(pattern)
        except re.error as e:
            logger.warning("Ignoring invalid message pattern %r: %s", pattern, e)
            self._regex = None

    def apply(self, error: BaseException) -> Optional[FailureMetadata]:
        if self._regex is not None and self._regex.search(str(error)):
            return FailureMetadata(self.status_code, list(self.tags))
        return None


class MethodStatusRule(Rule):
    """
    Reads accessors on the error for a status code.

    Each name is an attribute or a zero-argument method. The first one that
    yields a response-like value (its status is used) or a plain HTTP-range
    integer wins. Accessors that are missing or raise are skipped.
    """

    DEFAULT_ACCESSORS = ("response", "get_response", "status_code", "status", "code")

    def __init__(self, accessors: Sequence[str] = DEFAULT_ACCESSORS, tags: Sequence[str] = ()):
        self.accessors = list(accessors)
        self.tags = list(tags)

    def apply(self, error: BaseException) -> Optional[FailureMetadata]:
        for name in self.accessors:
            try:
                if not hasattr(error, name):
                    continue
                value = getattr(error, name)
                if callable(value):
                    value = value()
            except Exception:
                continue

            status = response_status(value)
            if status is not None:
                return FailureMetadata(status, list(self.tags))
            if is_http_status(value):
                return FailureMetadata(value, list(self.tags))

        return None


class RateLimitBackoffRule(Rule):
    """
    Turns rate-limit response headers into backoff hints.

    Recognized, in priority order:

    - ``retry-after``: delta seconds, or an HTTP date (absolute)
    - ``ratelimit-reset-after`` / ``x-ratelimit-reset-after``: delta seconds
    - ``x-ratelimit-reset-ms``: absolute epoch milliseconds
    - ``ratelimit-reset`` / ``x-ratelimit-reset``: absolute epoch, read as
      milliseconds when >= 1e12 and as seconds otherwise

    On a match the metadata is tagged ``RATE_LIMITED``, carries the status
    only when it is >= 400 and echoes only the header that was used.
    """

    DELTA_HEADERS = ("ratelimit-reset-after", "x-ratelimit-reset-after")
    RESET_MS_HEADERS = ("x-ratelimit-reset-ms",)
    RESET_HEADERS = ("ratelimit-reset", "x-ratelimit-reset")

    def apply(self, error: BaseException) -> Optional[FailureMetadata]:
        response = extract_response(error)
        if response is None:
            return None

        headers = normalize_headers(getattr(response, "headers", None))
        if not headers:
            return None

        hints = self.compute_backoff(headers)
        if hints is None:
            return None
        min_next_delay_ms, not_before_unix_ms, used_key = hints

        status = response_status(response)
        status_out = status if status is not None and status >= 400 else None

        return FailureMetadata(
            status_out,
            [FailureToken.RATE_LIMITED.value],
            {},
            min_next_delay_ms,
            not_before_unix_ms,
            {used_key: [headers[used_key]]},
        )

    def compute_backoff(self, headers: Mapping[str, str]) -> Optional[Tuple[Optional[int], Optional[int], str]]:
        """Return ``(min_next_delay_ms, not_before_unix_ms, header)`` or ``None``."""
        raw = headers.get("retry-after")
        if raw is not None:
            seconds = _as_number(raw)
            if seconds is not None:
                return max(0, int(round(seconds * 1000.0))), None, "retry-after"
            not_before = self._parse_http_date_ms(raw)
            if not_before is not None:
                return None, not_before, "retry-after"

        for key in self.DELTA_HEADERS:
            seconds = _as_number(headers.get(key, ""))
            if seconds is not None:
                return max(0, int(round(seconds * 1000.0))), None, key

        for key in self.RESET_MS_HEADERS:
            ms = _as_number(headers.get(key, ""))
            if ms is not None and int(ms) > 0:
                return None, int(ms), key

        for key in self.RESET_HEADERS:
            number = _as_number(headers.get(key, ""))
            if number is None or number <= 0:
                continue
            ms = int(number) if number >= 1e12 else int(round(number * 1000.0))
            return None, ms, key

        return None

    @staticmethod
    def _parse_http_date_ms(value: str) -> Optional[int]:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
        if when is None:
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return int(when.timestamp()) * 1000


__all__ = [
    "Rule",
    "RuleResult",
    "InstanceOfRule",
    "MessageRegexRule",
    "MethodStatusRule",
    "RateLimitBackoffRule",
    "extract_response",
    "normalize_headers",
    "response_status",
    "is_http_status",
]
