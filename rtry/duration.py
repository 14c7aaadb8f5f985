"""
Duration tokens.

Converts human-readable duration tokens (``250``, ``1.5s``, ``2m``) to whole
milliseconds and back. A bare number is milliseconds.
"""

import re
from decimal import Decimal, ROUND_HALF_UP

from .exceptions import InvalidDurationError

_DURATION_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)(ms|s|m|h)?$", re.IGNORECASE)

UNIT_MS = {
    "ms": 1,
    "s": 1_000,
    "m": 60_000,
    "h": 3_600_000,
}

# Tie-break preference when candidate lengths are equal: h > m > s > ms
_UNIT_RANK = {"h": 3, "m": 2, "s": 1, "ms": 0}

_TWO_PLACES = Decimal("0.01")


def parse_duration_ms(token: str) -> int:
    """
    Parse a duration token into milliseconds.

    Args:
        token: ``<number>[ms|s|m|h]``; the unit defaults to ``ms``.

    Returns:
        Milliseconds, rounded half up to an integer.

    Raises:
        InvalidDurationError: token is empty or malformed.
    """
    text = str(token).strip().lower()
    match = _DURATION_RE.match(text) if text else None
    if match is None:
        raise InvalidDurationError(message=f"Invalid duration: {token!r}", token=str(token))

    number = Decimal(match.group(1))
    unit = match.group(2) or "ms"
    return int((number * UNIT_MS[unit]).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _trim(text: str) -> str:
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_ms(ms: int) -> str:
    """
    Format milliseconds as the shortest duration token.

    Units are only considered when the magnitude in that unit is at least 1,
    values carry at most two decimals, and on equal length the larger unit
    wins. Sub-second values are emitted as a bare number. Negative values
    have no token and raise :class:`InvalidDurationError`.
    """
    ms = int(ms)
    if ms < 0:
        raise InvalidDurationError(message=f"Negative duration: {ms}", token=str(ms))
    if ms == 0:
        return "0ms"
    if ms < 1000:
        return str(ms)

    best = f"{ms}ms"
    best_rank = _UNIT_RANK["ms"]

    for suffix in ("s", "m", "h"):
        value = Decimal(ms) / Decimal(UNIT_MS[suffix])
        if value < 1:
            continue

        candidate = _trim(str(value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))) + suffix
        rank = _UNIT_RANK[suffix]
        if len(candidate) < len(best) or (len(candidate) == len(best) and rank > best_rank):
            best = candidate
            best_rank = rank

    return best


def format_percent(percent: float, max_precision: int = 3) -> str:
    """Format a percentage with trailing zeros trimmed, e.g. ``12.5%``."""
    percent = max(0.0, float(percent))
    return _trim(f"{percent:.{max_precision}f}") + "%"


__all__ = [
    "UNIT_MS",
    "parse_duration_ms",
    "format_ms",
    "format_percent",
]
