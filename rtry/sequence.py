"""
Explicit delay sequences.

A sequence is an ordered list of delays addressed by attempt position, with an
optional "repeat last" flag that extends the final delay indefinitely.
"""

from typing import Iterable, List, Optional

from .duration import format_ms, parse_duration_ms
from .exceptions import ConfigurationError


class Sequence:
    """Ordered delays with 1-based position lookup and a stateful cursor."""

    KEY = "seq"

    def __init__(self, delays_ms: Iterable[int], repeat_last: bool = False):
        self._delays_ms: List[int] = [int(d) for d in delays_ms]
        if any(d < 0 for d in self._delays_ms):
            raise ConfigurationError(message="Sequence delays must be >= 0", context={"delays_ms": self._delays_ms})
        self._repeat_last = repeat_last
        self._cursor = 0

    @property
    def delays_ms(self) -> List[int]:
        return list(self._delays_ms)

    @property
    def repeat_last(self) -> bool:
        return self._repeat_last

    def reset(self) -> None:
        """Rewind the cursor used by :meth:`next_delay_ms`."""
        self._cursor = 0

    def next_delay_ms(self) -> Optional[int]:
        """Return the delay under the cursor and advance it."""
        count = len(self._delays_ms)
        if count == 0:
            return None

        if self._cursor < count:
            delay = self._delays_ms[self._cursor]
            self._cursor += 1
            return delay

        if self._repeat_last:
            self._cursor = count
            return self._delays_ms[-1]

        return None

    def delay_by_position(self, attempt_number: int) -> Optional[int]:
        """
        Delay for a 1-based attempt position.

        Positions past the end return the last delay when repeat-last is set,
        otherwise ``None``.
        """
        position = attempt_number - 1
        count = len(self._delays_ms)
        if position < 0 or count == 0:
            return None

        if position >= count:
            return self._delays_ms[-1] if self._repeat_last else None

        return self._delays_ms[position]

    @classmethod
    def from_token(cls, token: str) -> "Sequence":
        """
        Build a sequence from ``d1,d2,...[*]``; parentheses are optional.

        A trailing ``*``, alone or attached to the last element, enables
        repeat-last. A leading ``seq=`` is accepted.
        """
        value = token.strip()
        if value.lower().startswith(f"{cls.KEY}="):
            value = value[len(cls.KEY) + 1:].strip()
        if value.startswith("(") and value.endswith(")"):
            value = value[1:-1].strip()
        if not value:
            raise ConfigurationError(message="Sequence cannot be empty")

        parts = [part.strip() for part in value.split(",")]
        repeat = False
        if parts[-1] == "*":
            repeat = True
            parts.pop()
        elif parts[-1].endswith("*"):
            repeat = True
            parts[-1] = parts[-1][:-1].strip()

        if not parts:
            raise ConfigurationError(message='Sequence cannot be only "*"')
        if any(part == "" for part in parts):
            raise ConfigurationError(message=f"Empty element in sequence: {token!r}")

        return cls([parse_duration_ms(part) for part in parts], repeat)

    def __len__(self) -> int:
        return len(self._delays_ms)

    def __str__(self) -> str:
        body = ",".join(format_ms(d) for d in self._delays_ms)
        return f"{self.KEY}={body}{'*' if self._repeat_last else ''}"

    def __repr__(self) -> str:
        return f"Sequence(delays_ms={self._delays_ms!r}, repeat_last={self._repeat_last!r})"


__all__ = ["Sequence"]
