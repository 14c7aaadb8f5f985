"""
Jitter for computed delays.

Two modes are supported:

- ``full``: the delay is replaced by a draw in ``[0, window]``
- ``pm``: the delay moves by a draw in ``[-window, +window]``, clamped at 0

The window is either an absolute number of milliseconds or a percentage of
the nominal delay being jittered. With a seed the draw is a pure function of
``(seed, nominal, mode)`` so tests and replays are reproducible.
"""

import logging
import math
import random
import secrets
import zlib
from typing import Optional

from .duration import format_ms, format_percent, parse_duration_ms
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

JITTER_MODES = ("full", "pm")


class Jitter:
    """Perturbs a nominal delay, randomly or deterministically when seeded."""

    KEY = "j"

    def __init__(
        self,
        window_ms: Optional[int] = None,
        mode: str = "full",
        percent: Optional[float] = None,
    ):
        if window_ms is not None and percent is not None:
            raise ConfigurationError(
                message="Jitter takes either an absolute window or a percentage, not both",
                context={"window_ms": window_ms, "percent": percent},
            )
        if window_ms is not None and window_ms < 0:
            raise ConfigurationError(message="Jitter window must be >= 0", context={"window_ms": window_ms})

        mode = str(mode).lower()
        if mode not in JITTER_MODES:
            raise ConfigurationError(message=f"Invalid jitter mode: {mode}", context={"mode": mode})

        if percent is not None:
            percent = float(percent)
            if not math.isfinite(percent) or percent < 0.0 or percent > 100.0:
                raise ConfigurationError(
                    message="Jitter percent must be between 0 and 100",
                    context={"percent": percent},
                )

        self._window_ms = window_ms
        self._mode = mode
        self._percent = percent

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def percent(self) -> Optional[float]:
        return self._percent

    @property
    def window_ms(self) -> Optional[int]:
        return self._window_ms

    def window_for(self, nominal_delay_ms: int) -> int:
        """Window in milliseconds for a given nominal delay."""
        if self._percent is not None:
            return int(round((self._percent / 100.0) * nominal_delay_ms))
        return self._window_ms or 0

    def apply(self, nominal_delay_ms: int, seed: Optional[int] = None) -> int:
        """Return the jittered delay; never negative."""
        nominal_delay_ms = int(nominal_delay_ms)
        if nominal_delay_ms <= 0:
            return 0

        window = self.window_for(nominal_delay_ms)
        if window <= 0:
            return nominal_delay_ms if self._mode == "pm" else 0

        if self._mode == "pm":
            delta = self._rand_in_range(-window, window, seed, nominal_delay_ms)
            return max(nominal_delay_ms + delta, 0)

        return self._rand_in_range(0, window, seed, nominal_delay_ms)

    def _rand_in_range(self, low: int, high: int, seed: Optional[int], mix: int) -> int:
        if high <= low:
            return low

        if seed is None:
            try:
                return low + secrets.randbelow(high - low + 1)
            except Exception as e:
                logger.debug("Secure random source unavailable, using random: %s", e)
                return random.randint(low, high)

        digest = zlib.crc32(f"{seed}:{mix}:{self.KEY}:{self._mode}".encode("utf-8")) & 0xFFFFFFFF
        fraction = (digest % 1_000_000) / 1_000_000.0
        return low + int(math.floor((high - low + 1) * fraction))

    @classmethod
    def from_token(cls, token: str) -> "Jitter":
        """
        Build a jitter from ``<window>[@full|@pm]``.

        The window is a duration token or a percentage (``15%``). An empty
        window, ``0`` or ``0%`` means no jitter.
        """
        value = token.strip()
        mode = "full"
        if "@" in value:
            value, mode_token = (part.strip() for part in value.split("@", 1))
            if mode_token:
                mode = mode_token.lower()

        if value in ("", "0"):
            return cls(None, mode)
        if value.endswith("%"):
            try:
                percent = float(value[:-1].strip())
            except ValueError:
                raise ConfigurationError(message=f"Invalid jitter percent: {token!r}") from None
            return cls(None, mode, percent)
        return cls(parse_duration_ms(value), mode)

    def __str__(self) -> str:
        if self._percent is not None:
            value = format_percent(self._percent)
        else:
            value = format_ms(self._window_ms or 0)
        suffix = "@pm" if self._mode == "pm" else ""
        return f"{self.KEY}={value}{suffix}"

    def __repr__(self) -> str:
        return (
            f"Jitter(window_ms={self._window_ms!r}, mode={self._mode!r}, "
            f"percent={self._percent!r})"
        )


__all__ = ["Jitter", "JITTER_MODES"]
