"""
Time collaborators for the retry engine.

The engine never reads the system clock or sleeps directly; it goes through
these small interfaces so tests can substitute fixed clocks and recording
sleepers.
"""

import asyncio
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now_ms(self) -> float:
        """Current Unix epoch time in milliseconds, sub-millisecond precision."""


class Sleeper(ABC):
    """Blocking sleep in milliseconds; non-positive input is a no-op."""

    @abstractmethod
    def sleep_ms(self, milliseconds: int) -> None:
        pass


class AsyncSleeper(ABC):
    """Awaitable sleep in milliseconds; non-positive input is a no-op."""

    @abstractmethod
    async def sleep_ms(self, milliseconds: int) -> None:
        pass


class SystemClock(Clock):
    def now_ms(self) -> float:
        return time.time() * 1000.0


class SystemSleeper(Sleeper):
    def sleep_ms(self, milliseconds: int) -> None:
        if milliseconds <= 0:
            return
        time.sleep(milliseconds / 1000.0)


class AsyncioSleeper(AsyncSleeper):
    async def sleep_ms(self, milliseconds: int) -> None:
        if milliseconds <= 0:
            return
        await asyncio.sleep(milliseconds / 1000.0)


__all__ = [
    "Clock",
    "Sleeper",
    "AsyncSleeper",
    "SystemClock",
    "SystemSleeper",
    "AsyncioSleeper",
]
