import logging
from typing import Any, Dict, List, Optional

import pytest

from rtry.clock import AsyncSleeper, Clock, Sleeper
from rtry.retry import Retry

EPOCH_MS = 1_700_000_000_000.0


class FakeClock(Clock):
    def __init__(self, start_ms: float = EPOCH_MS):
        self.now = start_ms

    def now_ms(self) -> float:
        return self.now

    def advance(self, milliseconds: float) -> None:
        self.now += milliseconds


class RecordingSleeper(Sleeper):
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.sleeps: List[int] = []

    def sleep_ms(self, milliseconds: int) -> None:
        self.sleeps.append(milliseconds)
        self.clock.advance(max(0, milliseconds))


class AsyncRecordingSleeper(AsyncSleeper):
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.sleeps: List[int] = []

    async def sleep_ms(self, milliseconds: int) -> None:
        self.sleeps.append(milliseconds)
        self.clock.advance(max(0, milliseconds))


class FakeResponse:
    """Just enough of an HTTP response for header-driven rules."""

    def __init__(self, status_code: int, headers: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.headers = headers or {}


class HttpError(Exception):
    def __init__(self, status_code: int, headers: Optional[Dict[str, Any]] = None):
        super().__init__(f"HTTP {status_code}")
        self.response = FakeResponse(status_code, headers)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(clock) -> RecordingSleeper:
    return RecordingSleeper(clock)


@pytest.fixture
def async_sleeper(clock) -> AsyncRecordingSleeper:
    return AsyncRecordingSleeper(clock)


@pytest.fixture
def engine(clock, sleeper, async_sleeper) -> Retry:
    return Retry(clock=clock, sleeper=sleeper, async_sleeper=async_sleeper)


@pytest.fixture
def restore_rtry_logger():
    logger = logging.getLogger("rtry")
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
