import logging

import pytest

from rtry.classifier import RuleBasedFailureClassifier
from rtry.deciders import OnTokensDecider
from rtry.exceptions import DeadlineExceededError, StartAfterExceedsDeadlineError
from rtry.metadata import FailureMetadata
from rtry.policy import RetryPolicy
from rtry.retry import Retry, retrying
from rtry.rules import RateLimitBackoffRule, Rule

from .conftest import HttpError


class Flaky:
    """Fails ``failures`` times with errors from ``make_error``, then returns ``result``."""

    def __init__(self, failures, make_error=lambda n: ValueError(f"failure {n}"), result="ok"):
        self.failures = failures
        self.make_error = make_error
        self.result = result
        self.contexts = []
        self.errors = []

    def __call__(self, ctx):
        self.contexts.append(ctx)
        if len(self.contexts) <= self.failures:
            error = self.make_error(len(self.contexts))
            self.errors.append(error)
            raise error
        return self.result


class PatchContextRule(Rule):
    def apply(self, error):
        return FailureMetadata(context_patch={"token": "refreshed"})


def linear(delay_ms, **kwargs):
    return RetryPolicy(backoff_mode="lin", delay_ms=delay_ms, **kwargs)


# =============================================================================
# SYNC ENGINE
# =============================================================================

def test_succeeds_after_one_failure(engine, sleeper):
    operation = Flaky(1)

    outcome = engine.execute(operation, linear(100, attempts=3))

    assert outcome.is_success
    assert outcome.result == "ok"
    assert sleeper.sleeps == [100]
    second = operation.contexts[1]
    assert second.attempt_number == 2
    assert second.max_attempts == 3
    assert second.scheduled_delay_ms == 100
    assert second.elapsed_since_first_ms == 100
    assert second.remaining_budget_ms is None


def test_first_attempt_success_does_not_sleep(engine, sleeper):
    outcome = engine.execute(lambda ctx: 42, linear(100))

    assert outcome.unwrap() == 42
    assert sleeper.sleeps == []


def test_exhaustion_reraises_last_error(engine, sleeper):
    operation = Flaky(10)
    give_ups = []
    engine.set_on_give_up_hook(lambda ctx, outcome, policy, headers: give_ups.append((ctx, outcome)))

    with pytest.raises(ValueError) as exc_info:
        engine.execute(operation, linear(10, attempts=3))

    assert exc_info.value is operation.errors[-1]
    assert len(operation.contexts) == 3
    assert sleeper.sleeps == [10, 20]
    assert len(give_ups) == 1
    ctx, outcome = give_ups[0]
    assert ctx.attempt_number == 3
    assert outcome.error is operation.errors[-1]


def test_next_delay_overrunning_deadline_gives_up_without_sleeping(engine, sleeper):
    operation = Flaky(10)
    give_ups = []
    between = []
    engine.set_on_give_up_hook(lambda *args: give_ups.append(args))
    engine.set_between_attempts_hook(lambda *args: between.append(args))

    with pytest.raises(ValueError):
        engine.execute(operation, linear(1000, attempts=3, deadline_budget_ms=300))

    assert len(operation.contexts) == 1
    assert sleeper.sleeps == []
    assert len(give_ups) == 1
    assert between == []


def test_remaining_budget_is_reported(engine, clock):
    def operation(ctx):
        clock.advance(40)
        if ctx.attempt_number == 1:
            raise ValueError("first")
        return ctx.remaining_budget_ms

    outcome = engine.execute(operation, linear(100, deadline_budget_ms=1000))

    # 40ms of work plus a 100ms sleep before the second attempt
    assert outcome.result == 860


def test_zero_deadline_raises_deadline_exceeded(engine):
    operation = Flaky(0)
    give_ups = []
    engine.set_on_give_up_hook(lambda ctx, outcome, policy, headers: give_ups.append(ctx))

    with pytest.raises(DeadlineExceededError) as exc_info:
        engine.execute(operation, linear(100, deadline_budget_ms=0))

    assert operation.contexts == []
    assert exc_info.value.attempts == 0
    assert exc_info.value.error_code == "RETRY_001"
    assert len(give_ups) == 1
    assert give_ups[0].remaining_budget_ms == 0


def test_start_after_sleeps_before_first_attempt(engine, sleeper):
    operation = Flaky(0)

    engine.execute(operation, RetryPolicy(start_after_ms=50))

    assert sleeper.sleeps == [50]
    assert operation.contexts[0].scheduled_delay_ms == 50
    assert operation.contexts[0].elapsed_since_first_ms == 50


def test_start_after_exceeding_deadline(engine, sleeper):
    operation = Flaky(0)

    with pytest.raises(StartAfterExceedsDeadlineError) as exc_info:
        engine.execute(operation, RetryPolicy(start_after_ms=500, deadline_budget_ms=200))

    assert operation.contexts == []
    assert sleeper.sleeps == []
    assert exc_info.value.start_after_ms == 500


def test_decider_denial_stops_immediately(engine, sleeper):
    operation = Flaky(5)
    policy = linear(100, attempts=5, decider=OnTokensDecider(["ETIMEDOUT"]))

    with pytest.raises(ValueError):
        engine.execute(operation, policy)

    assert len(operation.contexts) == 1
    assert sleeper.sleeps == []


def test_retry_after_raises_the_sleep(engine, sleeper):
    operation = Flaky(1, lambda n: HttpError(429, {"Retry-After": "2"}))
    policy = linear(100, classifier=RuleBasedFailureClassifier([RateLimitBackoffRule()]))

    engine.execute(operation, policy)

    assert sleeper.sleeps == [2000]


def test_headers_ignored_when_not_followed(engine, sleeper):
    operation = Flaky(1, lambda n: HttpError(429, {"Retry-After": "2"}))
    policy = linear(100, follow_headers=False, classifier=RuleBasedFailureClassifier([RateLimitBackoffRule()]))

    engine.execute(operation, policy)

    assert sleeper.sleeps == [100]


def test_not_before_is_measured_against_the_clock(engine, sleeper, clock):
    reset_at = int(clock.now_ms()) + 1500
    operation = Flaky(1, lambda n: HttpError(429, {"X-RateLimit-Reset-Ms": str(reset_at)}))
    policy = linear(100, classifier=RuleBasedFailureClassifier([RateLimitBackoffRule()]))

    engine.execute(operation, policy)

    assert sleeper.sleeps == [1500]


def test_between_hook_receives_sleep_and_headers(engine):
    calls = []
    engine.set_between_attempts_hook(
        lambda ctx, outcome, policy, sleep_ms, headers: calls.append((ctx.attempt_number, outcome, sleep_ms, headers))
    )
    operation = Flaky(1, lambda n: HttpError(429, {"Retry-After": "1"}))
    policy = linear(100, classifier=RuleBasedFailureClassifier([RateLimitBackoffRule()]))

    engine.execute(operation, policy)

    assert len(calls) == 1
    attempt, outcome, sleep_ms, headers = calls[0]
    assert attempt == 1
    assert outcome.status_code == 429
    assert outcome.tags == ["RATE_LIMITED"]
    assert sleep_ms == 1000
    assert headers == {"retry-after": ["1"]}


def test_context_patches_carry_to_next_attempt(engine):
    operation = Flaky(1)
    policy = linear(10, classifier=RuleBasedFailureClassifier([PatchContextRule()]))

    engine.execute(operation, policy, context={"user": 7})

    assert dict(operation.contexts[0].context) == {"user": 7}
    assert dict(operation.contexts[1].context) == {"user": 7, "token": "refreshed"}


def test_attempt_context_is_read_only(engine):
    operation = Flaky(0)
    engine.execute(operation, linear(10), context={"user": 7})

    with pytest.raises(TypeError):
        operation.contexts[0].context["user"] = 8


def test_failing_hooks_are_swallowed(engine):
    def broken(*args):
        raise RuntimeError("hook failed")

    engine.set_between_attempts_hook(broken)
    engine.set_on_give_up_hook(broken)

    assert engine.execute(Flaky(1), linear(10)).result == "ok"
    with pytest.raises(ValueError):
        engine.execute(Flaky(5), linear(10, attempts=2))


def test_base_exceptions_are_not_retried(engine):
    calls = []

    def operation(ctx):
        calls.append(ctx)
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        engine.execute(operation, linear(10, attempts=3))

    assert len(calls) == 1


def test_attempt_lifecycle_is_logged(clock, sleeper, caplog):
    engine = Retry(clock=clock, sleeper=sleeper, logger=logging.getLogger("tests.retry"))

    with caplog.at_level(logging.DEBUG, logger="tests.retry"):
        with pytest.raises(ValueError):
            engine.execute(Flaky(5), linear(10, attempts=2))

    messages = [record.getMessage() for record in caplog.records]
    assert any(m.startswith("Attempt 1/2") for m in messages)
    assert any("failed (unclassified): ValueError" in m for m in messages)
    assert any(m.startswith("Giving up after attempt 2/2") for m in messages)
    assert caplog.records[-1].levelno == logging.ERROR


# =============================================================================
# ASYNC ENGINE
# =============================================================================

async def test_async_succeeds_after_one_failure(engine, async_sleeper, sleeper):
    calls = []

    async def operation(ctx):
        calls.append(ctx)
        if ctx.attempt_number == 1:
            raise ConnectionResetError("connection reset by peer")
        return "done"

    outcome = await engine.execute_async(operation, linear(100))

    assert outcome.result == "done"
    assert async_sleeper.sleeps == [100]
    assert sleeper.sleeps == []
    assert len(calls) == 2


async def test_async_accepts_sync_operations(engine):
    outcome = await engine.execute_async(lambda ctx: ctx.attempt_number, linear(10))
    assert outcome.result == 1


async def test_async_exhaustion_reraises(engine, async_sleeper):
    operation = Flaky(10)

    with pytest.raises(ValueError) as exc_info:
        await engine.execute_async(operation, linear(10, attempts=2))

    assert exc_info.value is operation.errors[-1]
    assert async_sleeper.sleeps == [10]


# =============================================================================
# DECORATOR
# =============================================================================

def test_retrying_decorator_with_factory(engine, sleeper):
    calls = []

    @retrying(lambda: linear(100, attempts=3), engine=engine)
    def fetch(item_id, verbose=False):
        calls.append((item_id, verbose))
        if len(calls) < 3:
            raise ConnectionError("network error")
        return {"id": item_id}

    assert fetch(7, verbose=True) == {"id": 7}
    assert calls == [(7, True)] * 3
    assert sleeper.sleeps == [100, 200]
    assert fetch.__name__ == "fetch"


def test_retrying_decorator_with_policy_instance_reraises(engine):
    policy = linear(10, attempts=2)

    @retrying(policy, engine=engine)
    def always_fails():
        raise ValueError("nope")

    for _ in range(2):
        with pytest.raises(ValueError):
            always_fails()


async def test_retrying_decorator_async(engine, async_sleeper):
    calls = []

    @retrying(lambda: linear(50), engine=engine)
    async def fetch():
        calls.append(1)
        if len(calls) == 1:
            raise TimeoutError("timed out")
        return "payload"

    assert await fetch() == "payload"
    assert async_sleeper.sleeps == [50]
