"""
Retry engine.

Drives the attempt loop for a :class:`RetryPolicy`: timing and deadline
accounting, failure classification, the retry decision, sleep computation and
the two hook call sites (between attempts, on give-up).

Per-attempt timeouts are advisory: a running operation is never interrupted.
Hedge parameters are carried on the policy but lanes are not raced here.

Usage:
    engine = Retry()
    outcome = engine.execute(lambda ctx: client.get(url), policy)

    outcome = await engine.execute_async(fetch, policy)
"""

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar, Union

from .clock import AsyncioSleeper, AsyncSleeper, Clock, Sleeper, SystemClock, SystemSleeper
from .context import AttemptContext, AttemptOutcome
from .exceptions import DeadlineExceededError, RetryExhaustedError, StartAfterExceedsDeadlineError
from .metadata import FailureMetadata
from .policy import RetryPolicy

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])

Headers = Dict[str, List[str]]
BetweenAttemptsHook = Callable[[AttemptContext, AttemptOutcome, RetryPolicy, int, Headers], Any]
GiveUpHook = Callable[[AttemptContext, AttemptOutcome, RetryPolicy, Headers], Any]


class Retry:
    """
    Retry service.

    Args:
        clock: Source of the current epoch time in milliseconds
        sleeper: Blocking sleep used by :meth:`execute`
        logger: Logger for attempt lifecycle events
        async_sleeper: Awaitable sleep used by :meth:`execute_async`
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        sleeper: Optional[Sleeper] = None,
        logger: Optional[logging.Logger] = None,
        async_sleeper: Optional[AsyncSleeper] = None,
    ):
        self._clock = clock or SystemClock()
        self._sleeper = sleeper or SystemSleeper()
        self._async_sleeper = async_sleeper or AsyncioSleeper()
        self._logger = logger or logging.getLogger(__name__)

        self._between_hook: Optional[BetweenAttemptsHook] = None
        self._on_give_up_hook: Optional[GiveUpHook] = None

    def set_between_attempts_hook(self, hook: Optional[BetweenAttemptsHook]) -> None:
        """``hook(context, outcome, policy, sleep_ms, headers)`` runs before each sleep."""
        self._between_hook = hook

    def set_on_give_up_hook(self, hook: Optional[GiveUpHook]) -> None:
        """``hook(context, outcome, policy, headers)`` runs once per terminal failure."""
        self._on_give_up_hook = hook

    # ------------------------------------------------------------------
    # Attempt loops
    # ------------------------------------------------------------------

    def execute(
        self,
        operation: Callable[[AttemptContext], T],
        policy: RetryPolicy,
        context: Optional[Mapping[str, Any]] = None,
    ) -> AttemptOutcome:
        """
        Run ``operation`` under ``policy``.

        Returns a successful :class:`AttemptOutcome`. When the policy gives up,
        the operation's last error is re-raised unchanged; synthetic errors are
        raised only when no attempt has failed yet.
        """
        max_attempts, first_ms, deadline_at = self._init_timing(policy, context)

        delay_before_first = max(0, policy.start_after_delay_ms())
        if delay_before_first > 0:
            self._check_start_after(delay_before_first, deadline_at, first_ms)
            self._logger.debug("Sleeping %dms before first attempt", delay_before_first)
            self._sleeper.sleep_ms(delay_before_first)

        carried: Dict[str, Any] = dict(context or {})
        last_error: Optional[BaseException] = None
        headers: Headers = {}
        scheduled_delay = delay_before_first

        for attempt in range(1, max_attempts + 1):
            attempt_ctx = self._new_attempt_context(attempt, max_attempts, scheduled_delay, first_ms, deadline_at, carried)
            self._ensure_time_left_or_give_up(attempt_ctx, deadline_at, policy, last_error, headers)

            try:
                result = operation(attempt_ctx)
            except Exception as e:
                last_error = e
                outcome, headers, sleep_ms = self._handle_failure(e, attempt_ctx, policy, carried, deadline_at)
                if sleep_ms is None:
                    raise

                self._run_between_hook(attempt_ctx, outcome, policy, sleep_ms, headers)
                self._sleeper.sleep_ms(sleep_ms)
                scheduled_delay = sleep_ms
                continue

            return self._succeed(result, attempt, first_ms)

        return self._fall_through(max_attempts, scheduled_delay, first_ms, carried, policy, last_error, headers)

    async def execute_async(
        self,
        operation: Callable[[AttemptContext], Union[Awaitable[T], T]],
        policy: RetryPolicy,
        context: Optional[Mapping[str, Any]] = None,
    ) -> AttemptOutcome:
        """Async variant of :meth:`execute`; the operation may be a coroutine function."""
        max_attempts, first_ms, deadline_at = self._init_timing(policy, context)

        delay_before_first = max(0, policy.start_after_delay_ms())
        if delay_before_first > 0:
            self._check_start_after(delay_before_first, deadline_at, first_ms)
            self._logger.debug("Sleeping %dms before first attempt", delay_before_first)
            await self._async_sleeper.sleep_ms(delay_before_first)

        carried: Dict[str, Any] = dict(context or {})
        last_error: Optional[BaseException] = None
        headers: Headers = {}
        scheduled_delay = delay_before_first

        for attempt in range(1, max_attempts + 1):
            attempt_ctx = self._new_attempt_context(attempt, max_attempts, scheduled_delay, first_ms, deadline_at, carried)
            self._ensure_time_left_or_give_up(attempt_ctx, deadline_at, policy, last_error, headers)

            try:
                result = operation(attempt_ctx)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                last_error = e
                outcome, headers, sleep_ms = self._handle_failure(e, attempt_ctx, policy, carried, deadline_at)
                if sleep_ms is None:
                    raise

                self._run_between_hook(attempt_ctx, outcome, policy, sleep_ms, headers)
                await self._async_sleeper.sleep_ms(sleep_ms)
                scheduled_delay = sleep_ms
                continue

            return self._succeed(result, attempt, first_ms)

        return self._fall_through(max_attempts, scheduled_delay, first_ms, carried, policy, last_error, headers)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _init_timing(
        self,
        policy: RetryPolicy,
        context: Optional[Mapping[str, Any]],
    ) -> Tuple[int, float, Optional[float]]:
        max_attempts = max(1, policy.attempts)
        first_ms = self._clock.now_ms()
        deadline_at = first_ms + policy.deadline_budget_ms if policy.deadline_budget_ms is not None else None

        self._logger.debug(
            "Retry sequence starting: attempts=%d start_after_ms=%d attempt_timeout_ms=%s "
            "deadline_budget_ms=%s context_keys=%s",
            max_attempts,
            policy.start_after_ms,
            policy.attempt_timeout_ms,
            policy.deadline_budget_ms,
            sorted(context or {}),
        )
        return max_attempts, first_ms, deadline_at

    def _check_start_after(self, delay_ms: int, deadline_at: Optional[float], first_ms: float) -> None:
        if deadline_at is not None and not self._has_time_left(deadline_at, delay_ms):
            raise StartAfterExceedsDeadlineError(
                message="Start-after delay exceeds deadline",
                elapsed_ms=self._elapsed_ms(first_ms),
                start_after_ms=delay_ms,
            )

    def _new_attempt_context(
        self,
        attempt: int,
        max_attempts: int,
        scheduled_delay_ms: int,
        first_ms: float,
        deadline_at: Optional[float],
        carried: Mapping[str, Any],
    ) -> AttemptContext:
        elapsed_ms = self._elapsed_ms(first_ms)
        remaining_ms = self._remaining_ms(deadline_at) if deadline_at is not None else None

        self._logger.info(
            "Attempt %d/%d (scheduled delay %dms, elapsed %dms, remaining budget %s)",
            attempt,
            max_attempts,
            scheduled_delay_ms,
            elapsed_ms,
            "unbounded" if remaining_ms is None else f"{remaining_ms}ms",
        )
        return AttemptContext(attempt, max_attempts, scheduled_delay_ms, elapsed_ms, remaining_ms, carried)

    def _ensure_time_left_or_give_up(
        self,
        attempt_ctx: AttemptContext,
        deadline_at: Optional[float],
        policy: RetryPolicy,
        last_error: Optional[BaseException],
        headers: Headers,
    ) -> None:
        """If the deadline has passed, run the give-up hook and raise."""
        if deadline_at is None or self._remaining_ms(deadline_at) > 0:
            return

        attempt_ctx.remaining_budget_ms = 0
        error = last_error or DeadlineExceededError(
            message="Deadline exceeded",
            attempts=attempt_ctx.attempt_number - 1,
            elapsed_ms=attempt_ctx.elapsed_since_first_ms,
            deadline_budget_ms=policy.deadline_budget_ms,
        )
        self._run_give_up_hook(attempt_ctx, AttemptOutcome(error=error), policy, headers)
        raise error

    def _handle_failure(
        self,
        error: Exception,
        attempt_ctx: AttemptContext,
        policy: RetryPolicy,
        carried: Dict[str, Any],
        deadline_at: Optional[float],
    ) -> Tuple[AttemptOutcome, Headers, Optional[int]]:
        """
        Classify ``error`` and decide what happens next.

        Returns the outcome, the header echo and the sleep before the next
        attempt, or ``None`` as the sleep when the engine gives up (the give-up
        hook has already run).
        """
        attempt = attempt_ctx.attempt_number
        metadata = self._classify(error, attempt, policy)
        if metadata.context_patch:
            carried.update(metadata.context_patch)
        headers = metadata.headers

        outcome = AttemptOutcome(error=error, status_code=metadata.status_code, tags=list(metadata.tags))

        should_retry = policy.decider.should_retry(outcome, attempt_ctx)
        self._logger.debug(
            "Retry decision for attempt %d: should_retry=%s status_code=%s tags=%s",
            attempt,
            should_retry,
            outcome.status_code,
            outcome.tags,
        )

        if not should_retry or attempt >= attempt_ctx.max_attempts:
            self._run_give_up_hook(attempt_ctx, outcome, policy, headers)
            return outcome, headers, None

        sleep_ms = self._compute_sleep_ms(attempt, policy, metadata)

        if deadline_at is not None and not self._has_time_left(deadline_at, sleep_ms):
            self._logger.warning(
                "Next delay of %dms would overrun the deadline; giving up after attempt %d",
                sleep_ms,
                attempt,
            )
            self._run_give_up_hook(attempt_ctx, outcome, policy, headers)
            return outcome, headers, None

        self._logger.debug("Sleeping %dms before attempt %d", sleep_ms, attempt + 1)
        return outcome, headers, sleep_ms

    def _classify(self, error: Exception, attempt: int, policy: RetryPolicy) -> FailureMetadata:
        if policy.classifier is None:
            self._logger.warning(
                "Attempt %d failed (unclassified): %s: %s",
                attempt,
                type(error).__name__,
                error,
            )
            return FailureMetadata()

        metadata = policy.classifier.classify(error)
        self._logger.warning(
            "Attempt %d failed: %s: %s (status_code=%s tags=%s min_next_delay_ms=%s "
            "not_before_unix_ms=%s header_hints=%s)",
            attempt,
            type(error).__name__,
            error,
            metadata.status_code,
            metadata.tags,
            metadata.min_next_delay_ms,
            metadata.not_before_unix_ms,
            bool(metadata.headers),
        )
        return metadata

    def _compute_sleep_ms(self, attempt: int, policy: RetryPolicy, metadata: FailureMetadata) -> int:
        """Policy delay for the next attempt, raised to classifier hints when headers are followed."""
        sleep_ms = policy.next_delay_ms(attempt + 1)

        if policy.follow_headers and metadata.min_next_delay_ms is not None:
            sleep_ms = max(sleep_ms, 0, metadata.min_next_delay_ms)

        if policy.follow_headers and metadata.not_before_unix_ms is not None:
            delta = metadata.not_before_unix_ms - int(round(self._clock.now_ms()))
            if delta > 0:
                sleep_ms = max(sleep_ms, delta)

        return sleep_ms

    def _succeed(self, result: Any, attempt: int, first_ms: float) -> AttemptOutcome:
        self._logger.info(
            "Operation succeeded on attempt %d (%dms elapsed)",
            attempt,
            self._elapsed_ms(first_ms),
        )
        return AttemptOutcome(result=result)

    def _fall_through(
        self,
        max_attempts: int,
        scheduled_delay: int,
        first_ms: float,
        carried: Mapping[str, Any],
        policy: RetryPolicy,
        last_error: Optional[BaseException],
        headers: Headers,
    ) -> AttemptOutcome:
        error = last_error or RetryExhaustedError(
            message="Attempt loop ended without a result",
            attempts=max_attempts,
            elapsed_ms=self._elapsed_ms(first_ms),
        )
        outcome = AttemptOutcome(error=error)
        attempt_ctx = AttemptContext(
            max_attempts,
            max_attempts,
            scheduled_delay,
            self._elapsed_ms(first_ms),
            0,
            carried,
        )
        self._run_give_up_hook(attempt_ctx, outcome, policy, headers)
        return outcome

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _run_between_hook(
        self,
        attempt_ctx: AttemptContext,
        outcome: AttemptOutcome,
        policy: RetryPolicy,
        sleep_ms: int,
        headers: Headers,
    ) -> None:
        if self._between_hook is None:
            return
        try:
            self._between_hook(attempt_ctx, outcome, policy, sleep_ms, headers)
        except Exception as e:
            self._logger.debug("Between-attempts hook failed: %s", e)

    def _run_give_up_hook(
        self,
        attempt_ctx: AttemptContext,
        outcome: AttemptOutcome,
        policy: RetryPolicy,
        headers: Headers,
    ) -> None:
        error = outcome.error
        self._logger.error(
            "Giving up after attempt %d/%d (%dms elapsed). Last error: %s: %s "
            "(status_code=%s tags=%s)",
            attempt_ctx.attempt_number,
            attempt_ctx.max_attempts,
            attempt_ctx.elapsed_since_first_ms,
            type(error).__name__ if error is not None else "",
            error if error is not None else "",
            outcome.status_code,
            outcome.tags,
        )

        if self._on_give_up_hook is None:
            return
        try:
            self._on_give_up_hook(attempt_ctx, outcome, policy, headers)
        except Exception as e:
            self._logger.debug("Give-up hook failed: %s", e)

    # ------------------------------------------------------------------
    # Time accounting
    # ------------------------------------------------------------------

    def _elapsed_ms(self, first_ms: float) -> int:
        return int(round(self._clock.now_ms() - first_ms))

    def _remaining_ms(self, deadline_at: float) -> int:
        return int(max(0, round(deadline_at - self._clock.now_ms())))

    def _has_time_left(self, deadline_at: float, sleep_ms: int) -> bool:
        return self._remaining_ms(deadline_at) > sleep_ms


PolicySource = Union[RetryPolicy, Callable[[], RetryPolicy]]


def _resolve_policy(source: PolicySource) -> RetryPolicy:
    if isinstance(source, RetryPolicy):
        source.reset_cursor()
        return source
    return source()


def retrying(policy: PolicySource, engine: Optional[Retry] = None) -> Callable[[F], F]:
    """
    Decorator running a sync or async function under a retry policy.

    ``policy`` is a policy instance or a zero-argument factory; a factory gives
    every call its own policy, which is required when calls run concurrently.

    Example:
        @retrying(http_retry_policy)
        async def fetch_quote():
            ...
    """
    def decorator(func: F) -> F:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                retry = engine or Retry()
                outcome = await retry.execute_async(lambda ctx: func(*args, **kwargs), _resolve_policy(policy))
                return outcome.unwrap()
            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            retry = engine or Retry()
            outcome = retry.execute(lambda ctx: func(*args, **kwargs), _resolve_policy(policy))
            return outcome.unwrap()
        return sync_wrapper  # type: ignore[return-value]

    return decorator


__all__ = [
    "Retry",
    "retrying",
    "BetweenAttemptsHook",
    "GiveUpHook",
]
