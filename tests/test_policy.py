import pytest

from rtry.deciders import OnTokensDecider
from rtry.exceptions import ConfigurationError
from rtry.hedge import Hedge
from rtry.jitter import Jitter
from rtry.policy import MAX_DELAY_MS, BackoffMode, RetryPolicy
from rtry.sequence import Sequence


def test_linear_delay():
    policy = RetryPolicy(backoff_mode="lin", delay_ms=100)

    assert policy.backoff_mode is BackoffMode.LINEAR
    assert policy.next_delay_ms(1) == 100
    assert policy.next_delay_ms(2) == 100
    assert policy.next_delay_ms(3) == 200
    assert policy.next_delay_ms(5) == 400


def test_exponential_delay_uses_start_after_as_base():
    policy = RetryPolicy(start_after_ms=100, exponential_base=2.0)

    assert policy.next_delay_ms(1) == 50
    assert policy.next_delay_ms(2) == 100
    assert policy.next_delay_ms(3) == 200
    assert policy.next_delay_ms(4) == 400


def test_exponential_without_start_after_is_zero():
    policy = RetryPolicy()
    assert policy.next_delay_ms(4) == 0


def test_sequence_delay():
    policy = RetryPolicy().set_sequence(Sequence([100, 200]))

    assert policy.backoff_mode is BackoffMode.SEQUENCE
    assert policy.next_delay_ms(1) == 100
    assert policy.next_delay_ms(2) == 200
    assert policy.next_delay_ms(3) == 0


def test_sequence_mode_without_sequence_is_zero():
    policy = RetryPolicy(backoff_mode=BackoffMode.SEQUENCE)
    assert policy.next_delay_ms(2) == 0


def test_cap_clamps_delays():
    policy = RetryPolicy(backoff_mode="lin", delay_ms=100, cap_ms=150)
    assert policy.next_delay_ms(2) == 100
    assert policy.next_delay_ms(3) == 150


def test_zero_cap_is_not_the_same_as_no_cap():
    assert RetryPolicy(backoff_mode="lin", delay_ms=100, cap_ms=0).next_delay_ms(3) == 0
    assert RetryPolicy(backoff_mode="lin", delay_ms=100, cap_ms=None).next_delay_ms(3) == 200


def test_exponential_overflow_falls_back_to_cap():
    policy = RetryPolicy(start_after_ms=1, exponential_base=10.0, cap_ms=5000)
    assert policy.next_delay_ms(1000) == 5000


def test_exponential_overflow_without_cap_uses_ceiling():
    policy = RetryPolicy(start_after_ms=1, exponential_base=2.0)

    assert policy.next_delay_ms(1000) == MAX_DELAY_MS
    assert policy.next_delay_ms(1100) == MAX_DELAY_MS
    assert policy.next_delay_ms(20) == 2 ** 18


@pytest.mark.parametrize("seed", [None, 3, 42])
def test_cap_is_applied_after_jitter(seed):
    policy = RetryPolicy(backoff_mode="lin", delay_ms=1000, jitter=Jitter(500, "pm"), cap_ms=1100, seed=seed)

    delays = [policy.next_delay_ms(n) for n in range(2, 4) for _ in range(200)]

    assert max(delays) <= 1100
    assert min(delays) >= 500


def test_seeded_jitter_is_reproducible_across_policies():
    make = lambda: RetryPolicy(backoff_mode="lin", delay_ms=1000, jitter=Jitter(200, "pm"), seed=99)

    first = [make().next_delay_ms(n) for n in range(2, 6)]
    second = [make().next_delay_ms(n) for n in range(2, 6)]

    assert first == second


def test_cursor_advances_and_resets():
    policy = RetryPolicy(backoff_mode="lin", delay_ms=100)

    assert [policy.next_delay_ms() for _ in range(4)] == [100, 100, 100, 200]
    assert policy.cursor == 4

    policy.reset_cursor()
    assert policy.cursor == 0


def test_start_after_delay_is_jittered():
    assert RetryPolicy(start_after_ms=300).start_after_delay_ms() == 300

    policy = RetryPolicy(start_after_ms=300, jitter=Jitter(100, "pm"), seed=3)
    assert 200 <= policy.start_after_delay_ms() <= 400


def test_setters_switch_mode():
    policy = RetryPolicy()

    policy.set_delay_ms(250)
    assert policy.backoff_mode is BackoffMode.LINEAR

    policy.set_exponential_base(3.0)
    assert policy.backoff_mode is BackoffMode.EXPONENTIAL

    policy.set_exponential_base(None)
    assert policy.backoff_mode is BackoffMode.EXPONENTIAL


def test_tokens_are_pushed_into_token_decider():
    decider = OnTokensDecider([])
    policy = RetryPolicy(decider=decider)

    policy.set_retry_on_tokens([503, "etimedout"])
    assert decider.tokens == [503, "ETIMEDOUT"]

    other = OnTokensDecider([])
    policy.set_decider(other)
    assert other.tokens == [503, "ETIMEDOUT"]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"attempts": 0},
        {"start_after_ms": -1},
        {"delay_ms": -10},
        {"cap_ms": -1},
        {"deadline_budget_ms": -5},
        {"backoff_mode": "fibonacci"},
    ],
)
def test_invalid_policy(kwargs):
    with pytest.raises(ConfigurationError):
        RetryPolicy(**kwargs)


def test_backoff_mode_aliases():
    assert BackoffMode.parse("linear") is BackoffMode.LINEAR
    assert BackoffMode.parse("EXP") is BackoffMode.EXPONENTIAL
    assert BackoffMode.parse(BackoffMode.SEQUENCE) is BackoffMode.SEQUENCE


def test_to_spec_linear():
    policy = RetryPolicy(attempts=3, backoff_mode="lin", delay_ms=100)
    assert policy.to_spec() == "rtry:a=3;d=100;fh=1"


def test_to_spec_exponential():
    policy = RetryPolicy(attempts=4, start_after_ms=200, cap_ms=5000, deadline_budget_ms=30_000)
    assert policy.to_spec() == "rtry:a=4;m=exp;b=2;sa=200;cap=5s;dl=30s;fh=1"


def test_to_spec_with_parts():
    policy = RetryPolicy(
        attempts=5,
        attempt_timeout_ms=2000,
        follow_headers=False,
        jitter=Jitter(percent=20, mode="pm"),
        hedge=Hedge.create(2, 50),
        retry_on_tokens=["5XX", 429],
    ).set_sequence(Sequence([100, 1000], repeat_last=True))

    assert policy.to_spec() == "rtry:a=5;seq=100,1s*;t=2s;on=5XX,429;fh=0;j=20%@pm;h=2@50"
