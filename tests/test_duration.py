import pytest

from rtry.duration import format_ms, format_percent, parse_duration_ms
from rtry.exceptions import InvalidDurationError, RtryError


@pytest.mark.parametrize(
    "token, expected",
    [
        ("250", 250),
        ("250ms", 250),
        ("1.5s", 1500),
        ("1.5S", 1500),
        (" 2m ", 120_000),
        ("1h", 3_600_000),
        ("0.5ms", 1),
        ("0", 0),
    ],
)
def test_parse_duration_ms(token, expected):
    assert parse_duration_ms(token) == expected


@pytest.mark.parametrize("token", ["", "   ", "abc", "-5", "1d", "1.s", ".5s", "1 s"])
def test_parse_duration_ms_rejects_malformed(token):
    with pytest.raises(InvalidDurationError) as exc_info:
        parse_duration_ms(token)

    assert exc_info.value.token == token
    assert exc_info.value.error_code == "VAL_001"


def test_invalid_duration_is_a_value_error():
    with pytest.raises(ValueError):
        parse_duration_ms("soon")

    with pytest.raises(RtryError):
        parse_duration_ms("soon")


@pytest.mark.parametrize(
    "ms, expected",
    [
        (0, "0ms"),
        (1, "1"),
        (999, "999"),
        (1000, "1s"),
        (1234, "1.23s"),
        (1500, "1.5s"),
        (61_000, "61s"),
        (90_000, "90s"),
        (120_000, "2m"),
        (3_600_000, "1h"),
    ],
)
def test_format_ms_picks_shortest_token(ms, expected):
    assert format_ms(ms) == expected


def test_format_ms_rejects_negative():
    with pytest.raises(InvalidDurationError) as exc_info:
        format_ms(-5)

    assert exc_info.value.token == "-5"


def test_format_ms_round_trips_through_parse():
    for ms in (1500, 61_000, 120_000, 3_600_000):
        assert parse_duration_ms(format_ms(ms)) == ms


def test_format_percent():
    assert format_percent(15) == "15%"
    assert format_percent(12.5) == "12.5%"
    assert format_percent(33.33333) == "33.333%"
    assert format_percent(-4) == "0%"
