"""Failure tokens shared by the classifier and the token decider."""

from enum import Enum
from typing import List, Union


class FailureToken(str, Enum):
    """Tags a classified failure can carry, plus status-class wildcards."""
    FIVE_HUNDRED = "5XX"
    FOUR_HUNDRED = "4XX"
    ETIMEDOUT = "ETIMEDOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    ECONNRESET = "ECONNRESET"
    ECONNREFUSED = "ECONNREFUSED"
    DEADLOCK = "DEADLOCK"
    RATE_LIMITED = "RATE_LIMITED"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def defaults(cls) -> List[str]:
        """Tokens enabled when a policy asks for the default set."""
        return [
            cls.FIVE_HUNDRED.value,
            cls.ETIMEDOUT.value,
            cls.NETWORK_ERROR.value,
            cls.ECONNRESET.value,
            cls.ECONNREFUSED.value,
            cls.DEADLOCK.value,
            cls.RATE_LIMITED.value,
        ]


DEFAULT_ALIASES = ("default", "standard")

Token = Union[int, str]


def normalize_token(token: Token) -> Token:
    """Integers and digit strings become ints; anything else upper-cased."""
    if isinstance(token, bool):
        raise TypeError("Boolean is not a valid failure token")
    if isinstance(token, int):
        return token
    text = str(token).strip()
    if text.isdigit():
        return int(text)
    return text.upper()


def expand_tokens(tokens) -> List[Token]:
    """
    Normalize tokens and expand the ``default``/``standard`` aliases.

    An empty token list expands to the default set. Order is preserved and
    duplicates are dropped.
    """
    raw = [t for t in tokens if str(t).strip() != ""]
    if not raw:
        raw = list(DEFAULT_ALIASES[:1])

    out: List[Token] = []
    for token in raw:
        if isinstance(token, str) and token.strip().lower() in DEFAULT_ALIASES:
            candidates = FailureToken.defaults()
        else:
            candidates = [token]
        for candidate in candidates:
            normalized = normalize_token(candidate)
            if normalized not in out:
                out.append(normalized)
    return out


__all__ = ["FailureToken", "DEFAULT_ALIASES", "Token", "normalize_token", "expand_tokens"]
