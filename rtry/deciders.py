"""Retry deciders: predicates over (outcome, context) approving another attempt."""

from abc import ABC, abstractmethod
from typing import Iterable, List

from .context import AttemptContext, AttemptOutcome
from .tokens import FailureToken, Token, normalize_token


class RetryDecider(ABC):
    """Approves or denies another attempt after a failure."""

    @abstractmethod
    def should_retry(self, outcome: AttemptOutcome, context: AttemptContext) -> bool:
        pass


class TokenDecider(RetryDecider):
    """A decider whose behaviour is driven by failure tokens."""

    @abstractmethod
    def set_tokens(self, tokens: Iterable[Token]) -> "TokenDecider":
        pass


class AlwaysRetryDecider(RetryDecider):
    """Retries every failed attempt."""

    def should_retry(self, outcome: AttemptOutcome, context: AttemptContext) -> bool:
        return outcome.error is not None


class OnTokensDecider(TokenDecider):
    """
    Retries when the outcome matches any configured token.

    Integers match the status code exactly, ``5XX``/``4XX`` match the status
    class and any other string matches a tag (case-insensitive).
    """

    def __init__(self, tokens: Iterable[Token]):
        self._tokens: List[Token] = []
        self.set_tokens(tokens)

    @property
    def tokens(self) -> List[Token]:
        return list(self._tokens)

    def set_tokens(self, tokens: Iterable[Token]) -> "OnTokensDecider":
        self._tokens = [normalize_token(t) for t in tokens]
        return self

    def should_retry(self, outcome: AttemptOutcome, context: AttemptContext) -> bool:
        if outcome.is_success:
            return False

        status = outcome.status_code
        tags = {str(tag).upper() for tag in outcome.tags}

        for token in self._tokens:
            if isinstance(token, int):
                if status == token:
                    return True
                continue

            if status is not None:
                if token == FailureToken.FIVE_HUNDRED.value and status // 100 == 5:
                    return True
                if token == FailureToken.FOUR_HUNDRED.value and status // 100 == 4:
                    return True

            if token in tags:
                return True

        return False

    def __repr__(self) -> str:
        return f"OnTokensDecider(tokens={self._tokens!r})"


class CompositeDecider(RetryDecider):
    """Retries when any of its deciders approves."""

    def __init__(self, *deciders: RetryDecider):
        self.deciders = list(deciders)

    def should_retry(self, outcome: AttemptOutcome, context: AttemptContext) -> bool:
        return any(decider.should_retry(outcome, context) for decider in self.deciders)


__all__ = [
    "RetryDecider",
    "TokenDecider",
    "AlwaysRetryDecider",
    "OnTokensDecider",
    "CompositeDecider",
]
