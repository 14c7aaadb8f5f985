"""
Hedged-request configuration.

Carries the number of speculative lanes, the stagger between lane starts and
the cancellation policy. The retry engine does not race lanes; the values are
exposed on the policy for callers that run hedged requests themselves.
"""

from dataclasses import dataclass
from typing import Optional

from .duration import format_ms, parse_duration_ms
from .exceptions import ConfigurationError

CANCEL_ON_FIRST_SUCCESS = 1
CANCEL_ON_FIRST_COMPLETE = 2
NO_CANCEL = 3


@dataclass(frozen=True)
class Hedge:
    """Immutable hedge descriptor: ``h=<lanes>@<stagger>[&<cancel_policy>]``."""

    lanes: int
    stagger_delay_ms: int
    cancel_policy: int = CANCEL_ON_FIRST_SUCCESS

    KEY = "h"

    def __post_init__(self) -> None:
        if self.lanes < 1:
            raise ConfigurationError(message="Hedge lanes must be >= 1", context={"lanes": self.lanes})
        if self.stagger_delay_ms < 0:
            raise ConfigurationError(
                message="Hedge stagger delay must be >= 0",
                context={"stagger_delay_ms": self.stagger_delay_ms},
            )
        if not self.cancel_policy:
            object.__setattr__(self, "cancel_policy", CANCEL_ON_FIRST_SUCCESS)

    @classmethod
    def create(cls, lanes: int, stagger_delay_ms: int, cancel_policy: Optional[int] = None) -> "Hedge":
        return cls(lanes, stagger_delay_ms, cancel_policy or CANCEL_ON_FIRST_SUCCESS)

    @classmethod
    def from_token(cls, token: str) -> "Hedge":
        """Build a hedge from ``<lanes>@<stagger>[&<cancel_policy>]``."""
        value = token.strip()
        if "@" not in value:
            raise ConfigurationError(
                message=f"Invalid hedge format, expected n@delay or n@delay&policy: {token!r}"
            )

        lanes_token, delay_token = (part.strip() for part in value.split("@", 1))
        try:
            lanes = int(lanes_token)
        except ValueError:
            raise ConfigurationError(message=f"Invalid hedge lane count: {token!r}") from None

        cancel_policy = None
        if "&" in delay_token:
            delay_token, cancel_token = (part.strip() for part in delay_token.split("&", 1))
            if not cancel_token.isdigit():
                raise ConfigurationError(
                    message=f'Invalid cancellation policy, expected an integer after "&": {token!r}'
                )
            cancel_policy = int(cancel_token)

        return cls.create(lanes, parse_duration_ms(delay_token), cancel_policy)

    def __str__(self) -> str:
        text = f"{self.KEY}={self.lanes}@{format_ms(self.stagger_delay_ms)}"
        if self.cancel_policy != CANCEL_ON_FIRST_SUCCESS:
            text += f"&{self.cancel_policy}"
        return text


__all__ = [
    "Hedge",
    "CANCEL_ON_FIRST_SUCCESS",
    "CANCEL_ON_FIRST_COMPLETE",
    "NO_CANCEL",
]
