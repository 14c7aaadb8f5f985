"""Structured metadata describing a classified failure."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional


def dedupe(values: Iterable[Any]) -> List[Any]:
    """Drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(values))


@dataclass(frozen=True)
class FailureMetadata:
    """
    What a classifier learned from a raised error.

    Attributes:
        status_code: HTTP-like status, if one could be determined
        tags: Failure tokens, deduplicated in insertion order
        context_patch: Keys merged into the attempt context for the next attempt
        min_next_delay_ms: Floor on the next delay
        not_before_unix_ms: Earliest epoch-millisecond instant for the next attempt
        headers: Lowercase header name -> values that influenced the result
    """
    status_code: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    context_patch: Dict[str, Any] = field(default_factory=dict)
    min_next_delay_ms: Optional[int] = None
    not_before_unix_ms: Optional[int] = None
    headers: Dict[str, List[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", dedupe(self.tags))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status_code": self.status_code,
            "tags": list(self.tags),
            "context_patch": dict(self.context_patch),
            "min_next_delay_ms": self.min_next_delay_ms,
            "not_before_unix_ms": self.not_before_unix_ms,
            "headers": {k: list(v) for k, v in self.headers.items()},
        }


__all__ = ["FailureMetadata", "dedupe"]
