"""Shared dataclasses used across the resolver and attribute modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

Row = Mapping[str, object]
AttributeSet = dict[str, list[str]]


class QueryState(str, Enum):
    """Lifecycle of one auth query within a single login attempt."""

    PENDING = "pending"
    SKIPPED = "skipped"
    TRIED = "tried"
    WON = "won"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class AuthQueryOutcome:
    """Final state reached by an auth query during one login attempt."""

    name: str
    state: QueryState


@dataclass(slots=True)
class LoginResult:
    """Per-call record threaded from the resolver to the attribute runner."""

    winning_query: str
    extracted_userid: object | None = None
    attributes: AttributeSet = field(default_factory=dict)
    outcomes: tuple[AuthQueryOutcome, ...] = ()

    def parameters_for(self, username: str) -> dict[str, object]:
        """Bind parameters used by attribute queries."""

        if self.extracted_userid is not None:
            return {"userid": self.extracted_userid}
        return {"username": username}


__all__ = ["AttributeSet", "AuthQueryOutcome", "LoginResult", "QueryState", "Row"]
