"""
Domain: status transition policies.

Status membership is always enforced by the RequestStatus enum. Whether a given
edge (old -> new) is allowed is a separate, pluggable decision:

- FreeTransitionPolicy (default): any status may move to any other status.
  Staff rely on this for manual corrections.
- DirectedTransitionPolicy: only edges listed in a transition graph are allowed.
  Deployments opt in through configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol

from .buyback import RequestStatus
from .errors import InvalidTransitionError


class TransitionPolicy(Protocol):
    name: str

    def check(self, old: RequestStatus, new: RequestStatus) -> None:
        """Raise InvalidTransitionError when old -> new is not permitted."""
        ...


DEFAULT_TRANSITION_GRAPH: Mapping[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({RequestStatus.SUBMITTED, RequestStatus.CANCELLED}),
    RequestStatus.SUBMITTED: frozenset(
        {RequestStatus.REVIEWING, RequestStatus.REJECTED, RequestStatus.CANCELLED}
    ),
    RequestStatus.REVIEWING: frozenset(
        {RequestStatus.APPRAISED, RequestStatus.REJECTED, RequestStatus.CANCELLED}
    ),
    RequestStatus.APPRAISED: frozenset(
        {RequestStatus.APPROVED, RequestStatus.REVIEWING, RequestStatus.REJECTED, RequestStatus.CANCELLED}
    ),
    RequestStatus.APPROVED: frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class FreeTransitionPolicy:
    name: str = "free"

    def check(self, old: RequestStatus, new: RequestStatus) -> None:
        return None


@dataclass(frozen=True, slots=True)
class DirectedTransitionPolicy:
    name: str = "directed"
    graph: Mapping[RequestStatus, frozenset[RequestStatus]] = field(
        default_factory=lambda: dict(DEFAULT_TRANSITION_GRAPH)
    )

    def allowed_from(self, old: RequestStatus) -> frozenset[RequestStatus]:
        return self.graph.get(old, frozenset())

    def check(self, old: RequestStatus, new: RequestStatus) -> None:
        if old == new:
            return
        allowed = self.allowed_from(old)
        if new not in allowed:
            raise InvalidTransitionError(
                f"Cannot move a request from {old.value} to {new.value}",
                details={
                    "from": old.value,
                    "to": new.value,
                    "allowed": sorted(s.value for s in allowed),
                },
            )


def policy_for(enforce_graph: bool) -> TransitionPolicy:
    return DirectedTransitionPolicy() if enforce_graph else FreeTransitionPolicy()


__all__ = [
    "TransitionPolicy",
    "DEFAULT_TRANSITION_GRAPH",
    "FreeTransitionPolicy",
    "DirectedTransitionPolicy",
    "policy_for",
]
