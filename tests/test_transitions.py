"""
Tests for `domain/transitions.py`.

Covers contract rules:
- The free policy accepts every edge, including out of terminal statuses.
- The directed policy accepts only graph edges and reports the allowed set.
"""

from __future__ import annotations

import itertools

import pytest

from domain.buyback import RequestStatus
from domain.errors import InvalidTransitionError
from domain.transitions import DirectedTransitionPolicy, FreeTransitionPolicy, policy_for


def test_free_policy_accepts_every_edge() -> None:
    policy = FreeTransitionPolicy()
    for old, new in itertools.product(RequestStatus, RequestStatus):
        policy.check(old, new)


def test_directed_policy_follows_graph() -> None:
    policy = DirectedTransitionPolicy()

    policy.check(RequestStatus.SUBMITTED, RequestStatus.REVIEWING)
    policy.check(RequestStatus.APPRAISED, RequestStatus.REVIEWING)
    policy.check(RequestStatus.APPROVED, RequestStatus.COMPLETED)

    with pytest.raises(InvalidTransitionError) as exc:
        policy.check(RequestStatus.COMPLETED, RequestStatus.DRAFT)

    assert exc.value.details == {"from": "completed", "to": "draft", "allowed": []}


def test_directed_policy_allows_staying_put() -> None:
    DirectedTransitionPolicy().check(RequestStatus.REJECTED, RequestStatus.REJECTED)


def test_policy_for_setting() -> None:
    assert policy_for(False).name == "free"
    assert policy_for(True).name == "directed"
