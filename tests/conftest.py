"""
Pytest configuration.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides shared fixtures built on the
in-memory fakes in tests/fakes.py.
"""

import sys
from pathlib import Path

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.buyback import Store  # noqa: E402
from services.rate_limiter import RateLimiter  # noqa: E402
from services.request_service import RequestService, SubmissionContext  # noqa: E402
from services.verification_gateway import StaffPrincipal  # noqa: E402
from tests.fakes import (  # noqa: E402
    CONTACT_INFO,
    NOW,
    FixedClock,
    InMemoryAttemptStore,
    InMemoryBuybackRepository,
)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def stores():
    return (
        Store(store_id="S1", name="Shibuya", email="s1@example.com", address="1-1 Shibuya"),
        Store(store_id="S2", name="Shinjuku", email="s2@example.com"),
        Store(store_id="S9", name="Closed branch", is_active=False),
    )


@pytest.fixture
def repository(stores) -> InMemoryBuybackRepository:
    return InMemoryBuybackRepository(stores)


@pytest.fixture
def attempt_store() -> InMemoryAttemptStore:
    return InMemoryAttemptStore()


@pytest.fixture
def rate_limiter(attempt_store, clock) -> RateLimiter:
    return RateLimiter(attempt_store, clock)


@pytest.fixture
def service(repository, rate_limiter, clock) -> RequestService:
    return RequestService(
        repository,
        rate_limiter,
        clock,
        contact_info=CONTACT_INFO,
        frontend_url="https://shop.example.com",
    )


@pytest.fixture
def context() -> SubmissionContext:
    return SubmissionContext(client_identifier="203.0.113.5", ip_address="203.0.113.5", user_agent="pytest")


@pytest.fixture
def admin() -> StaffPrincipal:
    return StaffPrincipal(staff_id="staff-admin", role="admin", name="Admin")


@pytest.fixture
def s1_staff() -> StaffPrincipal:
    return StaffPrincipal(staff_id="staff-s1", role="store_staff", store_id="S1", name="Hanako")


@pytest.fixture
def s2_staff() -> StaffPrincipal:
    return StaffPrincipal(staff_id="staff-s2", role="store_staff", store_id="S2", name="Jiro")
