"""
Tests for the HTTP layer (`api/main.py`, `api/routers/`).

Covers contract rules:
- Submission returns 201 with the request number, token and tracking URL.
- Staff reads need a bearer credential; customer reads need a proof.
- Domain errors render the standard error envelope with the mapped status.
- Rate-limited calls return 429 with Retry-After.
- Rate-limit identity is the transport peer; X-Forwarded-For only counts
  when the peer is a trusted proxy.
- Tracking resolves by request number.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from starlette.requests import Request

from api.config import Settings
from api.dependencies import (
    client_identifier,
    get_clock,
    get_credential_decoder,
    get_rate_limiter,
    get_repository,
    get_settings,
)
from api.main import app
from domain.buyback import RequestStatus
from services.verification_gateway import JwtCredentialDecoder
from tests.fakes import make_request

SECRET = "test-secret"
REQUEST_ID = "00000000-0000-0000-0000-000000000001"


def _auth(role: str, store_id: str | None = None, sub: str = "staff-1") -> Dict[str, str]:
    claims = {"sub": sub, "role": role, "name": "Hanako"}
    if store_id:
        claims["store_id"] = store_id
    return {"Authorization": f"Bearer {jwt.encode(claims, SECRET)}"}


@pytest.fixture
def client(repository, rate_limiter, clock):
    settings = Settings(jwt_secret=SECRET, app_env="test", frontend_url="https://shop.example.com")
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_credential_decoder] = lambda: JwtCredentialDecoder(SECRET)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _submission() -> dict:
    return {
        "customer_name": "Taro Yamada",
        "email": "taro@example.com",
        "items": [
            {"name": "Retro console", "category": "retro", "estimated_value": 1000},
            {"name": "Handheld", "category": "handheld", "estimated_value": 2000},
        ],
        "preferred_store_id": "S1",
    }


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_request(client, repository) -> None:
    response = client.post("/api/v1/requests", json=_submission())

    assert response.status_code == 201
    body = response.json()
    assert body["request_number"] == "BR20250106-0001"
    assert body["status"] == "submitted"
    assert len(body["verification_token"]) == 64
    assert body["tracking_url"] == (
        f"https://shop.example.com/track/BR20250106-0001?token={body['verification_token']}"
    )
    stored = repository.get_request_by_number("BR20250106-0001")
    assert stored.estimated_total_value == Decimal("3000")
    assert stored.user_agent == "testclient"


def test_create_request_validation_envelope(client) -> None:
    payload = _submission()
    payload["items"] = [{"name": "", "category": "retro"}]

    response = client.post("/api/v1/requests", json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["status_code"] == 400
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"] == ["Item 1: name - This field is required"]


def test_malformed_body_uses_error_envelope(client) -> None:
    response = client.post("/api/v1/requests", json={"items": "not-a-list"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_create_request_rate_limited(client) -> None:
    for _ in range(5):
        assert client.post("/api/v1/requests", json=_submission()).status_code == 201

    response = client.post("/api/v1/requests", json=_submission())

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "900"
    body = response.json()
    assert body["error"]["code"] == "RATE_LIMITED"
    assert "reset_time" in body["error"]


def test_list_requires_credentials(client) -> None:
    response = client.get("/api/v1/requests")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


def test_invalid_bearer_token(client) -> None:
    response = client.get("/api/v1/requests", headers={"Authorization": "Bearer nonsense"})

    assert response.status_code == 401


def test_list_for_store_staff(client, repository) -> None:
    repository.add(make_request())

    response = client.get("/api/v1/requests", params={"status": "submitted"}, headers=_auth("store_staff", "S1"))

    assert response.status_code == 200
    body = response.json()
    assert [r["request_number"] for r in body["requests"]] == ["BR20250106-0001"]
    assert body["pagination"]["total"] == 1
    assert body["filters_applied"]["status"] == "submitted"


def test_list_rejects_unknown_status(client) -> None:
    response = client.get("/api/v1/requests", params={"status": "archived"}, headers=_auth("admin"))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_STATUS"


def test_staff_detail(client, repository) -> None:
    repository.add(make_request())

    response = client.get(f"/api/v1/requests/{REQUEST_ID}", headers=_auth("admin"))

    assert response.status_code == 200
    body = response.json()
    assert body["internal_notes"] == "Check serial numbers"
    assert body["version"] == 1


def test_customer_detail_with_token(client, repository) -> None:
    repository.add(make_request())

    response = client.get(f"/api/v1/requests/{REQUEST_ID}", params={"token": "a" * 64})

    assert response.status_code == 200
    body = response.json()
    assert body["request_number"] == "BR20250106-0001"
    assert body.get("internal_notes") is None
    assert body.get("verification_token") is None
    assert body.get("ip_address") is None


def test_customer_detail_wrong_proof(client, repository) -> None:
    repository.add(make_request())

    response = client.get(f"/api/v1/requests/{REQUEST_ID}", params={"email": "someone@example.com"})

    assert response.status_code == 403


def test_detail_rejects_malformed_id(client) -> None:
    response = client.get("/api/v1/requests/not-a-uuid", headers=_auth("admin"))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_update_other_store_forbidden(client, repository) -> None:
    repository.add(make_request(preferred_store_id="S2"))

    response = client.put(
        f"/api/v1/requests/{REQUEST_ID}",
        json={"status": "reviewing"},
        headers=_auth("store_staff", "S1"),
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


def test_update_with_appraisals(client, repository) -> None:
    repository.add(make_request())

    response = client.put(
        f"/api/v1/requests/{REQUEST_ID}",
        json={
            "status": "appraised",
            "appraisals": [
                {"item_name": "Retro console", "appraised_value": 500},
                {"item_name": "Handheld", "appraised_value": 700},
            ],
        },
        headers=_auth("store_staff", "S1"),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "appraised"
    assert body["version"] == 2
    assert [e["type"] for e in body["communication_history"]] == ["status_change", "appraisal_completed"]
    assert repository.requests[make_request().request_id].status is RequestStatus.APPRAISED


def test_delete_completed_request(client, repository) -> None:
    repository.add(make_request(status=RequestStatus.COMPLETED))

    response = client.delete(f"/api/v1/requests/{REQUEST_ID}", headers=_auth("admin"))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "TERMINAL_STATE"


def test_delete_request(client, repository) -> None:
    repository.add(make_request())

    response = client.delete(f"/api/v1/requests/{REQUEST_ID}", headers=_auth("admin"))

    assert response.status_code == 200
    assert response.json()["id"] == REQUEST_ID
    assert repository.requests == {}


def test_analytics(client, repository) -> None:
    repository.add(make_request())

    response = client.get("/api/v1/requests/analytics", headers=_auth("admin"))

    assert response.status_code == 200
    assert response.json()["overview"]["total_requests"] == 1


def test_tracking(client, repository) -> None:
    repository.add(make_request(status=RequestStatus.REVIEWING))

    response = client.get("/api/v1/requests/track/BR20250106-0001", params={"token": "a" * 64})

    assert response.status_code == 200
    body = response.json()
    assert body["request"]["progress"]["percent"] == 50
    assert body["store"]["name"] == "Shibuya"
    assert body["contact_info"]["support_email"] == "support@example.com"


def test_tracking_bad_number(client) -> None:
    response = client.get("/api/v1/requests/track/12345", params={"token": "a" * 64})

    assert response.status_code == 400


def test_rotating_forwarded_for_still_rate_limited(client, repository) -> None:
    repository.add(make_request())
    url = "/api/v1/requests/track/BR20250106-0001"

    for i in range(5):
        response = client.get(
            url,
            params={"email": f"guess{i}@example.com"},
            headers={"X-Forwarded-For": f"10.0.0.{i}"},
        )
        assert response.status_code == 403

    response = client.get(
        url,
        params={"email": "guess5@example.com"},
        headers={"X-Forwarded-For": "10.0.0.5"},
    )

    assert response.status_code == 429
    assert response.json()["error"]["code"] == "RATE_LIMITED"


def test_forwarded_for_honoured_behind_trusted_proxy(client, repository) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(
        jwt_secret=SECRET,
        app_env="test",
        frontend_url="https://shop.example.com",
        trusted_proxies=("testclient",),
    )
    repository.add(make_request())
    url = "/api/v1/requests/track/BR20250106-0001"

    for _ in range(5):
        client.get(url, params={"email": "guess@example.com"}, headers={"X-Forwarded-For": "198.51.100.7"})

    limited = client.get(url, params={"email": "guess@example.com"}, headers={"X-Forwarded-For": "198.51.100.7"})
    other = client.get(url, params={"email": "guess@example.com"}, headers={"X-Forwarded-For": "198.51.100.8"})

    assert limited.status_code == 429
    assert other.status_code == 403


def _scope_request(peer: str | None, forwarded: str | None = None) -> Request:
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded is not None else []
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": headers,
            "client": (peer, 50000) if peer is not None else None,
        }
    )


@pytest.mark.parametrize(
    ("peer", "forwarded", "trusted", "expected"),
    [
        ("203.0.113.5", None, (), "203.0.113.5"),
        ("203.0.113.5", "1.1.1.1", (), "203.0.113.5"),
        ("10.0.0.9", "1.1.1.1", ("10.0.0.9",), "1.1.1.1"),
        ("10.0.0.9", "6.6.6.6, 1.1.1.1, 10.0.0.5", ("10.0.0.9", "10.0.0.5"), "1.1.1.1"),
        ("10.0.0.9", None, ("10.0.0.9",), "10.0.0.9"),
        (None, "1.1.1.1", (), "unknown"),
    ],
)
def test_client_identifier(peer, forwarded, trusted, expected) -> None:
    assert client_identifier(_scope_request(peer, forwarded), trusted) == expected
