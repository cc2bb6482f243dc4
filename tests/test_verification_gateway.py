"""
Tests for `services/verification_gateway.py`.

Covers contract rules:
- Admins are unrestricted; store roles are pinned to their store; other
  roles are denied.
- Customer proof precedence is token > email > phone; a mismatch is
  Forbidden, a missing proof Unauthorized.
- Bearer credentials decode into a principal; bad tokens are Unauthorized.
- Redaction removes internal fields and staff-only history.
"""

from __future__ import annotations

from dataclasses import replace

import pytest
from jose import jwt

from domain.buyback import AuthMethod, CommunicationHistoryEntry, HistoryEntryType
from domain.errors import ForbiddenError, UnauthorizedError
from services.verification_gateway import (
    ADMIN_ROLES,
    CustomerProof,
    JwtCredentialDecoder,
    StaffPrincipal,
    authorize_customer,
    authorize_staff,
    generate_verification_token,
    redact_for_customer,
    scoped_store_id,
)
from tests.fakes import NOW, make_request

SECRET = "test-secret"


def test_admin_reads_any_store(admin) -> None:
    assert authorize_staff(admin, make_request(preferred_store_id="S2")) is admin


def test_store_staff_limited_to_own_store(s1_staff) -> None:
    assert authorize_staff(s1_staff, make_request(preferred_store_id="S1")) is s1_staff

    with pytest.raises(ForbiddenError):
        authorize_staff(s1_staff, make_request(preferred_store_id="S2"))

    with pytest.raises(ForbiddenError):
        authorize_staff(s1_staff, make_request(preferred_store_id=None))


def test_unknown_role_denied() -> None:
    with pytest.raises(ForbiddenError):
        authorize_staff(StaffPrincipal(staff_id="u1", role="customer"))


def test_missing_principal_unauthorized() -> None:
    with pytest.raises(UnauthorizedError):
        authorize_staff(None)


def test_required_roles_restrict_store_manager() -> None:
    manager = StaffPrincipal(staff_id="m1", role="store_manager", store_id="S1")
    with pytest.raises(ForbiddenError):
        authorize_staff(manager, required_roles=ADMIN_ROLES)


def test_scoped_store_id(admin, s1_staff) -> None:
    assert scoped_store_id(admin, "S2") == "S2"
    assert scoped_store_id(admin, None) is None
    assert scoped_store_id(s1_staff, "S2") == "S1"


def test_customer_token_proof() -> None:
    request = make_request()

    assert authorize_customer(CustomerProof(token="a" * 64), request) == "token"
    with pytest.raises(ForbiddenError):
        authorize_customer(CustomerProof(token="b" * 64), request)


def test_token_takes_precedence_over_email() -> None:
    request = make_request()

    # A wrong token is not rescued by a correct email.
    with pytest.raises(ForbiddenError):
        authorize_customer(CustomerProof(token="wrong", email="taro@example.com"), request)


def test_email_proof_is_case_insensitive() -> None:
    assert authorize_customer(CustomerProof(email="TARO@Example.com"), make_request()) == "email"


def test_phone_proof_is_verbatim() -> None:
    request = make_request()

    assert authorize_customer(CustomerProof(phone="090-1234-5678"), request) == "phone"
    with pytest.raises(ForbiddenError):
        authorize_customer(CustomerProof(phone="09012345678"), request)


def test_token_proof_fails_for_non_guest_request() -> None:
    request = make_request(auth_method=AuthMethod(kind="email"), verification_token=None)

    with pytest.raises(ForbiddenError):
        authorize_customer(CustomerProof(token="a" * 64), request)


def test_missing_proof_unauthorized() -> None:
    with pytest.raises(UnauthorizedError):
        authorize_customer(CustomerProof.from_values(token="  ", email=""), make_request())


def test_generate_verification_token() -> None:
    token = generate_verification_token()
    assert len(token) == 64
    assert token != generate_verification_token()


def test_jwt_decoder_reads_claims() -> None:
    token = jwt.encode({"sub": "staff-1", "role": "store_staff", "store_id": "S1", "name": "Hanako"}, SECRET)

    principal = JwtCredentialDecoder(SECRET).decode(token)

    assert principal == StaffPrincipal(staff_id="staff-1", role="store_staff", store_id="S1", name="Hanako")
    assert principal.display_name == "Hanako"


def test_jwt_decoder_rejects_bad_tokens() -> None:
    decoder = JwtCredentialDecoder(SECRET)

    with pytest.raises(UnauthorizedError):
        decoder.decode(jwt.encode({"sub": "staff-1", "role": "admin"}, "other-secret"))

    with pytest.raises(UnauthorizedError):
        decoder.decode("not-a-token")

    with pytest.raises(UnauthorizedError):
        decoder.decode(jwt.encode({"sub": "staff-1"}, SECRET))


def test_jwt_decoder_requires_secret() -> None:
    with pytest.raises(RuntimeError):
        JwtCredentialDecoder(None)


def test_redact_for_customer() -> None:
    note = CommunicationHistoryEntry(
        timestamp=NOW, actor_id="staff-1", actor_name="Hanako", type=HistoryEntryType.NOTE, content="internal"
    )
    request = replace(make_request(), communication_history=(note,))

    redacted = redact_for_customer(request)

    assert redacted.internal_notes is None
    assert redacted.ip_address is None
    assert redacted.user_agent is None
    assert redacted.referrer_url is None
    assert redacted.communication_history == ()
    assert redacted.request_number == request.request_number
