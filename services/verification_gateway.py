"""
Verification gateway.

Two independent authorization tracks, composed by the caller:

Staff track
- A bearer credential is decoded into a StaffPrincipal {staff_id, role, store_id}.
- admin / super_admin: unrestricted.
- store_manager / store_staff: only requests whose preferred_store_id equals
  the principal's store_id.
- Any other role is denied.

Customer track
- Exactly one proof is used per read, in precedence order token > email > phone.
- token: constant-time comparison against verification_token.
- email: case-insensitive comparison.
- phone: verbatim comparison.
- No proof -> UnauthorizedError. A non-matching proof -> ForbiddenError, which
  does not reveal which proof type would have worked.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Optional, Protocol

from jose import JWTError, jwt

from domain.buyback import BuybackRequest
from domain.errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger(__name__)

ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_STORE_MANAGER = "store_manager"
ROLE_STORE_STAFF = "store_staff"

ADMIN_ROLES = frozenset({ROLE_SUPER_ADMIN, ROLE_ADMIN})
STORE_SCOPED_ROLES = frozenset({ROLE_STORE_MANAGER, ROLE_STORE_STAFF})
STAFF_ROLES = ADMIN_ROLES | STORE_SCOPED_ROLES

# Bytes of entropy in a verification token (hex encoded, so twice as many chars).
TOKEN_BYTES = 32


@dataclass(frozen=True, slots=True)
class StaffPrincipal:
    staff_id: str
    role: str
    store_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.staff_id


class CredentialDecoder(Protocol):
    def decode(self, bearer_token: str) -> StaffPrincipal:
        """Return the principal, or raise UnauthorizedError."""
        ...


class JwtCredentialDecoder:
    """Decodes HS256 (or configured algorithm) staff bearer tokens."""

    def __init__(self, secret: Optional[str], algorithm: str = "HS256"):
        if not secret:
            raise RuntimeError(
                "Missing environment variable: JWT_SECRET. "
                "Set JWT_SECRET to the secret used to sign staff tokens."
            )
        self._secret = secret
        self._algorithm = algorithm

    def decode(self, bearer_token: str) -> StaffPrincipal:
        try:
            claims = jwt.decode(bearer_token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            logger.info("Rejected staff credential", extra={"reason": type(e).__name__})
            raise UnauthorizedError("Invalid or expired credential") from e
        return principal_from_claims(claims)


def principal_from_claims(claims: Mapping[str, Any]) -> StaffPrincipal:
    staff_id = claims.get("sub") or claims.get("id")
    role = claims.get("role")
    if not staff_id or not role:
        raise UnauthorizedError("Credential is missing required claims")

    store_id = claims.get("store_id")
    return StaffPrincipal(
        staff_id=str(staff_id),
        role=str(role),
        store_id=str(store_id) if store_id else None,
        name=claims.get("name"),
        email=claims.get("email"),
    )


def authorize_staff(
    principal: Optional[StaffPrincipal],
    request: Optional[BuybackRequest] = None,
    required_roles: Iterable[str] = STAFF_ROLES,
) -> StaffPrincipal:
    """
    Check role and store scope and return the authorized principal.

    Pass `request=None` for collection-level checks (list, analytics); the
    store scope is then applied by the caller through `scoped_store_id`.
    """

    if principal is None:
        raise UnauthorizedError("Authentication required")

    allowed = frozenset(required_roles) & STAFF_ROLES
    if principal.role not in allowed:
        logger.warning(
            "Staff role denied",
            extra={"actor_id": principal.staff_id, "role": principal.role},
        )
        raise ForbiddenError("Insufficient permissions")

    if request is None or principal.is_admin:
        return principal

    if principal.store_id is None or request.preferred_store_id != principal.store_id:
        logger.warning(
            "Store scope denied",
            extra={
                "actor_id": principal.staff_id,
                "request_id": str(request.request_id),
                "actor_store_id": principal.store_id,
            },
        )
        raise ForbiddenError("This request belongs to another store")
    return principal


def scoped_store_id(principal: StaffPrincipal, requested_store_id: Optional[str]) -> Optional[str]:
    """Store filter to apply for a collection read: admins choose, store staff are pinned."""

    if principal.is_admin:
        return requested_store_id
    return principal.store_id


@dataclass(frozen=True, slots=True)
class CustomerProof:
    token: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_values(
        cls,
        token: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> "CustomerProof":
        """Blank values count as absent."""

        def _clean(value: Optional[str]) -> Optional[str]:
            if value is None:
                return None
            value = value.strip()
            return value or None

        return cls(token=_clean(token), email=_clean(email), phone=_clean(phone))

    @property
    def is_present(self) -> bool:
        return bool(self.token or self.email or self.phone)


def _constant_time_equals(presented: str, stored: Optional[str]) -> bool:
    return hmac.compare_digest(presented.encode("utf-8"), (stored or "").encode("utf-8"))


def authorize_customer(proof: CustomerProof, request: BuybackRequest) -> str:
    """
    Verify proof of ownership and return the proof kind that was used.
    """

    if proof.token:
        kind = "token"
        matched = request.verification_token is not None and _constant_time_equals(
            proof.token, request.verification_token
        )
    elif proof.email:
        kind = "email"
        matched = request.email is not None and proof.email.lower() == request.email.lower()
    elif proof.phone:
        kind = "phone"
        matched = request.phone is not None and proof.phone == request.phone
    else:
        raise UnauthorizedError("A verification token, email or phone number is required")

    if not matched:
        logger.warning(
            "Customer proof mismatch",
            extra={"request_id": str(request.request_id), "proof": kind},
        )
        raise ForbiddenError("Verification details do not match")
    return kind


def generate_verification_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def redact_for_customer(request: BuybackRequest) -> BuybackRequest:
    """
    Strip internal-only data before a customer-authorized read.

    Internal notes, network metadata and staff-only history entries are
    removed. Staff contact details are never part of the aggregate itself;
    customer response models leave them out.
    """

    return replace(
        request,
        internal_notes=None,
        ip_address=None,
        user_agent=None,
        referrer_url=None,
        communication_history=request.customer_visible_history(),
    )


__all__ = [
    "ADMIN_ROLES",
    "STORE_SCOPED_ROLES",
    "STAFF_ROLES",
    "StaffPrincipal",
    "CredentialDecoder",
    "JwtCredentialDecoder",
    "principal_from_claims",
    "authorize_staff",
    "scoped_store_id",
    "CustomerProof",
    "authorize_customer",
    "generate_verification_token",
    "redact_for_customer",
]
