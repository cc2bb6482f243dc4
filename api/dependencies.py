"""
FastAPI dependency providers.

Long-lived collaborators (settings, Supabase client, repository, rate limiter,
credential decoder) are built once per process and cached. Tests replace
them through `app.dependency_overrides`.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client  # type: ignore[import-not-found]

from api.config import Settings, load_settings
from domain.time import Clock, SystemClock
from domain.tracking import ContactInfo
from domain.transitions import policy_for
from repositories.buyback_repository import BuybackRepository, SupabaseBuybackRepository
from repositories.client import create_supabase_client
from repositories.rate_limit_repository import SupabaseAttemptStore
from services.rate_limiter import RateLimiter
from services.request_service import RequestService, SubmissionContext
from services.verification_gateway import CredentialDecoder, JwtCredentialDecoder, StaffPrincipal

_bearer = HTTPBearer(auto_error=False)


@lru_cache
def get_settings() -> Settings:
    return load_settings()


@lru_cache
def get_supabase_client() -> Client:
    settings = get_settings()
    return create_supabase_client(
        settings.supabase_url,
        settings.supabase_key,
        timeout_seconds=settings.db_timeout_seconds,
    )


def get_clock() -> Clock:
    return SystemClock()


@lru_cache
def get_repository() -> BuybackRepository:
    return SupabaseBuybackRepository(get_supabase_client())


@lru_cache
def get_rate_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        SupabaseAttemptStore(get_supabase_client()),
        SystemClock(),
        window=timedelta(minutes=settings.rate_limit_window_minutes),
    )


@lru_cache
def get_credential_decoder() -> CredentialDecoder:
    settings = get_settings()
    return JwtCredentialDecoder(settings.jwt_secret, settings.jwt_algorithm)


def get_request_service(
    repository: BuybackRepository = Depends(get_repository),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> RequestService:
    return RequestService(
        repository,
        rate_limiter,
        clock,
        contact_info=ContactInfo(
            support_email=settings.support_email,
            support_phone=settings.support_phone,
            business_hours=settings.support_hours,
        ),
        frontend_url=settings.frontend_url,
        transition_policy=policy_for(settings.enforce_status_graph),
    )


def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    decoder: CredentialDecoder = Depends(get_credential_decoder),
) -> Optional[StaffPrincipal]:
    """Staff principal when a bearer credential is present, else None."""

    if credentials is None:
        return None
    return decoder.decode(credentials.credentials)


def client_identifier(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """
    Caller identity for rate limiting: the transport peer address.

    X-Forwarded-For is only read when the peer is a trusted proxy; the
    identity is then the right-most hop that is not itself a trusted proxy.
    """

    peer = request.client.host if request.client is not None else None
    trusted = frozenset(trusted_proxies)
    if peer is None:
        return "unknown"
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def get_client_identifier(request: Request, settings: Settings = Depends(get_settings)) -> str:
    return client_identifier(request, settings.trusted_proxies)


def get_submission_context(request: Request, identifier: str = Depends(get_client_identifier)) -> SubmissionContext:
    return SubmissionContext(
        client_identifier=identifier,
        ip_address=identifier if identifier != "unknown" else None,
        user_agent=request.headers.get("user-agent"),
        referrer_url=request.headers.get("referer"),
    )


__all__ = [
    "get_settings",
    "get_supabase_client",
    "get_clock",
    "get_repository",
    "get_rate_limiter",
    "get_credential_decoder",
    "get_request_service",
    "get_optional_principal",
    "client_identifier",
    "get_client_identifier",
    "get_submission_context",
]
