"""
Domain: error taxonomy.

Every failure the buyback core reports is one of these exceptions. Each carries
a stable machine-readable `code`, a human-readable message and the HTTP status
the transport layer maps it to.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional


class BuybackError(Exception):
    """Base class for all buyback domain errors."""

    code: str = "BUYBACK_ERROR"
    status_code: int = 500

    def __init__(self, message: str, *, details: Optional[Mapping[str, Any] | List[str]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(BuybackError):
    """Malformed input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidStatusError(ValidationError):
    code = "INVALID_STATUS"


class InvalidPriorityError(ValidationError):
    code = "INVALID_PRIORITY"


class InvalidTransitionError(ValidationError):
    """Raised by a directed transition policy when an edge is not allowed."""

    code = "INVALID_TRANSITION"


class StoreNotFoundError(ValidationError):
    """Referenced store is missing or inactive."""

    code = "STORE_NOT_FOUND"


class FutureDateError(ValidationError):
    """Requested pickup date precedes the current date."""

    code = "PICKUP_DATE_IN_PAST"


class UnauthorizedError(BuybackError):
    """No credential or proof of ownership was presented."""

    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(BuybackError):
    """Credential present but insufficient, or proof of ownership did not match."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(BuybackError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(BuybackError):
    """Duplicate natural key or a concurrent update was detected."""

    code = "CONFLICT"
    status_code = 409


class RateLimitedError(BuybackError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        reset_time: datetime,
        retry_after_seconds: int = 0,
        details: Optional[Mapping[str, Any]] = None,
    ):
        self.reset_time = reset_time
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message, details=details)


class TerminalStateError(BuybackError):
    """Operation disallowed on an aggregate in a terminal status."""

    code = "TERMINAL_STATE"
    status_code = 400


class StoreError(BuybackError):
    """Persistence or transport failure."""

    code = "STORE_ERROR"
    status_code = 500


class StoreTimeoutError(StoreError):
    """
    The persistence call exceeded its deadline.

    The outcome is unknown; callers must not retry blindly.
    """

    code = "STORE_TIMEOUT"


__all__ = [
    "BuybackError",
    "ValidationError",
    "InvalidStatusError",
    "InvalidPriorityError",
    "InvalidTransitionError",
    "StoreNotFoundError",
    "FutureDateError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "RateLimitedError",
    "TerminalStateError",
    "StoreError",
    "StoreTimeoutError",
]
