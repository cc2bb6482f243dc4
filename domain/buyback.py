"""
Domain: Buyback request aggregate.

Rules implemented here:
- A BuybackRequest is identified by request_id (UUID) and by its human-facing
  natural key request_number, formatted BR{YYYYMMDD}-{NNNN}. Both are fixed at
  creation.
- status and priority_level are closed enums. Membership is enforced here;
  which transitions are allowed is decided by a transition policy
  (see domain/transitions.py).
- verification_token is present if and only if auth_method is guest.
- items is an immutable snapshot of the submission (1-50 entries) and
  estimated_total_value is their sum at submission time.
- communication_history is append-only. Entries are never edited or removed.
- updated_at never precedes created_at.

This module contains only pure domain entities/value objects: no I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Tuple
from uuid import UUID

from .errors import InvalidPriorityError, InvalidStatusError
from .time import require_utc_timestamp

MAX_ITEMS_PER_REQUEST = 50

REQUEST_NUMBER_PATTERN = re.compile(r"^BR\d{8}-\d{4}$")

# Highest daily sequence that still fits the four-digit suffix.
MAX_DAILY_SEQUENCE = 9999


class RequestStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVIEWING = "reviewing"
    APPRAISED = "appraised"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.REJECTED, RequestStatus.CANCELLED})

# Entering one of these stamps reviewed_by / reviewed_at.
REVIEWED_STATUSES = frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.COMPLETED})

# Appraisal line items become customer-visible from these statuses on.
APPRAISAL_VISIBLE_STATUSES = frozenset({RequestStatus.APPRAISED, RequestStatus.APPROVED, RequestStatus.COMPLETED})


class PriorityLevel(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ItemCategory(str, Enum):
    CONSOLE = "console"
    HANDHELD = "handheld"
    SOFTWARE = "software"
    ACCESSORY = "accessory"
    RETRO = "retro"
    PC_GAME = "pc_game"
    MOBILE_GAME = "mobile_game"
    TOY = "toy"
    COLLECTIBLE = "collectible"
    OTHER = "other"


class ItemCondition(str, Enum):
    S = "S"
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    JUNK = "JUNK"


class ContactMethod(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    LINE = "line"
    SMS = "sms"


class ApplicationType(str, Enum):
    ONLINE = "online"
    IN_STORE = "in_store"
    PHONE = "phone"
    MOBILE_APP = "mobile_app"


class HistoryEntryType(str, Enum):
    NOTE = "note"
    STATUS_CHANGE = "status_change"
    APPRAISAL_COMPLETED = "appraisal_completed"
    CUSTOMER_NOTE = "customer_note"


CUSTOMER_VISIBLE_ENTRY_TYPES = frozenset({HistoryEntryType.STATUS_CHANGE, HistoryEntryType.CUSTOMER_NOTE})

SOCIAL_PROVIDERS: Tuple[str, ...] = ("google", "line", "facebook", "apple")


def parse_status(value: str) -> RequestStatus:
    """Resolve a status string, raising InvalidStatusError outside the closed enum."""

    try:
        return RequestStatus(value)
    except ValueError:
        raise InvalidStatusError(
            f"Invalid status: {value!r}",
            details={"valid_statuses": [s.value for s in RequestStatus]},
        ) from None


def parse_priority(value: str) -> PriorityLevel:
    """Resolve a priority string, raising InvalidPriorityError outside the closed enum."""

    try:
        return PriorityLevel(value)
    except ValueError:
        raise InvalidPriorityError(
            f"Invalid priority level: {value!r}",
            details={"valid_priorities": [p.value for p in PriorityLevel]},
        ) from None


def format_request_number(day: date, sequence: int) -> str:
    """Build the natural key BR{YYYYMMDD}-{NNNN} for a daily sequence number."""

    if sequence < 1 or sequence > MAX_DAILY_SEQUENCE:
        raise ValueError(f"sequence must be within 1..{MAX_DAILY_SEQUENCE}, got {sequence}")
    return f"BR{day:%Y%m%d}-{sequence:04d}"


def is_valid_request_number(value: Any) -> bool:
    return isinstance(value, str) and REQUEST_NUMBER_PATTERN.match(value) is not None


@dataclass(frozen=True, slots=True)
class AuthMethod:
    """
    How the customer identified themselves at submission.

    Serialized as "guest", "email", "phone" or "social:<provider>".
    """

    kind: str
    provider: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in ("guest", "email", "phone", "social"):
            raise ValueError(f"Unknown auth method kind: {self.kind!r}")
        if self.kind == "social":
            if self.provider not in SOCIAL_PROVIDERS:
                raise ValueError(f"Unsupported social provider: {self.provider!r}")
        elif self.provider is not None:
            raise ValueError("provider is only valid for social auth")

    @staticmethod
    def parse(value: str) -> "AuthMethod":
        text = (value or "").strip().lower()
        if text.startswith("social:"):
            return AuthMethod(kind="social", provider=text.split(":", 1)[1])
        return AuthMethod(kind=text)

    @property
    def is_guest(self) -> bool:
        return self.kind == "guest"

    def __str__(self) -> str:
        if self.kind == "social":
            return f"social:{self.provider}"
        return self.kind


GUEST = AuthMethod(kind="guest")


@dataclass(frozen=True, slots=True)
class BuybackItem:
    """One submitted item. Part of the immutable submission snapshot."""

    name: str
    category: ItemCategory
    condition: ItemCondition = ItemCondition.B
    estimated_value: Decimal = Decimal("0")
    description: str = ""
    manufacturer: str = ""
    model: str = ""
    year: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("item name is required")
        if self.estimated_value < 0:
            raise ValueError("estimated_value must be >= 0")


@dataclass(frozen=True, slots=True)
class CommunicationHistoryEntry:
    """
    Immutable audit entry.

    status_change entries always carry both old_status and new_status;
    appraisal_completed entries carry appraisal_count and total_value.
    """

    timestamp: datetime
    actor_id: Optional[str]
    actor_name: str
    type: HistoryEntryType
    content: str
    old_status: Optional[RequestStatus] = None
    new_status: Optional[RequestStatus] = None
    appraisal_count: Optional[int] = None
    total_value: Optional[Decimal] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("timestamp", self.timestamp)
        if self.type is HistoryEntryType.STATUS_CHANGE and (self.old_status is None or self.new_status is None):
            raise ValueError("status_change entries require old_status and new_status")
        if self.type is HistoryEntryType.APPRAISAL_COMPLETED and (
            self.appraisal_count is None or self.total_value is None
        ):
            raise ValueError("appraisal_completed entries require appraisal_count and total_value")

    @property
    def is_customer_visible(self) -> bool:
        return self.type in CUSTOMER_VISIBLE_ENTRY_TYPES


@dataclass(frozen=True, slots=True)
class Store:
    """Store location. Read-only to the buyback core."""

    store_id: str
    name: str
    is_active: bool = True
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    opening_hours: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class BuybackRequest:
    """
    The buyback request aggregate root.

    Mutation happens only by building a new instance through the request
    service; this type only guards its own invariants.
    """

    request_id: UUID
    request_number: str
    status: RequestStatus
    priority_level: PriorityLevel
    auth_method: AuthMethod
    items: Tuple[BuybackItem, ...]
    item_categories: Tuple[ItemCategory, ...]
    estimated_total_value: Decimal
    created_at: datetime
    updated_at: datetime

    verification_token: Optional[str] = None

    # Customer information
    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    preferred_contact_method: ContactMethod = ContactMethod.EMAIL
    auth_identifier: Optional[str] = None

    # Application
    application_type: ApplicationType = ApplicationType.ONLINE
    preferred_store_id: Optional[str] = None
    preferred_pickup_date: Optional[date] = None
    preferred_pickup_time: Optional[str] = None  # HH:MM
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None

    # Staff
    assigned_staff_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    communication_history: Tuple[CommunicationHistoryEntry, ...] = ()

    # Submission metadata (staff-only)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer_url: Optional[str] = None

    # Optimistic concurrency counter; +1 per committed update.
    version: int = 1

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        require_utc_timestamp("updated_at", self.updated_at)
        if self.reviewed_at is not None:
            require_utc_timestamp("reviewed_at", self.reviewed_at)
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must be >= created_at")
        if not is_valid_request_number(self.request_number):
            raise ValueError(f"request_number must match BR{{YYYYMMDD}}-{{NNNN}}, got {self.request_number!r}")
        if not 1 <= len(self.items) <= MAX_ITEMS_PER_REQUEST:
            raise ValueError(f"items must contain 1-{MAX_ITEMS_PER_REQUEST} entries")
        if self.auth_method.is_guest and not self.verification_token:
            raise ValueError("guest requests require a verification_token")
        if not self.auth_method.is_guest and self.verification_token is not None:
            raise ValueError("verification_token is only issued for guest requests")
        if self.estimated_total_value < 0:
            raise ValueError("estimated_total_value must be >= 0")
        if self.version < 1:
            raise ValueError("version must be >= 1")

    @property
    def total_items_count(self) -> int:
        return len(self.items)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def status_history(self) -> Tuple[CommunicationHistoryEntry, ...]:
        """The status_change entries of the audit trail, oldest first."""

        return tuple(e for e in self.communication_history if e.type is HistoryEntryType.STATUS_CHANGE)

    def customer_visible_history(self) -> Tuple[CommunicationHistoryEntry, ...]:
        return tuple(e for e in self.communication_history if e.is_customer_visible)


__all__ = [
    "MAX_ITEMS_PER_REQUEST",
    "REQUEST_NUMBER_PATTERN",
    "RequestStatus",
    "TERMINAL_STATUSES",
    "REVIEWED_STATUSES",
    "APPRAISAL_VISIBLE_STATUSES",
    "PriorityLevel",
    "ItemCategory",
    "ItemCondition",
    "ContactMethod",
    "ApplicationType",
    "HistoryEntryType",
    "SOCIAL_PROVIDERS",
    "parse_status",
    "parse_priority",
    "format_request_number",
    "is_valid_request_number",
    "AuthMethod",
    "GUEST",
    "BuybackItem",
    "CommunicationHistoryEntry",
    "Store",
    "BuybackRequest",
]
