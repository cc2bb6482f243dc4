"""
Domain: outbox events.

An OutboxEvent is written in the same transaction as the state change it
describes and delivered later by the relay (services/notifications.py).
Delivery is at-least-once: a consumer may see the same event_id twice.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID

from .buyback import RequestStatus
from .time import require_utc_timestamp


class EventType(str, Enum):
    NEW_BUYBACK_REQUEST = "new_buyback_request"
    BUYBACK_REQUEST_CONFIRMATION = "buyback_request_confirmation"
    BUYBACK_STATUS_UPDATE = "buyback_status_update"
    STAFF_ASSIGNMENT = "staff_assignment"
    APPRAISAL_COMPLETED = "appraisal_completed"


# Status changes into these statuses notify the customer.
NOTIFIED_STATUSES = frozenset(
    {
        RequestStatus.REVIEWING,
        RequestStatus.APPRAISED,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.COMPLETED,
    }
)


@dataclass(frozen=True, slots=True)
class OutboxEvent:
    event_id: UUID
    type: EventType
    request_id: UUID
    request_number: str
    recipient_contact: Optional[str]
    payload: Mapping[str, Any]
    created_at: datetime
    publish_attempts: int = 0
    published_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.published_at is not None:
            require_utc_timestamp("published_at", self.published_at)
        if self.publish_attempts < 0:
            raise ValueError("publish_attempts must be >= 0")

    @property
    def is_published(self) -> bool:
        return self.published_at is not None


__all__ = ["EventType", "NOTIFIED_STATUSES", "OutboxEvent"]
