"""
Notification events and the outbox relay.

State changes do not call the notification transport directly. The request
service builds OutboxEvents and the repository stores them in the same
transaction as the change. OutboxRelay later drains pending events and hands
them to a Notifier, giving at-least-once delivery.

Rendering and transport (email/SMS) are outside this service; LoggingNotifier
is the default transport and only records that an event was dispatched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Protocol
from uuid import UUID, uuid4

from domain.buyback import BuybackRequest, ContactMethod, Store
from domain.events import NOTIFIED_STATUSES, EventType, OutboxEvent
from domain.time import Clock
from repositories.outbox_repository import OutboxStore

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, event: OutboxEvent) -> None:
        """Deliver one event. Raise on failure so the relay can retry it."""
        ...


class LoggingNotifier:
    """Default transport: logs the dispatch without payload contents."""

    def notify(self, event: OutboxEvent) -> None:
        logger.info(
            "Notification dispatched",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.type.value,
                "request_number": event.request_number,
                "has_recipient": event.recipient_contact is not None,
            },
        )


def customer_contact(request: BuybackRequest) -> Optional[str]:
    """Contact address matching the customer's preferred channel, falling back to email."""

    if request.preferred_contact_method in (ContactMethod.PHONE, ContactMethod.SMS) and request.phone:
        return request.phone
    return request.email or request.phone


class EventBuilder:
    """Builds the outbox events for request lifecycle changes."""

    def __init__(self, *, id_factory: Callable[[], UUID] = uuid4):
        self._id_factory = id_factory

    def _event(
        self,
        event_type: EventType,
        request: BuybackRequest,
        recipient: Optional[str],
        payload: dict,
        at: datetime,
    ) -> OutboxEvent:
        return OutboxEvent(
            event_id=self._id_factory(),
            type=event_type,
            request_id=request.request_id,
            request_number=request.request_number,
            recipient_contact=recipient,
            payload=payload,
            created_at=at,
        )

    def for_creation(
        self,
        request: BuybackRequest,
        store: Optional[Store],
        tracking_url: str,
    ) -> List[OutboxEvent]:
        at = request.created_at
        events: List[OutboxEvent] = []

        if store is not None:
            events.append(
                self._event(
                    EventType.NEW_BUYBACK_REQUEST,
                    request,
                    store.email,
                    {
                        "store_id": store.store_id,
                        "store_name": store.name,
                        "customer_name": request.customer_name,
                        "total_items_count": request.total_items_count,
                        "estimated_total_value": str(request.estimated_total_value),
                    },
                    at,
                )
            )

        if request.email:
            events.append(
                self._event(
                    EventType.BUYBACK_REQUEST_CONFIRMATION,
                    request,
                    request.email,
                    {
                        "customer_name": request.customer_name,
                        "total_items_count": request.total_items_count,
                        "estimated_total_value": str(request.estimated_total_value),
                        "tracking_url": tracking_url,
                    },
                    at,
                )
            )

        return events

    def for_update(
        self,
        before: BuybackRequest,
        after: BuybackRequest,
        *,
        appraisal_count: Optional[int] = None,
        appraisal_total: Optional[str] = None,
        customer_message: Optional[str] = None,
    ) -> List[OutboxEvent]:
        at = after.updated_at
        events: List[OutboxEvent] = []

        if after.status != before.status and after.status in NOTIFIED_STATUSES:
            events.append(
                self._event(
                    EventType.BUYBACK_STATUS_UPDATE,
                    after,
                    customer_contact(after),
                    {
                        "customer_name": after.customer_name,
                        "old_status": before.status.value,
                        "new_status": after.status.value,
                        "message": customer_message,
                    },
                    at,
                )
            )

        if after.assigned_staff_id and after.assigned_staff_id != before.assigned_staff_id:
            events.append(
                self._event(
                    EventType.STAFF_ASSIGNMENT,
                    after,
                    after.assigned_staff_id,
                    {
                        "assigned_staff_id": after.assigned_staff_id,
                        "priority_level": after.priority_level.value,
                    },
                    at,
                )
            )

        if appraisal_count is not None:
            events.append(
                self._event(
                    EventType.APPRAISAL_COMPLETED,
                    after,
                    customer_contact(after),
                    {
                        "customer_name": after.customer_name,
                        "appraisal_count": appraisal_count,
                        "total_value": appraisal_total,
                    },
                    at,
                )
            )

        return events


@dataclass(frozen=True, slots=True)
class RelayReport:
    fetched: int
    delivered: int
    failed: int


class OutboxRelay:
    """Drains pending outbox events into a Notifier."""

    def __init__(
        self,
        store: OutboxStore,
        notifier: Notifier,
        clock: Clock,
        *,
        batch_size: int = 50,
        max_attempts: int = 5,
    ):
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self._batch_size = batch_size
        self._max_attempts = max_attempts

    def drain_once(self) -> RelayReport:
        """
        Deliver one batch of pending events.

        A failed delivery increments the event's attempt count and records the
        error; the event is retried on a later drain until max_attempts.
        """

        events = self._store.fetch_pending(limit=self._batch_size, max_attempts=self._max_attempts)
        delivered = 0
        failed = 0

        for event in events:
            try:
                self._notifier.notify(event)
            except Exception as e:
                failed += 1
                logger.warning(
                    "Notification delivery failed",
                    extra={
                        "event_id": str(event.event_id),
                        "event_type": event.type.value,
                        "attempt": event.publish_attempts + 1,
                        "error": str(e),
                    },
                )
                self._store.mark_failed(event, str(e) or type(e).__name__)
                continue

            self._store.mark_published(event.event_id, self._clock.now())
            delivered += 1

        report = RelayReport(fetched=len(events), delivered=delivered, failed=failed)
        if events:
            logger.info(
                "Outbox drained",
                extra={"fetched": report.fetched, "delivered": report.delivered, "failed": report.failed},
            )
        return report


__all__ = [
    "Notifier",
    "LoggingNotifier",
    "customer_contact",
    "EventBuilder",
    "RelayReport",
    "OutboxRelay",
]
