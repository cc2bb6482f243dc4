"""
In-memory stand-ins for the persistence ports and the notifier.

They honour the same contracts as the Supabase implementations (version
checks, duplicate request numbers, appraisal replacement, outbox writes in
the same call) so service tests exercise real behavior without a database.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from domain.appraisal import Appraisal
from domain.buyback import (
    AuthMethod,
    BuybackItem,
    BuybackRequest,
    ItemCategory,
    PriorityLevel,
    RequestStatus,
    Store,
)
from domain.errors import ConflictError, NotFoundError, TerminalStateError
from domain.events import OutboxEvent
from domain.tracking import ContactInfo
from repositories.buyback_repository import (
    BuybackStats,
    RequestFilters,
    RequestPage,
    RequestSummaryRow,
    RequestUpdate,
)

# Monday, so business-day arithmetic starts mid-week.
NOW = datetime(2025, 1, 6, 10, 0, 0, tzinfo=timezone.utc)

CONTACT_INFO = ContactInfo(
    support_email="support@example.com",
    support_phone="03-1234-5678",
    business_hours="Weekdays 10:00-18:00",
)


def make_request(**overrides: Any) -> BuybackRequest:
    """A submitted guest request for store S1, with overridable fields."""

    fields: Dict[str, Any] = dict(
        request_id=UUID("00000000-0000-0000-0000-000000000001"),
        request_number="BR20250106-0001",
        status=RequestStatus.SUBMITTED,
        priority_level=PriorityLevel.NORMAL,
        auth_method=AuthMethod(kind="guest"),
        items=(BuybackItem(name="Retro console", category=ItemCategory.RETRO, estimated_value=Decimal("1000")),),
        item_categories=(ItemCategory.RETRO,),
        estimated_total_value=Decimal("1000"),
        created_at=NOW,
        updated_at=NOW,
        verification_token="a" * 64,
        customer_name="Taro Yamada",
        email="taro@example.com",
        phone="090-1234-5678",
        preferred_store_id="S1",
        internal_notes="Check serial numbers",
        ip_address="203.0.113.5",
        user_agent="pytest",
        referrer_url="https://ads.example.com",
    )
    fields.update(overrides)
    return BuybackRequest(**fields)


class FixedClock:
    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


class InMemoryBuybackRepository:
    def __init__(self, stores: Sequence[Store] = ()):
        self.stores: Dict[str, Store] = {s.store_id: s for s in stores}
        self.requests: Dict[UUID, BuybackRequest] = {}
        self.appraisals: Dict[UUID, Tuple[Appraisal, ...]] = {}
        self.outbox: List[OutboxEvent] = []
        self.counters: Dict[date, int] = {}
        self.commits = 0

    def add(self, request: BuybackRequest, appraisals: Sequence[Appraisal] = ()) -> BuybackRequest:
        self.requests[request.request_id] = request
        if appraisals:
            self.appraisals[request.request_id] = tuple(appraisals)
        return request

    def get_store(self, store_id: str) -> Optional[Store]:
        return self.stores.get(store_id)

    def next_request_sequence(self, day: date) -> int:
        self.counters[day] = self.counters.get(day, 0) + 1
        return self.counters[day]

    def insert_request(self, request: BuybackRequest, events: Sequence[OutboxEvent]) -> BuybackRequest:
        if any(r.request_number == request.request_number for r in self.requests.values()):
            raise ConflictError("Request number already exists")
        self.requests[request.request_id] = request
        self.outbox.extend(events)
        return request

    def get_request(self, request_id: UUID) -> Optional[BuybackRequest]:
        return self.requests.get(request_id)

    def get_request_by_number(self, request_number: str) -> Optional[BuybackRequest]:
        for request in self.requests.values():
            if request.request_number == request_number:
                return request
        return None

    def _matches(self, request: BuybackRequest, filters: RequestFilters) -> bool:
        if filters.status is not None and request.status is not filters.status:
            return False
        if filters.store_id and request.preferred_store_id != filters.store_id:
            return False
        if filters.email and filters.email.lower() not in (request.email or "").lower():
            return False
        if filters.phone and filters.phone not in (request.phone or ""):
            return False
        if filters.request_number and filters.request_number.lower() not in request.request_number.lower():
            return False
        if filters.priority_level is not None and request.priority_level is not filters.priority_level:
            return False
        if filters.auth_method and str(request.auth_method) != filters.auth_method:
            return False
        if filters.date_from and request.created_at < datetime.combine(filters.date_from, time.min, tzinfo=timezone.utc):
            return False
        if filters.date_to and request.created_at > datetime.combine(filters.date_to, time.max, tzinfo=timezone.utc):
            return False
        return True

    def list_requests(self, filters: RequestFilters, *, limit: int, offset: int) -> RequestPage:
        matched = [r for r in self.requests.values() if self._matches(r, filters)]
        matched.sort(
            key=lambda r: getattr(r, filters.sort_by),
            reverse=filters.sort_order.upper() == "DESC",
        )
        rows = []
        for request in matched[offset:offset + limit]:
            appraisals = self.appraisals.get(request.request_id, ())
            rows.append(
                RequestSummaryRow(
                    request=request,
                    appraisal_count=len(appraisals),
                    total_appraised_value=sum((a.appraised_value for a in appraisals), Decimal("0")),
                )
            )
        return RequestPage(rows=tuple(rows), total=len(matched))

    def list_appraisals(self, request_id: UUID) -> List[Appraisal]:
        return sorted(self.appraisals.get(request_id, ()), key=lambda a: a.created_at)

    def commit_update(self, update: RequestUpdate) -> BuybackRequest:
        stored = self.requests.get(update.request.request_id)
        if stored is None:
            raise NotFoundError("Buyback request not found")
        if stored.version != update.expected_version:
            raise ConflictError("The request was modified by someone else")

        committed = replace(
            update.request,
            communication_history=stored.communication_history + update.appended_history,
            version=stored.version + 1,
        )
        self.requests[committed.request_id] = committed
        if update.appraisals is not None:
            self.appraisals[committed.request_id] = update.appraisals
        self.outbox.extend(update.events)
        self.commits += 1
        return committed

    def delete_request(self, request_id: UUID, expected_version: int) -> None:
        stored = self.requests.get(request_id)
        if stored is None:
            raise NotFoundError("Buyback request not found")
        if stored.version != expected_version:
            raise ConflictError("The request was modified by someone else")
        if stored.status is RequestStatus.COMPLETED:
            raise TerminalStateError("Completed requests cannot be deleted")
        del self.requests[request_id]
        self.appraisals.pop(request_id, None)

    def fetch_stats(
        self,
        *,
        store_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> BuybackStats:
        rows = [
            r
            for r in self.requests.values()
            if (store_id is None or r.preferred_store_id == store_id)
            and (date_from is None or r.created_at >= date_from)
            and (date_to is None or r.created_at <= date_to)
        ]
        total_value = sum((r.estimated_total_value for r in rows), Decimal("0"))
        return BuybackStats(
            total_requests=len(rows),
            pending_requests=sum(1 for r in rows if r.status in (RequestStatus.SUBMITTED, RequestStatus.REVIEWING)),
            approved_requests=sum(1 for r in rows if r.status is RequestStatus.APPROVED),
            completed_requests=sum(1 for r in rows if r.status is RequestStatus.COMPLETED),
            rejected_requests=sum(1 for r in rows if r.status is RequestStatus.REJECTED),
            avg_estimated_value=total_value / len(rows) if rows else None,
            total_estimated_value=total_value if rows else None,
            avg_processing_days=None,
        )


class InMemoryAttemptStore:
    def __init__(self) -> None:
        self.attempts: List[Tuple[str, str, datetime]] = []

    def record_and_count(self, identifier: str, action: str, since: datetime, at: datetime) -> int:
        earlier = sum(1 for i, a, ts in self.attempts if i == identifier and a == action and ts >= since)
        self.attempts.append((identifier, action, at))
        return earlier

    def purge_before(self, cutoff: datetime) -> int:
        kept = [entry for entry in self.attempts if entry[2] >= cutoff]
        removed = len(self.attempts) - len(kept)
        self.attempts = kept
        return removed


class InMemoryOutboxStore:
    def __init__(self, events: Sequence[OutboxEvent] = ()):
        self.events: Dict[UUID, OutboxEvent] = {e.event_id: e for e in events}

    def fetch_pending(self, *, limit: int, max_attempts: int) -> List[OutboxEvent]:
        pending = [
            e for e in self.events.values()
            if e.published_at is None and e.publish_attempts < max_attempts
        ]
        pending.sort(key=lambda e: e.created_at)
        return pending[:limit]

    def mark_published(self, event_id: UUID, published_at: datetime) -> None:
        self.events[event_id] = replace(self.events[event_id], published_at=published_at)

    def mark_failed(self, event: OutboxEvent, error: str) -> None:
        self.events[event.event_id] = replace(
            self.events[event.event_id],
            publish_attempts=event.publish_attempts + 1,
            last_error=error,
        )


class RecordingNotifier:
    def __init__(self, fail_for: Sequence[UUID] = ()):
        self.sent: List[OutboxEvent] = []
        self._fail_for = set(fail_for)

    def notify(self, event: OutboxEvent) -> None:
        if event.event_id in self._fail_for:
            raise ConnectionError("mail relay unavailable")
        self.sent.append(event)
