"""
Buyback request repository (persistence).

This module provides persistence for the BuybackRequest aggregate, its
appraisal rows and the store lookup. It does not enforce business rules
(authorization, validation, history composition); those live in services/.

Transaction boundaries:
- Single-table reads go through the postgrest builder.
- Every multi-row write is one Postgres function called through `rpc`
  (see sql/buyback_schema.sql). Each function runs in a single transaction,
  so a failure leaves no partial history entries, appraisal rows or outbox
  events behind.

Concurrency:
- Rows carry a `version` counter. `commit_update` and `delete_request` send
  the version the caller read; the function locks the row and refuses the
  write on mismatch, which surfaces as ConflictError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple
from uuid import UUID

from supabase import Client  # type: ignore[import-not-found]

from domain.appraisal import Appraisal
from domain.buyback import (
    ApplicationType,
    AuthMethod,
    BuybackItem,
    BuybackRequest,
    CommunicationHistoryEntry,
    ContactMethod,
    HistoryEntryType,
    ItemCategory,
    ItemCondition,
    PriorityLevel,
    RequestStatus,
    Store,
)
from domain.errors import ConflictError, NotFoundError, StoreError, TerminalStateError
from domain.events import OutboxEvent
from repositories.client import (
    call_rpc,
    execute_query,
    parse_optional_datetime,
    parse_utc_datetime,
    to_iso_utc,
)
from repositories.outbox_repository import event_to_row

logger = logging.getLogger(__name__)

_REQUESTS_TABLE: str = "buyback_requests"
_APPRAISALS_TABLE: str = "buyback_appraisals"
_STORES_TABLE: str = "stores"

SORTABLE_COLUMNS: Tuple[str, ...] = (
    "created_at",
    "updated_at",
    "status",
    "priority_level",
    "estimated_total_value",
    "customer_name",
    "request_number",
)

# Error codes returned by the request RPC functions.
_RPC_ERRORS = {
    "VERSION_CONFLICT": ConflictError,
    "DUPLICATE_REQUEST_NUMBER": ConflictError,
    "NOT_FOUND": NotFoundError,
    "TERMINAL_STATE": TerminalStateError,
}


@dataclass(frozen=True, slots=True)
class RequestFilters:
    """Filter and sort criteria for staff request listings."""

    status: Optional[RequestStatus] = None
    store_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    request_number: Optional[str] = None
    priority_level: Optional[PriorityLevel] = None
    auth_method: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sort_by: str = "created_at"
    sort_order: str = "DESC"


@dataclass(frozen=True, slots=True)
class RequestSummaryRow:
    request: BuybackRequest
    appraisal_count: int
    total_appraised_value: Decimal


@dataclass(frozen=True, slots=True)
class RequestPage:
    rows: Tuple[RequestSummaryRow, ...]
    total: int


@dataclass(frozen=True, slots=True)
class RequestUpdate:
    """
    One atomic update of a request.

    request: the aggregate as it should look after the commit (still carrying
        the version that was read).
    changed_fields: column names whose values are written from `request`.
    appended_history: entries appended to communication_history, in order.
    appraisals: replacement appraisal set, or None to leave appraisals alone.
    events: outbox events enqueued with the commit.
    """

    request: BuybackRequest
    expected_version: int
    changed_fields: frozenset[str]
    appended_history: Tuple[CommunicationHistoryEntry, ...] = ()
    appraisals: Optional[Tuple[Appraisal, ...]] = None
    events: Tuple[OutboxEvent, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.changed_fields and not self.appended_history and self.appraisals is None


@dataclass(frozen=True, slots=True)
class BuybackStats:
    total_requests: int
    pending_requests: int
    approved_requests: int
    completed_requests: int
    rejected_requests: int
    avg_estimated_value: Optional[Decimal]
    total_estimated_value: Optional[Decimal]
    avg_processing_days: Optional[Decimal]


class BuybackRepository(Protocol):
    def get_store(self, store_id: str) -> Optional[Store]: ...

    def next_request_sequence(self, day: date) -> int: ...

    def insert_request(self, request: BuybackRequest, events: Sequence[OutboxEvent]) -> BuybackRequest: ...

    def get_request(self, request_id: UUID) -> Optional[BuybackRequest]: ...

    def get_request_by_number(self, request_number: str) -> Optional[BuybackRequest]: ...

    def list_requests(self, filters: RequestFilters, *, limit: int, offset: int) -> RequestPage: ...

    def list_appraisals(self, request_id: UUID) -> List[Appraisal]: ...

    def commit_update(self, update: RequestUpdate) -> BuybackRequest: ...

    def delete_request(self, request_id: UUID, expected_version: int) -> None: ...

    def fetch_stats(
        self,
        *,
        store_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> BuybackStats: ...


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    if value is None:
        return default
    return Decimal(str(value))


def item_to_json(item: BuybackItem) -> dict[str, Any]:
    return {
        "name": item.name,
        "category": item.category.value,
        "condition": item.condition.value,
        "estimated_value": str(item.estimated_value),
        "description": item.description,
        "manufacturer": item.manufacturer,
        "model": item.model,
        "year": item.year,
    }


def json_to_item(data: Mapping[str, Any]) -> BuybackItem:
    return BuybackItem(
        name=str(data["name"]),
        category=ItemCategory(str(data["category"])),
        condition=ItemCondition(str(data.get("condition") or ItemCondition.B.value)),
        estimated_value=_decimal(data.get("estimated_value")),
        description=data.get("description") or "",
        manufacturer=data.get("manufacturer") or "",
        model=data.get("model") or "",
        year=int(data["year"]) if data.get("year") is not None else None,
    )


def history_to_json(entry: CommunicationHistoryEntry) -> dict[str, Any]:
    data: dict[str, Any] = {
        "timestamp": to_iso_utc(entry.timestamp, name="timestamp"),
        "actor_id": entry.actor_id,
        "actor_name": entry.actor_name,
        "type": entry.type.value,
        "content": entry.content,
    }
    if entry.old_status is not None:
        data["old_status"] = entry.old_status.value
    if entry.new_status is not None:
        data["new_status"] = entry.new_status.value
    if entry.appraisal_count is not None:
        data["appraisal_count"] = entry.appraisal_count
    if entry.total_value is not None:
        data["total_value"] = str(entry.total_value)
    return data


def json_to_history(data: Mapping[str, Any]) -> CommunicationHistoryEntry:
    return CommunicationHistoryEntry(
        timestamp=parse_utc_datetime(data["timestamp"]),
        actor_id=data.get("actor_id"),
        actor_name=str(data.get("actor_name") or ""),
        type=HistoryEntryType(str(data["type"])),
        content=str(data.get("content") or ""),
        old_status=RequestStatus(data["old_status"]) if data.get("old_status") else None,
        new_status=RequestStatus(data["new_status"]) if data.get("new_status") else None,
        appraisal_count=int(data["appraisal_count"]) if data.get("appraisal_count") is not None else None,
        total_value=_decimal(data.get("total_value"), default=None),
    )


def request_to_row(request: BuybackRequest) -> dict[str, Any]:
    """Convert a BuybackRequest into a buyback_requests row."""

    return {
        "id": str(request.request_id),
        "request_number": request.request_number,
        "status": request.status.value,
        "priority_level": request.priority_level.value,
        "auth_method": str(request.auth_method),
        "verification_token": request.verification_token,
        "customer_name": request.customer_name,
        "email": request.email,
        "phone": request.phone,
        "address": request.address,
        "postal_code": request.postal_code,
        "preferred_contact_method": request.preferred_contact_method.value,
        "auth_identifier": request.auth_identifier,
        "application_type": request.application_type.value,
        "items": [item_to_json(item) for item in request.items],
        "item_categories": [c.value for c in request.item_categories],
        "total_items_count": request.total_items_count,
        "estimated_total_value": str(request.estimated_total_value),
        "preferred_store_id": request.preferred_store_id,
        "preferred_pickup_date": request.preferred_pickup_date.isoformat() if request.preferred_pickup_date else None,
        "preferred_pickup_time": request.preferred_pickup_time,
        "customer_notes": request.customer_notes,
        "internal_notes": request.internal_notes,
        "assigned_staff_id": request.assigned_staff_id,
        "reviewed_by": request.reviewed_by,
        "reviewed_at": to_iso_utc(request.reviewed_at, name="reviewed_at") if request.reviewed_at else None,
        "communication_history": [history_to_json(e) for e in request.communication_history],
        "ip_address": request.ip_address,
        "user_agent": request.user_agent,
        "referrer_url": request.referrer_url,
        "version": request.version,
        "created_at": to_iso_utc(request.created_at, name="created_at"),
        "updated_at": to_iso_utc(request.updated_at, name="updated_at"),
    }


def row_to_request(row: Mapping[str, Any]) -> BuybackRequest:
    """Convert a buyback_requests row into a BuybackRequest."""

    pickup_date = row.get("preferred_pickup_date")
    pickup_time = row.get("preferred_pickup_time")

    return BuybackRequest(
        request_id=UUID(str(row["id"])),
        request_number=str(row["request_number"]),
        status=RequestStatus(str(row["status"])),
        priority_level=PriorityLevel(str(row.get("priority_level") or PriorityLevel.NORMAL.value)),
        auth_method=AuthMethod.parse(str(row["auth_method"])),
        items=tuple(json_to_item(item) for item in row.get("items") or []),
        item_categories=tuple(ItemCategory(str(c)) for c in row.get("item_categories") or []),
        estimated_total_value=_decimal(row.get("estimated_total_value")),
        created_at=parse_utc_datetime(row["created_at"]),
        updated_at=parse_utc_datetime(row["updated_at"]),
        verification_token=row.get("verification_token"),
        customer_name=row.get("customer_name"),
        email=row.get("email"),
        phone=row.get("phone"),
        address=row.get("address"),
        postal_code=row.get("postal_code"),
        preferred_contact_method=ContactMethod(
            str(row.get("preferred_contact_method") or ContactMethod.EMAIL.value)
        ),
        auth_identifier=row.get("auth_identifier"),
        application_type=ApplicationType(str(row.get("application_type") or ApplicationType.ONLINE.value)),
        preferred_store_id=str(row["preferred_store_id"]) if row.get("preferred_store_id") else None,
        preferred_pickup_date=date.fromisoformat(str(pickup_date)[:10]) if pickup_date else None,
        # Postgres TIME columns come back as HH:MM:SS.
        preferred_pickup_time=str(pickup_time)[:5] if pickup_time else None,
        customer_notes=row.get("customer_notes"),
        internal_notes=row.get("internal_notes"),
        assigned_staff_id=str(row["assigned_staff_id"]) if row.get("assigned_staff_id") else None,
        reviewed_by=str(row["reviewed_by"]) if row.get("reviewed_by") else None,
        reviewed_at=parse_optional_datetime(row.get("reviewed_at")),
        communication_history=tuple(json_to_history(e) for e in row.get("communication_history") or []),
        ip_address=row.get("ip_address"),
        user_agent=row.get("user_agent"),
        referrer_url=row.get("referrer_url"),
        version=int(row.get("version") or 1),
    )


def appraisal_to_row(appraisal: Appraisal) -> dict[str, Any]:
    return {
        "id": str(appraisal.appraisal_id),
        "request_id": str(appraisal.request_id),
        "item_name": appraisal.item_name,
        "item_condition": appraisal.item_condition.value,
        "market_value": str(appraisal.market_value),
        "appraised_value": str(appraisal.appraised_value),
        "appraisal_notes": appraisal.appraisal_notes,
        "appraiser_id": appraisal.appraiser_id,
        "created_at": to_iso_utc(appraisal.created_at, name="created_at"),
    }


def row_to_appraisal(row: Mapping[str, Any]) -> Appraisal:
    return Appraisal(
        appraisal_id=UUID(str(row["id"])),
        request_id=UUID(str(row["request_id"])),
        item_name=str(row["item_name"]),
        item_condition=ItemCondition(str(row.get("item_condition") or ItemCondition.B.value)),
        market_value=_decimal(row.get("market_value")),
        appraised_value=_decimal(row.get("appraised_value")),
        appraisal_notes=row.get("appraisal_notes") or "",
        appraiser_id=str(row["appraiser_id"]) if row.get("appraiser_id") else None,
        created_at=parse_utc_datetime(row["created_at"]),
    )


def row_to_store(row: Mapping[str, Any]) -> Store:
    return Store(
        store_id=str(row["id"]),
        name=str(row["name"]),
        is_active=bool(row.get("is_active", True)),
        address=row.get("address"),
        phone=row.get("phone"),
        email=row.get("email"),
        opening_hours=row.get("opening_hours") or {},
    )


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _contains_pattern(value: str) -> str:
    """ILIKE pattern for a case-insensitive substring match on user input."""

    cleaned = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    # Commas and parentheses are postgrest filter syntax.
    cleaned = "".join(ch for ch in cleaned if ch not in ",()")
    return f"%{cleaned}%"


def _raise_rpc_failure(result: Any, *, action: str) -> None:
    if not isinstance(result, Mapping):
        raise StoreError(f"Failed to {action}: unexpected response {result!r}")
    if result.get("success") is True:
        return

    code = str(result.get("error") or "RPC_ERROR")
    message = str(result.get("message") or f"Failed to {action}")
    error_cls = _RPC_ERRORS.get(code)
    logger.warning("RPC refused write", extra={"action": action, "rpc_error": code})
    if error_cls is None:
        raise StoreError(f"Failed to {action}: {message}", details={"rpc_error": code})
    raise error_cls(message, details={"rpc_error": code})


def _summary_from_row(row: Mapping[str, Any]) -> RequestSummaryRow:
    data = dict(row)
    embedded = data.pop(_APPRAISALS_TABLE, None) or []
    total = sum((_decimal(a.get("appraised_value")) for a in embedded), Decimal("0"))
    return RequestSummaryRow(
        request=row_to_request(data),
        appraisal_count=len(embedded),
        total_appraised_value=total,
    )


class SupabaseBuybackRepository:
    """BuybackRepository backed by Supabase tables and RPC functions."""

    def __init__(self, client: Client):
        self._client = client

    def get_store(self, store_id: str) -> Optional[Store]:
        builder = self._client.table(_STORES_TABLE).select("*").eq("id", store_id).limit(1)
        response = execute_query(builder, action="get store")
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return row_to_store(rows[0])

    def next_request_sequence(self, day: date) -> int:
        """Atomically claim the next request-number sequence for `day`."""

        result = call_rpc(
            self._client,
            "next_request_sequence",
            {"p_day": day.isoformat()},
            action="allocate request number",
        )
        if isinstance(result, list):
            result = result[0] if result else None
        if isinstance(result, Mapping):
            result = result.get("next_request_sequence")
        if result is None:
            raise StoreError("Failed to allocate request number: empty response")
        return int(result)

    def insert_request(self, request: BuybackRequest, events: Sequence[OutboxEvent]) -> BuybackRequest:
        result = call_rpc(
            self._client,
            "create_buyback_request",
            {
                "p_request": request_to_row(request),
                "p_events": [event_to_row(e) for e in events],
            },
            action="create buyback request",
        )
        _raise_rpc_failure(result, action="create buyback request")
        return row_to_request(result["request"]) if result.get("request") else request

    def get_request(self, request_id: UUID) -> Optional[BuybackRequest]:
        builder = self._client.table(_REQUESTS_TABLE).select("*").eq("id", str(request_id)).limit(1)
        response = execute_query(builder, action="get buyback request")
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return row_to_request(rows[0])

    def get_request_by_number(self, request_number: str) -> Optional[BuybackRequest]:
        builder = (
            self._client.table(_REQUESTS_TABLE)
            .select("*")
            .eq("request_number", request_number)
            .limit(1)
        )
        response = execute_query(builder, action="get buyback request by number")
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return row_to_request(rows[0])

    def list_requests(self, filters: RequestFilters, *, limit: int, offset: int) -> RequestPage:
        """
        Page through requests matching `filters`.

        Each row carries its appraisal count and appraised total, computed from
        the embedded appraisal rows.
        """

        if filters.sort_by not in SORTABLE_COLUMNS:
            raise ValueError(f"Unsupported sort column: {filters.sort_by!r}")

        query = self._client.table(_REQUESTS_TABLE).select(
            f"*, {_APPRAISALS_TABLE}(appraised_value)", count="exact"
        )

        if filters.status is not None:
            query = query.eq("status", filters.status.value)
        if filters.store_id:
            query = query.eq("preferred_store_id", filters.store_id)
        if filters.email:
            query = query.ilike("email", _contains_pattern(filters.email))
        if filters.phone:
            query = query.ilike("phone", _contains_pattern(filters.phone))
        if filters.request_number:
            query = query.ilike("request_number", _contains_pattern(filters.request_number))
        if filters.priority_level is not None:
            query = query.eq("priority_level", filters.priority_level.value)
        if filters.auth_method:
            query = query.eq("auth_method", filters.auth_method)
        if filters.date_from:
            query = query.gte("created_at", _start_of_day(filters.date_from).isoformat())
        if filters.date_to:
            query = query.lte("created_at", _end_of_day(filters.date_to).isoformat())

        query = query.order(filters.sort_by, desc=filters.sort_order.upper() == "DESC")
        query = query.range(offset, offset + limit - 1)

        response = execute_query(query, action="list buyback requests")
        rows = getattr(response, "data", None) or []
        total = getattr(response, "count", None)
        return RequestPage(
            rows=tuple(_summary_from_row(row) for row in rows),
            total=int(total) if total is not None else len(rows),
        )

    def list_appraisals(self, request_id: UUID) -> List[Appraisal]:
        builder = (
            self._client.table(_APPRAISALS_TABLE)
            .select("*")
            .eq("request_id", str(request_id))
            .order("created_at")
        )
        response = execute_query(builder, action="list appraisals")
        rows = getattr(response, "data", None) or []
        return [row_to_appraisal(row) for row in rows]

    def commit_update(self, update: RequestUpdate) -> BuybackRequest:
        """
        Apply one update atomically through `commit_buyback_update`.

        Raises:
            ConflictError: the stored version no longer equals expected_version.
            NotFoundError: the request was deleted in the meantime.
        """

        row = request_to_row(update.request)
        changes = {name: row[name] for name in sorted(update.changed_fields)}
        changes["updated_at"] = row["updated_at"]

        appraisals: Optional[List[dict[str, Any]]] = None
        if update.appraisals is not None:
            appraisals = [appraisal_to_row(a) for a in update.appraisals]

        result = call_rpc(
            self._client,
            "commit_buyback_update",
            {
                "p_request_id": str(update.request.request_id),
                "p_expected_version": update.expected_version,
                "p_changes": changes,
                "p_history": [history_to_json(e) for e in update.appended_history],
                "p_appraisals": appraisals,
                "p_events": [event_to_row(e) for e in update.events],
            },
            action="update buyback request",
        )
        _raise_rpc_failure(result, action="update buyback request")
        return row_to_request(result["request"])

    def delete_request(self, request_id: UUID, expected_version: int) -> None:
        result = call_rpc(
            self._client,
            "delete_buyback_request",
            {"p_request_id": str(request_id), "p_expected_version": expected_version},
            action="delete buyback request",
        )
        _raise_rpc_failure(result, action="delete buyback request")

    def fetch_stats(
        self,
        *,
        store_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> BuybackStats:
        result = call_rpc(
            self._client,
            "get_buyback_stats",
            {
                "store_id_filter": store_id,
                "date_from": to_iso_utc(date_from, name="date_from") if date_from else None,
                "date_to": to_iso_utc(date_to, name="date_to") if date_to else None,
            },
            action="fetch buyback stats",
        )
        rows: Iterable[Mapping[str, Any]] = result if isinstance(result, list) else [result or {}]
        row = next(iter(rows), {})
        return BuybackStats(
            total_requests=int(row.get("total_requests") or 0),
            pending_requests=int(row.get("pending_requests") or 0),
            approved_requests=int(row.get("approved_requests") or 0),
            completed_requests=int(row.get("completed_requests") or 0),
            rejected_requests=int(row.get("rejected_requests") or 0),
            avg_estimated_value=_decimal(row.get("avg_estimated_value"), default=None),
            total_estimated_value=_decimal(row.get("total_estimated_value"), default=None),
            avg_processing_days=_decimal(row.get("avg_processing_days"), default=None),
        )


__all__ = [
    "SORTABLE_COLUMNS",
    "RequestFilters",
    "RequestSummaryRow",
    "RequestPage",
    "RequestUpdate",
    "BuybackStats",
    "BuybackRepository",
    "SupabaseBuybackRepository",
    "request_to_row",
    "row_to_request",
    "appraisal_to_row",
    "row_to_appraisal",
    "row_to_store",
]
