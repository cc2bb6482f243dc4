"""
Buyback request service.

Use cases for the buyback request aggregate:
- create: public submission (validated, rate limited, store checked).
- update: staff patch of status/priority/notes/pickup/appraisals with an
  append-only audit trail, committed atomically with an optimistic version.
- delete: admin only; completed requests cannot be deleted.
- reads: staff detail and listing, customer detail, customer tracking view,
  analytics.

Every mutation that notifies someone enqueues outbox events in the same
commit (see services/notifications.py).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from uuid import UUID, uuid4

from domain.appraisal import Appraisal, total_appraised_value
from domain.buyback import (
    APPRAISAL_VISIBLE_STATUSES,
    MAX_DAILY_SEQUENCE,
    REVIEWED_STATUSES,
    ApplicationType,
    AuthMethod,
    BuybackRequest,
    CommunicationHistoryEntry,
    ContactMethod,
    HistoryEntryType,
    ItemCategory,
    PriorityLevel,
    RequestStatus,
    Store,
    format_request_number,
    parse_priority,
    parse_status,
)
from domain.errors import (
    ConflictError,
    FutureDateError,
    NotFoundError,
    StoreNotFoundError,
    TerminalStateError,
    UnauthorizedError,
    ValidationError,
)
from domain.time import Clock, utc_today
from domain.tracking import ContactInfo, TrackingView, project_tracking
from domain.transitions import FreeTransitionPolicy, TransitionPolicy
from domain.validation import (
    ChoiceRule,
    DateRule,
    EmailRule,
    NameRule,
    PhoneRule,
    PostalCodeRule,
    TextRule,
    TimeRule,
    require_valid,
    validate_buyback_items,
    validate_field,
    validate_request_number,
)
from repositories.buyback_repository import (
    SORTABLE_COLUMNS,
    BuybackRepository,
    BuybackStats,
    RequestFilters,
    RequestSummaryRow,
    RequestUpdate,
)
from services.appraisal_aggregator import AppraisalAggregator, load_appraisals
from services.notifications import EventBuilder
from services.rate_limiter import CREATE_REQUEST, TRACK_REQUEST, VERIFY, RateLimiter
from services.verification_gateway import (
    ADMIN_ROLES,
    CustomerProof,
    StaffPrincipal,
    authorize_customer,
    authorize_staff,
    generate_verification_token,
    redact_for_customer,
    scoped_store_id,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

# Fields a staff patch may carry.
PATCH_FIELDS = frozenset(
    {
        "status",
        "priority_level",
        "assigned_staff_id",
        "internal_notes",
        "customer_notes",
        "preferred_pickup_date",
        "preferred_pickup_time",
        "communication_note",
        "customer_message",
        "appraisals",
    }
)


@dataclass(frozen=True, slots=True)
class SubmissionContext:
    """Caller metadata captured with a submission."""

    client_identifier: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CreatedRequest:
    request: BuybackRequest
    tracking_url: str


@dataclass(frozen=True, slots=True)
class StaffRequestDetail:
    request: BuybackRequest
    appraisals: Tuple[Appraisal, ...]
    total_appraised_value: Decimal
    status_history: Tuple[CommunicationHistoryEntry, ...]


@dataclass(frozen=True, slots=True)
class CustomerRequestDetail:
    request: BuybackRequest
    appraisals: Tuple[Appraisal, ...]
    total_appraised_value: Decimal
    appraisal_count: int


@dataclass(frozen=True, slots=True)
class Pagination:
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


@dataclass(frozen=True, slots=True)
class RequestListPage:
    rows: Tuple[RequestSummaryRow, ...]
    pagination: Pagination


def _dedupe(values: List[ItemCategory]) -> Tuple[ItemCategory, ...]:
    seen: Dict[ItemCategory, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return tuple(seen)


class RequestService:
    def __init__(
        self,
        repository: BuybackRepository,
        rate_limiter: RateLimiter,
        clock: Clock,
        *,
        contact_info: ContactInfo,
        frontend_url: str = "",
        transition_policy: Optional[TransitionPolicy] = None,
        aggregator: Optional[AppraisalAggregator] = None,
        events: Optional[EventBuilder] = None,
        id_factory: Callable[[], UUID] = uuid4,
        token_factory: Callable[[], str] = generate_verification_token,
    ):
        self._repository = repository
        self._rate_limiter = rate_limiter
        self._clock = clock
        self._contact_info = contact_info
        self._frontend_url = frontend_url.rstrip("/")
        self._policy = transition_policy or FreeTransitionPolicy()
        self._aggregator = aggregator or AppraisalAggregator()
        self._events = events or EventBuilder()
        self._id_factory = id_factory
        self._token_factory = token_factory

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, payload: Mapping[str, Any], context: SubmissionContext) -> CreatedRequest:
        """
        Validate and store a new submission.

        Order: input validation, rate limit, store lookup, insert. Malformed
        submissions never consume rate-limit budget or touch persistence.
        """

        fields = self._validate_submission(payload)
        items = validate_buyback_items(payload.get("items"))

        today = utc_today(self._clock)
        pickup_date: Optional[date] = fields["preferred_pickup_date"]
        if pickup_date is not None and pickup_date < today:
            raise FutureDateError(
                "Preferred pickup date must be today or later",
                details={"preferred_pickup_date": pickup_date.isoformat()},
            )

        self._rate_limiter.enforce(context.client_identifier, CREATE_REQUEST)

        store: Optional[Store] = None
        if fields["preferred_store_id"]:
            store = self._repository.get_store(fields["preferred_store_id"])
            if store is None or not store.is_active:
                raise StoreNotFoundError(
                    "The selected store was not found",
                    details={"preferred_store_id": fields["preferred_store_id"]},
                )

        now = self._clock.now()
        sequence = self._repository.next_request_sequence(now.date())
        if sequence > MAX_DAILY_SEQUENCE:
            raise ConflictError(
                "Daily request number capacity reached",
                details={"day": now.date().isoformat()},
            )

        auth_method: AuthMethod = fields["auth_method"]
        token = self._token_factory() if auth_method.is_guest else None
        categories = _dedupe([item.category for item in items] + list(fields["item_categories"]))

        request = BuybackRequest(
            request_id=self._id_factory(),
            request_number=format_request_number(now.date(), sequence),
            status=RequestStatus.SUBMITTED,
            priority_level=fields["priority_level"],
            auth_method=auth_method,
            items=items,
            item_categories=categories,
            estimated_total_value=sum((item.estimated_value for item in items), Decimal("0")),
            created_at=now,
            updated_at=now,
            verification_token=token,
            customer_name=fields["customer_name"],
            email=fields["email"],
            phone=fields["phone"],
            address=fields["address"],
            postal_code=fields["postal_code"],
            preferred_contact_method=fields["preferred_contact_method"],
            auth_identifier=fields["auth_identifier"],
            application_type=fields["application_type"],
            preferred_store_id=fields["preferred_store_id"],
            preferred_pickup_date=pickup_date,
            preferred_pickup_time=fields["preferred_pickup_time"],
            customer_notes=fields["customer_notes"],
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            referrer_url=context.referrer_url,
        )

        tracking_url = self.tracking_url(request)
        events = self._events.for_creation(request, store, tracking_url)
        stored = self._repository.insert_request(request, events)

        logger.info(
            "Buyback request created",
            extra={
                "request_id": str(stored.request_id),
                "request_number": stored.request_number,
                "auth_method": str(stored.auth_method),
                "items": stored.total_items_count,
                "store_id": stored.preferred_store_id,
            },
        )
        return CreatedRequest(request=stored, tracking_url=tracking_url)

    def tracking_url(self, request: BuybackRequest) -> str:
        url = f"{self._frontend_url}/track/{request.request_number}"
        if request.verification_token:
            url += f"?token={request.verification_token}"
        return url

    def _validate_submission(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            auth_method = AuthMethod.parse(str(payload.get("auth_method") or "guest"))
        except ValueError as e:
            raise ValidationError(str(e), details={"auth_method": str(e)}) from None

        results = {
            "customer_name": validate_field(payload.get("customer_name"), NameRule()),
            "email": validate_field(payload.get("email"), EmailRule()),
            "phone": validate_field(payload.get("phone"), PhoneRule()),
            "address": validate_field(payload.get("address"), TextRule(max_length=500)),
            "postal_code": validate_field(payload.get("postal_code"), PostalCodeRule()),
            "preferred_contact_method": validate_field(
                payload.get("preferred_contact_method"),
                ChoiceRule(choices=tuple(m.value for m in ContactMethod)),
            ),
            "application_type": validate_field(
                payload.get("application_type"),
                ChoiceRule(choices=tuple(t.value for t in ApplicationType)),
            ),
            "auth_identifier": validate_field(payload.get("auth_identifier"), TextRule(max_length=255)),
            "preferred_store_id": validate_field(payload.get("preferred_store_id"), TextRule(max_length=64)),
            "preferred_pickup_date": validate_field(payload.get("preferred_pickup_date"), DateRule()),
            "preferred_pickup_time": validate_field(payload.get("preferred_pickup_time"), TimeRule()),
            "customer_notes": validate_field(payload.get("customer_notes"), TextRule(max_length=1000)),
            "priority_level": validate_field(
                payload.get("priority_level"),
                ChoiceRule(choices=tuple(p.value for p in PriorityLevel)),
            ),
        }

        raw_categories = payload.get("item_categories") or []
        if isinstance(raw_categories, (str, bytes)) or not isinstance(raw_categories, (list, tuple)):
            raise ValidationError("item_categories must be a list", details={"item_categories": "must be a list"})
        category_rule = ChoiceRule(choices=tuple(c.value for c in ItemCategory))
        for index, raw in enumerate(raw_categories):
            results[f"item_categories[{index}]"] = validate_field(raw, category_rule, required=True)

        values = require_valid(results, "Submission is invalid")

        contact_method = ContactMethod(values["preferred_contact_method"] or ContactMethod.EMAIL.value)
        missing: Dict[str, str] = {}
        if (auth_method.kind == "email" or contact_method is ContactMethod.EMAIL) and not values["email"]:
            missing["email"] = "Email address is required"
        if (
            auth_method.kind == "phone" or contact_method in (ContactMethod.PHONE, ContactMethod.SMS)
        ) and not values["phone"]:
            missing["phone"] = "Phone number is required"
        if not missing and not values["email"] and not values["phone"]:
            missing["contact"] = "An email address or phone number is required"
        if missing:
            raise ValidationError("Contact information is incomplete", details=missing)

        auth_identifier = values["auth_identifier"]
        if auth_identifier is None and auth_method.kind in ("email", "phone"):
            auth_identifier = values[auth_method.kind]

        return {
            "auth_method": auth_method,
            "customer_name": values["customer_name"],
            "email": values["email"],
            "phone": values["phone"],
            "address": values["address"],
            "postal_code": values["postal_code"],
            "preferred_contact_method": contact_method,
            "application_type": ApplicationType(values["application_type"] or ApplicationType.ONLINE.value),
            "auth_identifier": auth_identifier,
            "preferred_store_id": values["preferred_store_id"],
            "preferred_pickup_date": values["preferred_pickup_date"],
            "preferred_pickup_time": values["preferred_pickup_time"],
            "customer_notes": values["customer_notes"],
            "priority_level": PriorityLevel(values["priority_level"] or PriorityLevel.NORMAL.value),
            "item_categories": tuple(
                ItemCategory(values[f"item_categories[{i}]"]) for i in range(len(raw_categories))
            ),
        }

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, request_id: UUID, principal: Optional[StaffPrincipal], patch: Mapping[str, Any]) -> BuybackRequest:
        """
        Apply a staff patch.

        History entries are appended in this order: status_change, note,
        customer_note, appraisal_completed. A patch that changes nothing
        performs no write and returns the request unchanged.

        Raises:
            ConflictError: another update committed after this one read the row.
        """

        principal = authorize_staff(principal)

        unknown = set(patch) - PATCH_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown update fields",
                details={"unknown_fields": sorted(unknown)},
            )

        parsed = self._parse_patch(patch)

        current = self._repository.get_request(request_id)
        if current is None:
            raise NotFoundError("Buyback request not found", details={"request_id": str(request_id)})
        authorize_staff(principal, current)

        now = max(self._clock.now(), current.updated_at)
        changes: Dict[str, Any] = {}
        history: List[CommunicationHistoryEntry] = []

        new_status: Optional[RequestStatus] = parsed.get("status")
        if new_status is not None and new_status != current.status:
            self._policy.check(current.status, new_status)
            changes["status"] = new_status
            history.append(
                CommunicationHistoryEntry(
                    timestamp=now,
                    actor_id=principal.staff_id,
                    actor_name=principal.display_name,
                    type=HistoryEntryType.STATUS_CHANGE,
                    content=f"Status changed from {current.status.value} to {new_status.value}",
                    old_status=current.status,
                    new_status=new_status,
                )
            )
            if new_status in REVIEWED_STATUSES:
                changes["reviewed_by"] = principal.staff_id
                changes["reviewed_at"] = now

        for name in (
            "priority_level",
            "assigned_staff_id",
            "internal_notes",
            "customer_notes",
            "preferred_pickup_date",
            "preferred_pickup_time",
        ):
            if name in parsed and parsed[name] != getattr(current, name):
                changes[name] = parsed[name]

        if parsed.get("communication_note"):
            history.append(
                CommunicationHistoryEntry(
                    timestamp=now,
                    actor_id=principal.staff_id,
                    actor_name=principal.display_name,
                    type=HistoryEntryType.NOTE,
                    content=parsed["communication_note"],
                )
            )

        if parsed.get("customer_message"):
            history.append(
                CommunicationHistoryEntry(
                    timestamp=now,
                    actor_id=principal.staff_id,
                    actor_name=principal.display_name,
                    type=HistoryEntryType.CUSTOMER_NOTE,
                    content=parsed["customer_message"],
                )
            )

        appraisals: Optional[Tuple[Appraisal, ...]] = None
        raw_appraisals = parsed.get("appraisals")
        if raw_appraisals:
            batch = self._aggregator.prepare(current.request_id, raw_appraisals, principal, now)
            appraisals = batch.appraisals
            history.append(self._aggregator.summary_entry(batch, principal, now))

        if not changes and not history and appraisals is None:
            logger.debug("No-op update", extra={"request_id": str(request_id), "actor_id": principal.staff_id})
            return current

        updated = replace(
            current,
            **changes,
            communication_history=current.communication_history + tuple(history),
            updated_at=now,
        )
        events = self._events.for_update(
            current,
            updated,
            appraisal_count=len(appraisals) if appraisals is not None else None,
            appraisal_total=str(total_appraised_value(appraisals)) if appraisals is not None else None,
            customer_message=parsed.get("customer_message"),
        )

        try:
            committed = self._repository.commit_update(
                RequestUpdate(
                    request=updated,
                    expected_version=current.version,
                    changed_fields=frozenset(changes),
                    appended_history=tuple(history),
                    appraisals=appraisals,
                    events=tuple(events),
                )
            )
        except ConflictError:
            logger.warning(
                "Concurrent update detected",
                extra={
                    "request_id": str(request_id),
                    "actor_id": principal.staff_id,
                    "expected_version": current.version,
                },
            )
            raise

        logger.info(
            "Buyback request updated",
            extra={
                "request_id": str(committed.request_id),
                "request_number": committed.request_number,
                "actor_id": principal.staff_id,
                "changed_fields": sorted(changes),
                "history_entries": len(history),
                "version": committed.version,
            },
        )
        return committed

    def _parse_patch(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        parsed: Dict[str, Any] = {}

        if patch.get("status") is not None:
            parsed["status"] = parse_status(str(patch["status"]))
        if patch.get("priority_level") is not None:
            parsed["priority_level"] = parse_priority(str(patch["priority_level"]))

        rules = {
            "assigned_staff_id": TextRule(max_length=255),
            "internal_notes": TextRule(max_length=2000),
            "customer_notes": TextRule(max_length=1000),
            "preferred_pickup_date": DateRule(),
            "preferred_pickup_time": TimeRule(),
            "communication_note": TextRule(max_length=1000),
            "customer_message": TextRule(max_length=1000),
        }
        results = {name: validate_field(patch.get(name), rule) for name, rule in rules.items() if name in patch}
        parsed.update(require_valid(results, "Update is invalid"))

        if "appraisals" in patch and patch["appraisals"] is not None:
            raw = patch["appraisals"]
            if isinstance(raw, (str, bytes)) or not isinstance(raw, (list, tuple)):
                raise ValidationError("appraisals must be a list", details={"appraisals": "must be a list"})
            parsed["appraisals"] = list(raw)

        return parsed

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, request_id: UUID, principal: Optional[StaffPrincipal]) -> None:
        principal = authorize_staff(principal, required_roles=ADMIN_ROLES)

        current = self._repository.get_request(request_id)
        if current is None:
            raise NotFoundError("Buyback request not found", details={"request_id": str(request_id)})
        if current.status is RequestStatus.COMPLETED:
            raise TerminalStateError(
                "Completed requests cannot be deleted",
                details={"request_number": current.request_number},
            )

        self._repository.delete_request(current.request_id, current.version)
        logger.info(
            "Buyback request deleted",
            extra={
                "request_id": str(current.request_id),
                "request_number": current.request_number,
                "actor_id": principal.staff_id,
            },
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_for_staff(self, request_id: UUID, principal: Optional[StaffPrincipal]) -> StaffRequestDetail:
        authorize_staff(principal)
        request = self._repository.get_request(request_id)
        if request is None:
            raise NotFoundError("Buyback request not found", details={"request_id": str(request_id)})
        authorize_staff(principal, request)

        appraisals, total = load_appraisals(self._repository, request.request_id)
        return StaffRequestDetail(
            request=request,
            appraisals=appraisals,
            total_appraised_value=total,
            status_history=request.status_history(),
        )

    def get_for_customer(self, request_id: UUID, proof: CustomerProof, client_identifier: str) -> CustomerRequestDetail:
        if not proof.is_present:
            raise UnauthorizedError("A verification token, email or phone number is required")

        self._rate_limiter.enforce(client_identifier, VERIFY)

        request = self._repository.get_request(request_id)
        if request is None:
            raise NotFoundError("Buyback request not found", details={"request_id": str(request_id)})
        authorize_customer(proof, request)

        appraisals, total = load_appraisals(self._repository, request.request_id)
        visible = appraisals if request.status in APPRAISAL_VISIBLE_STATUSES else ()
        return CustomerRequestDetail(
            request=redact_for_customer(request),
            appraisals=visible,
            total_appraised_value=total,
            appraisal_count=len(appraisals),
        )

    def list_for_staff(
        self,
        principal: Optional[StaffPrincipal],
        filters: RequestFilters,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> RequestListPage:
        principal = authorize_staff(principal)

        if page < 1:
            raise ValidationError("page must be >= 1", details={"page": page})
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", details={"limit": limit})
        if filters.sort_by not in SORTABLE_COLUMNS:
            raise ValidationError(
                f"Unsupported sort column: {filters.sort_by}",
                details={"allowed": list(SORTABLE_COLUMNS)},
            )
        sort_order = filters.sort_order.upper()
        if sort_order not in ("ASC", "DESC"):
            raise ValidationError("sort_order must be ASC or DESC", details={"sort_order": filters.sort_order})

        scoped = replace(
            filters,
            store_id=scoped_store_id(principal, filters.store_id),
            sort_order=sort_order,
        )
        result = self._repository.list_requests(scoped, limit=limit, offset=(page - 1) * limit)

        total_pages = math.ceil(result.total / limit) if result.total else 0
        return RequestListPage(
            rows=result.rows,
            pagination=Pagination(
                total=result.total,
                page=page,
                limit=limit,
                total_pages=total_pages,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
        )

    def track(self, request_number: Any, proof: CustomerProof, client_identifier: str) -> TrackingView:
        """Customer tracking view for a request number."""

        number = validate_request_number(request_number)
        if not proof.is_present:
            raise UnauthorizedError("A verification token, email or phone number is required")

        self._rate_limiter.enforce(client_identifier, TRACK_REQUEST)

        request = self._repository.get_request_by_number(number)
        if request is None:
            raise NotFoundError("Buyback request not found", details={"request_number": number})
        authorize_customer(proof, request)

        appraisals, _ = load_appraisals(self._repository, request.request_id)
        store = self._repository.get_store(request.preferred_store_id) if request.preferred_store_id else None
        return project_tracking(request, appraisals, store=store, contact_info=self._contact_info)

    def stats(
        self,
        principal: Optional[StaffPrincipal],
        *,
        store_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> BuybackStats:
        principal = authorize_staff(principal)
        return self._repository.fetch_stats(
            store_id=scoped_store_id(principal, store_id),
            date_from=date_from,
            date_to=date_to,
        )


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "PATCH_FIELDS",
    "SubmissionContext",
    "CreatedRequest",
    "StaffRequestDetail",
    "CustomerRequestDetail",
    "Pagination",
    "RequestListPage",
    "RequestService",
]
