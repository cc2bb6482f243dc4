"""
Domain: customer tracking projection (pure).

Builds the customer-safe view of a request from its current state:
progress stage, happy-path timeline, next-step guidance and an estimated
completion date. Nothing here performs I/O; the caller loads the request,
its appraisals and its store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence, Tuple

from .appraisal import Appraisal, total_appraised_value
from .buyback import (
    APPRAISAL_VISIBLE_STATUSES,
    BuybackRequest,
    CommunicationHistoryEntry,
    PriorityLevel,
    RequestStatus,
    Store,
)
from .time import add_business_days


@dataclass(frozen=True, slots=True)
class ProgressStage:
    step: int
    label: str
    percent: int
    description: str
    color: str


PROGRESS_STAGES: Mapping[RequestStatus, ProgressStage] = {
    RequestStatus.DRAFT: ProgressStage(1, "Draft", 5, "Your request is being prepared", "gray"),
    RequestStatus.SUBMITTED: ProgressStage(
        2, "Received", 20, "We have received your request and are checking it", "blue"
    ),
    RequestStatus.REVIEWING: ProgressStage(3, "Appraising", 50, "Your items are being appraised", "yellow"),
    RequestStatus.APPRAISED: ProgressStage(
        4, "Appraised", 75, "The appraisal is complete. Please review the result", "orange"
    ),
    RequestStatus.APPROVED: ProgressStage(
        5, "Approved", 90, "The buyback has been approved. Please continue with the handover", "green"
    ),
    RequestStatus.COMPLETED: ProgressStage(6, "Completed", 100, "The buyback is complete", "green"),
    RequestStatus.REJECTED: ProgressStage(
        0, "Not accepted", 0, "Unfortunately we could not accept these items this time", "red"
    ),
    RequestStatus.CANCELLED: ProgressStage(0, "Cancelled", 0, "The request was cancelled", "gray"),
}

# Canonical happy path. Statuses outside it get index -1.
TIMELINE_SEQUENCE: Tuple[RequestStatus, ...] = (
    RequestStatus.SUBMITTED,
    RequestStatus.REVIEWING,
    RequestStatus.APPRAISED,
    RequestStatus.APPROVED,
    RequestStatus.COMPLETED,
)

TIMELINE_LABELS: Mapping[RequestStatus, str] = {
    RequestStatus.SUBMITTED: "Request received",
    RequestStatus.REVIEWING: "Appraisal started",
    RequestStatus.APPRAISED: "Appraisal complete",
    RequestStatus.APPROVED: "Buyback approved",
    RequestStatus.COMPLETED: "Transaction complete",
}

# Business days added to created_at. Statuses not listed have no estimate.
COMPLETION_OFFSET_DAYS: Mapping[RequestStatus, int] = {
    RequestStatus.SUBMITTED: 3,
    RequestStatus.REVIEWING: 2,
    RequestStatus.APPRAISED: 1,
    RequestStatus.APPROVED: 0,
}


@dataclass(frozen=True, slots=True)
class TimelineStep:
    status: RequestStatus
    label: str
    completed: bool
    current: bool
    timestamp: Optional[datetime]


@dataclass(frozen=True, slots=True)
class NextStep:
    action: str
    title: str
    description: str


@dataclass(frozen=True, slots=True)
class ContactInfo:
    support_email: str
    support_phone: str
    business_hours: str


@dataclass(frozen=True, slots=True)
class StoreSummary:
    name: str
    address: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    opening_hours: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TrackedAppraisal:
    item_name: str
    item_condition: str
    market_value: Decimal
    appraised_value: Decimal
    appraisal_notes: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class CustomerHistoryEntry:
    timestamp: datetime
    actor_name: str
    type: str
    content: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TrackingSummary:
    request_id: str
    request_number: str
    status: RequestStatus
    priority_level: PriorityLevel
    customer_name: Optional[str]
    total_items_count: int
    estimated_total_value: Decimal
    total_appraised_value: Decimal
    appraisal_count: int
    preferred_pickup_date: Optional[date]
    preferred_pickup_time: Optional[str]
    customer_notes: Optional[str]
    created_at: datetime
    updated_at: datetime
    progress: ProgressStage
    estimated_completion: Optional[datetime]


@dataclass(frozen=True, slots=True)
class TrackingView:
    request: TrackingSummary
    store: Optional[StoreSummary]
    appraisals: Tuple[TrackedAppraisal, ...]
    communication_history: Tuple[CustomerHistoryEntry, ...]
    timeline: Tuple[TimelineStep, ...]
    next_steps: Tuple[NextStep, ...]
    contact_info: ContactInfo


def progress_for(status: RequestStatus) -> ProgressStage:
    return PROGRESS_STAGES[status]


def timeline_index(status: RequestStatus) -> int:
    try:
        return TIMELINE_SEQUENCE.index(status)
    except ValueError:
        return -1


def build_timeline(status: RequestStatus, created_at: datetime, updated_at: datetime) -> Tuple[TimelineStep, ...]:
    """
    Flag each happy-path step against the current status.

    The first step is stamped with created_at and the current step with
    updated_at; the rest carry no timestamp.
    """

    current_index = timeline_index(status)
    steps = []
    for index, step_status in enumerate(TIMELINE_SEQUENCE):
        if index == 0:
            timestamp: Optional[datetime] = created_at
        elif index == current_index:
            timestamp = updated_at
        else:
            timestamp = None
        steps.append(
            TimelineStep(
                status=step_status,
                label=TIMELINE_LABELS[step_status],
                completed=index <= current_index,
                current=index == current_index,
                timestamp=timestamp,
            )
        )
    return tuple(steps)


def build_next_steps(
    status: RequestStatus,
    *,
    total_appraised: Decimal,
    preferred_pickup_date: Optional[date],
) -> Tuple[NextStep, ...]:
    if status is RequestStatus.SUBMITTED:
        return (
            NextStep(
                "wait",
                "Waiting for the appraisal to start",
                "Our staff will start appraising your items. This usually takes 2-3 business days.",
            ),
        )
    if status is RequestStatus.REVIEWING:
        return (
            NextStep(
                "wait",
                "Waiting for the appraisal result",
                "Your items are being appraised. We will contact you as soon as it is finished.",
            ),
        )
    if status is RequestStatus.APPRAISED:
        steps = [
            NextStep(
                "review",
                "Review the appraisal",
                "The appraisal is complete. Please check the offered amounts.",
            )
        ]
        if total_appraised > 0:
            steps.append(
                NextStep(
                    "contact",
                    "Confirm the offer",
                    "If you accept the appraised amount, please contact the store.",
                )
            )
        return tuple(steps)
    if status is RequestStatus.APPROVED:
        steps = [
            NextStep(
                "pickup",
                "Handover",
                "Please visit the store at a convenient time and bring photo identification.",
            )
        ]
        if preferred_pickup_date is not None:
            steps.append(
                NextStep(
                    "schedule",
                    f"Scheduled for {preferred_pickup_date.isoformat()}",
                    "If you need to change the date, please let us know in advance.",
                )
            )
        return tuple(steps)
    if status is RequestStatus.COMPLETED:
        return (NextStep("complete", "Transaction complete", "Thank you. We look forward to seeing you again."),)
    if status is RequestStatus.REJECTED:
        return (
            NextStep(
                "contact",
                "Contact us",
                "If you have any questions, please get in touch with our support team.",
            ),
        )
    if status is RequestStatus.CANCELLED:
        return (
            NextStep(
                "reapply",
                "Apply again",
                "If you would like to sell your items again, please create a new request.",
            ),
        )
    return (NextStep("wait", "Please wait", "Our staff are checking your request."),)


def estimate_completion(status: RequestStatus, created_at: datetime) -> Optional[datetime]:
    days = COMPLETION_OFFSET_DAYS.get(status)
    if days is None:
        return None
    return add_business_days(created_at, days)


def _history_for_customer(entries: Sequence[CommunicationHistoryEntry]) -> Tuple[CustomerHistoryEntry, ...]:
    return tuple(
        CustomerHistoryEntry(
            timestamp=e.timestamp,
            actor_name=e.actor_name,
            type=e.type.value,
            content=e.content,
            old_status=e.old_status.value if e.old_status is not None else None,
            new_status=e.new_status.value if e.new_status is not None else None,
        )
        for e in entries
        if e.is_customer_visible
    )


def project_tracking(
    request: BuybackRequest,
    appraisals: Sequence[Appraisal],
    *,
    store: Optional[Store],
    contact_info: ContactInfo,
) -> TrackingView:
    """
    Build the customer tracking view.

    `appraisals` is the full stored set; totals always reflect it, while the
    line items themselves are only exposed once the request is appraised.
    """

    total = total_appraised_value(appraisals)

    if request.status in APPRAISAL_VISIBLE_STATUSES:
        visible = tuple(
            TrackedAppraisal(
                item_name=a.item_name,
                item_condition=a.item_condition.value,
                market_value=a.market_value,
                appraised_value=a.appraised_value,
                appraisal_notes=a.appraisal_notes,
                created_at=a.created_at,
            )
            for a in sorted(appraisals, key=lambda a: a.created_at)
        )
    else:
        visible = ()

    summary = TrackingSummary(
        request_id=str(request.request_id),
        request_number=request.request_number,
        status=request.status,
        priority_level=request.priority_level,
        customer_name=request.customer_name,
        total_items_count=request.total_items_count,
        estimated_total_value=request.estimated_total_value,
        total_appraised_value=total,
        appraisal_count=len(appraisals),
        preferred_pickup_date=request.preferred_pickup_date,
        preferred_pickup_time=request.preferred_pickup_time,
        customer_notes=request.customer_notes,
        created_at=request.created_at,
        updated_at=request.updated_at,
        progress=progress_for(request.status),
        estimated_completion=estimate_completion(request.status, request.created_at),
    )

    store_summary = None
    if store is not None:
        store_summary = StoreSummary(
            name=store.name,
            address=store.address,
            phone=store.phone,
            email=store.email,
            opening_hours=dict(store.opening_hours),
        )

    return TrackingView(
        request=summary,
        store=store_summary,
        appraisals=visible,
        communication_history=_history_for_customer(request.communication_history),
        timeline=build_timeline(request.status, request.created_at, request.updated_at),
        next_steps=build_next_steps(
            request.status,
            total_appraised=total,
            preferred_pickup_date=request.preferred_pickup_date,
        ),
        contact_info=contact_info,
    )


__all__ = [
    "ProgressStage",
    "PROGRESS_STAGES",
    "TIMELINE_SEQUENCE",
    "COMPLETION_OFFSET_DAYS",
    "TimelineStep",
    "NextStep",
    "ContactInfo",
    "StoreSummary",
    "TrackedAppraisal",
    "CustomerHistoryEntry",
    "TrackingSummary",
    "TrackingView",
    "progress_for",
    "timeline_index",
    "build_timeline",
    "build_next_steps",
    "estimate_completion",
    "project_tracking",
]
