"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
Request models only shape the payload; field rules (formats, ranges, enum
membership) are enforced by the domain validators so every error in a
submission is reported at once.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from domain.appraisal import Appraisal
from domain.buyback import BuybackItem, BuybackRequest, CommunicationHistoryEntry
from domain.tracking import TrackingView
from repositories.buyback_repository import BuybackStats, RequestSummaryRow
from services.request_service import CustomerRequestDetail, Pagination, StaffRequestDetail


# ============================================================================
# Shared Models
# ============================================================================

class BuybackItemModel(BaseModel):
    """One submitted item."""
    name: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    estimated_value: Optional[Decimal] = None
    description: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None

    @classmethod
    def from_domain(cls, item: BuybackItem) -> "BuybackItemModel":
        return cls(
            name=item.name,
            category=item.category.value,
            condition=item.condition.value,
            estimated_value=item.estimated_value,
            description=item.description,
            manufacturer=item.manufacturer,
            model=item.model,
            year=item.year,
        )


class HistoryEntryResponse(BaseModel):
    """Audit trail entry as seen by staff."""
    timestamp: datetime
    actor_id: Optional[str] = None
    actor_name: str
    type: str
    content: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    appraisal_count: Optional[int] = None
    total_value: Optional[Decimal] = None

    @classmethod
    def from_domain(cls, entry: CommunicationHistoryEntry) -> "HistoryEntryResponse":
        return cls(
            timestamp=entry.timestamp,
            actor_id=entry.actor_id,
            actor_name=entry.actor_name,
            type=entry.type.value,
            content=entry.content,
            old_status=entry.old_status.value if entry.old_status else None,
            new_status=entry.new_status.value if entry.new_status else None,
            appraisal_count=entry.appraisal_count,
            total_value=entry.total_value,
        )


class CustomerHistoryEntryResponse(BaseModel):
    """Audit trail entry as seen by the customer (no staff ids)."""
    timestamp: datetime
    actor_name: str
    type: str
    content: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None


class AppraisalResponse(BaseModel):
    """Single appraisal line item."""
    id: Optional[UUID] = None
    item_name: str
    item_condition: str
    market_value: Decimal
    appraised_value: Decimal
    appraisal_notes: str
    appraiser_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, appraisal: Appraisal, *, include_staff: bool = True) -> "AppraisalResponse":
        return cls(
            id=appraisal.appraisal_id if include_staff else None,
            item_name=appraisal.item_name,
            item_condition=appraisal.item_condition.value,
            market_value=appraisal.market_value,
            appraised_value=appraisal.appraised_value,
            appraisal_notes=appraisal.appraisal_notes,
            appraiser_id=appraisal.appraiser_id if include_staff else None,
            created_at=appraisal.created_at,
        )


# ============================================================================
# Create Models
# ============================================================================

class CreateBuybackRequest(BaseModel):
    """Public buyback submission."""
    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    preferred_contact_method: Optional[str] = "email"
    auth_method: Optional[str] = "guest"
    auth_identifier: Optional[str] = None
    items: List[BuybackItemModel] = Field(default_factory=list)
    item_categories: List[str] = Field(default_factory=list)
    application_type: Optional[str] = "online"
    preferred_store_id: Optional[str] = None
    preferred_pickup_date: Optional[str] = None
    preferred_pickup_time: Optional[str] = None
    customer_notes: Optional[str] = None
    priority_level: Optional[str] = "normal"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customer_name": "Taro Yamada",
                "email": "taro@example.com",
                "auth_method": "guest",
                "items": [
                    {"name": "Retro console", "category": "retro", "condition": "A", "estimated_value": 12000},
                    {"name": "Handheld", "category": "handheld", "estimated_value": 8000},
                ],
                "preferred_store_id": "S1",
                "preferred_pickup_date": "2025-06-01",
            }
        }
    )


class CreateBuybackResponse(BaseModel):
    """Response after a successful submission."""
    message: str
    id: UUID
    request_number: str
    status: str
    verification_token: Optional[str] = None
    tracking_url: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "Your buyback request has been received",
                "id": "123e4567-e89b-12d3-a456-426614174000",
                "request_number": "BR20250101-0001",
                "status": "submitted",
                "verification_token": "9f2c...",
                "tracking_url": "https://shop.example.com/track/BR20250101-0001?token=9f2c...",
            }
        }
    )


# ============================================================================
# Update Models
# ============================================================================

class AppraisalInput(BaseModel):
    """One appraisal line item submitted by staff."""
    item_name: Optional[str] = None
    item_condition: Optional[str] = None
    market_value: Optional[Decimal] = None
    appraised_value: Optional[Decimal] = None
    appraisal_notes: Optional[str] = None


class UpdateBuybackRequest(BaseModel):
    """Staff patch. Only fields that are sent are applied."""
    status: Optional[str] = None
    priority_level: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    internal_notes: Optional[str] = None
    customer_notes: Optional[str] = None
    preferred_pickup_date: Optional[str] = None
    preferred_pickup_time: Optional[str] = None
    communication_note: Optional[str] = None
    customer_message: Optional[str] = None
    appraisals: Optional[List[AppraisalInput]] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "appraised",
                "communication_note": "Checked both items in store",
                "appraisals": [
                    {"item_name": "Retro console", "item_condition": "A", "market_value": 900, "appraised_value": 500},
                    {"item_name": "Handheld", "item_condition": "B", "market_value": 1000, "appraised_value": 700},
                ],
            }
        }
    )


# ============================================================================
# Detail Models
# ============================================================================

class StaffRequestResponse(BaseModel):
    """Full request as seen by staff."""
    id: UUID
    request_number: str
    status: str
    priority_level: str
    auth_method: str
    verification_token: Optional[str] = None
    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    preferred_contact_method: str
    auth_identifier: Optional[str] = None
    application_type: str
    items: List[BuybackItemModel]
    item_categories: List[str]
    total_items_count: int
    estimated_total_value: Decimal
    preferred_store_id: Optional[str] = None
    preferred_pickup_date: Optional[date] = None
    preferred_pickup_time: Optional[str] = None
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    communication_history: List[HistoryEntryResponse]
    status_history: List[HistoryEntryResponse] = Field(default_factory=list)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer_url: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    appraisals: List[AppraisalResponse] = Field(default_factory=list)
    appraisal_count: int = 0
    total_appraised_value: Decimal = Decimal("0")

    @classmethod
    def from_request(cls, request: BuybackRequest, **extra: Any) -> "StaffRequestResponse":
        return cls(
            id=request.request_id,
            request_number=request.request_number,
            status=request.status.value,
            priority_level=request.priority_level.value,
            auth_method=str(request.auth_method),
            verification_token=request.verification_token,
            customer_name=request.customer_name,
            email=request.email,
            phone=request.phone,
            address=request.address,
            postal_code=request.postal_code,
            preferred_contact_method=request.preferred_contact_method.value,
            auth_identifier=request.auth_identifier,
            application_type=request.application_type.value,
            items=[BuybackItemModel.from_domain(i) for i in request.items],
            item_categories=[c.value for c in request.item_categories],
            total_items_count=request.total_items_count,
            estimated_total_value=request.estimated_total_value,
            preferred_store_id=request.preferred_store_id,
            preferred_pickup_date=request.preferred_pickup_date,
            preferred_pickup_time=request.preferred_pickup_time,
            customer_notes=request.customer_notes,
            internal_notes=request.internal_notes,
            assigned_staff_id=request.assigned_staff_id,
            reviewed_by=request.reviewed_by,
            reviewed_at=request.reviewed_at,
            communication_history=[HistoryEntryResponse.from_domain(e) for e in request.communication_history],
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            referrer_url=request.referrer_url,
            version=request.version,
            created_at=request.created_at,
            updated_at=request.updated_at,
            **extra,
        )

    @classmethod
    def from_detail(cls, detail: StaffRequestDetail) -> "StaffRequestResponse":
        return cls.from_request(
            detail.request,
            status_history=[HistoryEntryResponse.from_domain(e) for e in detail.status_history],
            appraisals=[AppraisalResponse.from_domain(a) for a in detail.appraisals],
            appraisal_count=len(detail.appraisals),
            total_appraised_value=detail.total_appraised_value,
        )


class CustomerRequestResponse(BaseModel):
    """Redacted request as seen by a verified customer."""
    id: UUID
    request_number: str
    status: str
    priority_level: str
    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    preferred_contact_method: str
    application_type: str
    items: List[BuybackItemModel]
    item_categories: List[str]
    total_items_count: int
    estimated_total_value: Decimal
    preferred_store_id: Optional[str] = None
    preferred_pickup_date: Optional[date] = None
    preferred_pickup_time: Optional[str] = None
    customer_notes: Optional[str] = None
    communication_history: List[CustomerHistoryEntryResponse]
    created_at: datetime
    updated_at: datetime
    appraisals: List[AppraisalResponse]
    appraisal_count: int
    total_appraised_value: Decimal

    @classmethod
    def from_detail(cls, detail: CustomerRequestDetail) -> "CustomerRequestResponse":
        request = detail.request
        return cls(
            id=request.request_id,
            request_number=request.request_number,
            status=request.status.value,
            priority_level=request.priority_level.value,
            customer_name=request.customer_name,
            email=request.email,
            phone=request.phone,
            address=request.address,
            postal_code=request.postal_code,
            preferred_contact_method=request.preferred_contact_method.value,
            application_type=request.application_type.value,
            items=[BuybackItemModel.from_domain(i) for i in request.items],
            item_categories=[c.value for c in request.item_categories],
            total_items_count=request.total_items_count,
            estimated_total_value=request.estimated_total_value,
            preferred_store_id=request.preferred_store_id,
            preferred_pickup_date=request.preferred_pickup_date,
            preferred_pickup_time=request.preferred_pickup_time,
            customer_notes=request.customer_notes,
            communication_history=[
                CustomerHistoryEntryResponse(
                    timestamp=e.timestamp,
                    actor_name=e.actor_name,
                    type=e.type.value,
                    content=e.content,
                    old_status=e.old_status.value if e.old_status else None,
                    new_status=e.new_status.value if e.new_status else None,
                )
                for e in request.communication_history
            ],
            created_at=request.created_at,
            updated_at=request.updated_at,
            appraisals=[AppraisalResponse.from_domain(a, include_staff=False) for a in detail.appraisals],
            appraisal_count=detail.appraisal_count,
            total_appraised_value=detail.total_appraised_value,
        )


# ============================================================================
# List Models
# ============================================================================

class RequestListItem(BaseModel):
    """One row in the staff request listing."""
    id: UUID
    request_number: str
    status: str
    priority_level: str
    auth_method: str
    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    preferred_store_id: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    total_items_count: int
    estimated_total_value: Decimal
    appraisal_count: int
    total_appraised_value: Decimal
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: RequestSummaryRow) -> "RequestListItem":
        request = row.request
        return cls(
            id=request.request_id,
            request_number=request.request_number,
            status=request.status.value,
            priority_level=request.priority_level.value,
            auth_method=str(request.auth_method),
            customer_name=request.customer_name,
            email=request.email,
            phone=request.phone,
            preferred_store_id=request.preferred_store_id,
            assigned_staff_id=request.assigned_staff_id,
            total_items_count=request.total_items_count,
            estimated_total_value=request.estimated_total_value,
            appraisal_count=row.appraisal_count,
            total_appraised_value=row.total_appraised_value,
            created_at=request.created_at,
            updated_at=request.updated_at,
        )


class PaginationResponse(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def from_domain(cls, pagination: Pagination) -> "PaginationResponse":
        return cls(
            total=pagination.total,
            page=pagination.page,
            limit=pagination.limit,
            total_pages=pagination.total_pages,
            has_next_page=pagination.has_next_page,
            has_prev_page=pagination.has_prev_page,
        )


class RequestListResponse(BaseModel):
    """Response for the staff request listing."""
    requests: List[RequestListItem]
    pagination: PaginationResponse
    filters_applied: Dict[str, Any]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "requests": [],
                "pagination": {
                    "total": 120,
                    "page": 1,
                    "limit": 50,
                    "total_pages": 3,
                    "has_next_page": True,
                    "has_prev_page": False,
                },
                "filters_applied": {"status": "submitted"},
            }
        }
    )


# ============================================================================
# Analytics Models
# ============================================================================

class AnalyticsOverview(BaseModel):
    total_requests: int
    pending_requests: int
    approved_requests: int
    completed_requests: int
    rejected_requests: int
    avg_estimated_value: Optional[Decimal] = None
    total_estimated_value: Optional[Decimal] = None
    avg_processing_days: Optional[Decimal] = None

    @classmethod
    def from_domain(cls, stats: BuybackStats) -> "AnalyticsOverview":
        return cls(
            total_requests=stats.total_requests,
            pending_requests=stats.pending_requests,
            approved_requests=stats.approved_requests,
            completed_requests=stats.completed_requests,
            rejected_requests=stats.rejected_requests,
            avg_estimated_value=stats.avg_estimated_value,
            total_estimated_value=stats.total_estimated_value,
            avg_processing_days=stats.avg_processing_days,
        )


class AnalyticsResponse(BaseModel):
    overview: AnalyticsOverview
    filters_applied: Dict[str, Any]


# ============================================================================
# Tracking Models
# ============================================================================

class ProgressResponse(BaseModel):
    step: int
    label: str
    percent: int
    description: str
    color: str


class TrackingRequestSummary(BaseModel):
    id: str
    request_number: str
    status: str
    priority_level: str
    customer_name: Optional[str] = None
    total_items_count: int
    estimated_total_value: Decimal
    total_appraised_value: Decimal
    appraisal_count: int
    preferred_pickup_date: Optional[date] = None
    preferred_pickup_time: Optional[str] = None
    customer_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    progress: ProgressResponse
    estimated_completion: Optional[datetime] = None


class StoreResponse(BaseModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    opening_hours: Dict[str, Any] = Field(default_factory=dict)


class TimelineStepResponse(BaseModel):
    status: str
    label: str
    completed: bool
    current: bool
    timestamp: Optional[datetime] = None


class NextStepResponse(BaseModel):
    action: str
    title: str
    description: str


class ContactInfoResponse(BaseModel):
    support_email: str
    support_phone: str
    business_hours: str


class TrackingResponse(BaseModel):
    """Customer tracking view."""
    request: TrackingRequestSummary
    store: Optional[StoreResponse] = None
    appraisals: List[AppraisalResponse]
    communication_history: List[CustomerHistoryEntryResponse]
    timeline: List[TimelineStepResponse]
    next_steps: List[NextStepResponse]
    contact_info: ContactInfoResponse

    @classmethod
    def from_view(cls, view: TrackingView) -> "TrackingResponse":
        summary = view.request
        progress = summary.progress
        return cls(
            request=TrackingRequestSummary(
                id=summary.request_id,
                request_number=summary.request_number,
                status=summary.status.value,
                priority_level=summary.priority_level.value,
                customer_name=summary.customer_name,
                total_items_count=summary.total_items_count,
                estimated_total_value=summary.estimated_total_value,
                total_appraised_value=summary.total_appraised_value,
                appraisal_count=summary.appraisal_count,
                preferred_pickup_date=summary.preferred_pickup_date,
                preferred_pickup_time=summary.preferred_pickup_time,
                customer_notes=summary.customer_notes,
                created_at=summary.created_at,
                updated_at=summary.updated_at,
                progress=ProgressResponse(
                    step=progress.step,
                    label=progress.label,
                    percent=progress.percent,
                    description=progress.description,
                    color=progress.color,
                ),
                estimated_completion=summary.estimated_completion,
            ),
            store=(
                StoreResponse(
                    name=view.store.name,
                    address=view.store.address,
                    phone=view.store.phone,
                    email=view.store.email,
                    opening_hours=dict(view.store.opening_hours),
                )
                if view.store is not None
                else None
            ),
            appraisals=[
                AppraisalResponse(
                    item_name=a.item_name,
                    item_condition=a.item_condition,
                    market_value=a.market_value,
                    appraised_value=a.appraised_value,
                    appraisal_notes=a.appraisal_notes,
                    created_at=a.created_at,
                )
                for a in view.appraisals
            ],
            communication_history=[
                CustomerHistoryEntryResponse(
                    timestamp=e.timestamp,
                    actor_name=e.actor_name,
                    type=e.type,
                    content=e.content,
                    old_status=e.old_status,
                    new_status=e.new_status,
                )
                for e in view.communication_history
            ],
            timeline=[
                TimelineStepResponse(
                    status=s.status.value,
                    label=s.label,
                    completed=s.completed,
                    current=s.current,
                    timestamp=s.timestamp,
                )
                for s in view.timeline
            ],
            next_steps=[
                NextStepResponse(action=n.action, title=n.title, description=n.description)
                for n in view.next_steps
            ],
            contact_info=ContactInfoResponse(
                support_email=view.contact_info.support_email,
                support_phone=view.contact_info.support_phone,
                business_hours=view.contact_info.business_hours,
            ),
        )


# ============================================================================
# Error Models
# ============================================================================

class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None
    reset_time: Optional[datetime] = None
    trace: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: ErrorBody
    status_code: int

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Item information is invalid",
                    "details": ["Item 1: name - This field is required"],
                },
                "status_code": 400,
            }
        }
    )
