"""
Buyback Request API Endpoints.

Public submission, staff management (list, detail, update, delete, analytics)
and customer-verified detail reads. Domain errors propagate to the handlers
registered in api/main.py.
"""

from datetime import date, datetime
from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    get_client_identifier,
    get_optional_principal,
    get_request_service,
    get_submission_context,
)
from api.models import (
    AnalyticsOverview,
    AnalyticsResponse,
    CreateBuybackRequest,
    CreateBuybackResponse,
    CustomerRequestResponse,
    PaginationResponse,
    RequestListItem,
    RequestListResponse,
    StaffRequestResponse,
    UpdateBuybackRequest,
)
from domain.buyback import parse_priority, parse_status
from repositories.buyback_repository import RequestFilters
from services.request_service import DEFAULT_PAGE_SIZE, RequestService, SubmissionContext
from services.verification_gateway import CustomerProof, StaffPrincipal

router = APIRouter()


@router.post(
    "/requests",
    response_model=CreateBuybackResponse,
    status_code=201,
    summary="Submit Buyback Request",
    description="Submit items for buyback. Guests receive a verification token for tracking.",
)
def create_request(
    body: CreateBuybackRequest,
    context: SubmissionContext = Depends(get_submission_context),
    service: RequestService = Depends(get_request_service),
):
    """
    Submit a new buyback request.

    **Process:**
    1. Validates contact details and every item (all problems reported at once)
    2. Applies the per-client submission rate limit
    3. Checks the preferred store exists and is active
    4. Assigns a request number `BR{YYYYMMDD}-{NNNN}` and stores the request

    The verification token is only returned here; keep the tracking URL.
    """
    created = service.create(body.model_dump(), context)
    request = created.request
    return CreateBuybackResponse(
        message="Your buyback request has been received",
        id=request.request_id,
        request_number=request.request_number,
        status=request.status.value,
        verification_token=request.verification_token,
        tracking_url=created.tracking_url,
    )


@router.get(
    "/requests",
    response_model=RequestListResponse,
    summary="List Buyback Requests",
    description="Staff listing with filters, sorting and pagination. Store staff only see their store.",
)
def list_requests(
    status: Optional[str] = None,
    store_id: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    request_number: Optional[str] = None,
    priority_level: Optional[str] = None,
    auth_method: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    sort_by: str = "created_at",
    sort_order: str = "DESC",
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    principal: Optional[StaffPrincipal] = Depends(get_optional_principal),
    service: RequestService = Depends(get_request_service),
):
    filters = RequestFilters(
        status=parse_status(status) if status else None,
        store_id=store_id,
        email=email,
        phone=phone,
        request_number=request_number,
        priority_level=parse_priority(priority_level) if priority_level else None,
        auth_method=auth_method,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = service.list_for_staff(principal, filters, page=page, limit=limit)

    applied = {
        "status": status,
        "store_id": store_id,
        "email": email,
        "phone": phone,
        "request_number": request_number,
        "priority_level": priority_level,
        "auth_method": auth_method,
        "date_from": date_from.isoformat() if date_from else None,
        "date_to": date_to.isoformat() if date_to else None,
        "sort_by": sort_by,
        "sort_order": sort_order.upper(),
    }
    return RequestListResponse(
        requests=[RequestListItem.from_row(row) for row in result.rows],
        pagination=PaginationResponse.from_domain(result.pagination),
        filters_applied={k: v for k, v in applied.items() if v is not None},
    )


@router.get(
    "/requests/analytics",
    response_model=AnalyticsResponse,
    summary="Buyback Analytics",
    description="Aggregate request counts and values, optionally by store and date range.",
)
def get_analytics(
    store_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    principal: Optional[StaffPrincipal] = Depends(get_optional_principal),
    service: RequestService = Depends(get_request_service),
):
    stats = service.stats(principal, store_id=store_id, date_from=date_from, date_to=date_to)
    applied = {
        "store_id": store_id,
        "date_from": date_from.isoformat() if date_from else None,
        "date_to": date_to.isoformat() if date_to else None,
    }
    return AnalyticsResponse(
        overview=AnalyticsOverview.from_domain(stats),
        filters_applied={k: v for k, v in applied.items() if v is not None},
    )


@router.get(
    "/requests/{request_id}",
    response_model=Union[StaffRequestResponse, CustomerRequestResponse],
    summary="Get Buyback Request",
    description="Staff read with a bearer credential; customer read with token, email or phone.",
)
def get_request(
    request_id: UUID,
    token: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    principal: Optional[StaffPrincipal] = Depends(get_optional_principal),
    identifier: str = Depends(get_client_identifier),
    service: RequestService = Depends(get_request_service),
):
    """
    Read one request.

    **Staff:** full record including internal notes, appraisals and status history.

    **Customer:** pass exactly one of `token`, `email` or `phone` as a query
    parameter (token takes precedence). Internal notes and staff details are
    removed, and appraisal line items are only shown once the request is
    appraised.
    """
    if principal is not None:
        return StaffRequestResponse.from_detail(service.get_for_staff(request_id, principal))

    proof = CustomerProof.from_values(token=token, email=email, phone=phone)
    detail = service.get_for_customer(request_id, proof, identifier)
    return CustomerRequestResponse.from_detail(detail)


@router.put(
    "/requests/{request_id}",
    response_model=StaffRequestResponse,
    summary="Update Buyback Request",
    description="Staff update of status, priority, assignment, notes, pickup and appraisals.",
)
def update_request(
    request_id: UUID,
    body: UpdateBuybackRequest,
    principal: Optional[StaffPrincipal] = Depends(get_optional_principal),
    service: RequestService = Depends(get_request_service),
):
    """
    Apply a partial update. Only fields present in the body are applied.

    `communication_note` is recorded as a staff-only note, `customer_message`
    as a customer-visible message. Submitting `appraisals` replaces the
    stored appraisal set.
    """
    updated = service.update(request_id, principal, body.model_dump(exclude_unset=True))
    return StaffRequestResponse.from_request(updated)


@router.delete(
    "/requests/{request_id}",
    summary="Delete Buyback Request",
    description="Admin only. Completed requests cannot be deleted.",
)
def delete_request(
    request_id: UUID,
    principal: Optional[StaffPrincipal] = Depends(get_optional_principal),
    service: RequestService = Depends(get_request_service),
):
    service.delete(request_id, principal)
    return {"message": "Buyback request deleted", "id": str(request_id)}
