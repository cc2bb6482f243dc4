"""
Tracking API Endpoints.

Customer-facing progress view for a request number.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from api.dependencies import get_client_identifier, get_request_service
from api.models import TrackingResponse
from services.request_service import RequestService
from services.verification_gateway import CustomerProof

router = APIRouter()


@router.get(
    "/requests/track/{request_number}",
    response_model=TrackingResponse,
    summary="Track Buyback Request",
    description="Progress, timeline and next steps for a request, verified by token, email or phone.",
)
def track_request(
    request_number: str,
    token: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    identifier: str = Depends(get_client_identifier),
    service: RequestService = Depends(get_request_service),
):
    """
    Customer tracking view.

    **Verification:** pass one of `token`, `email` or `phone`. Guests use the
    token from their tracking URL.

    **Example usage:**
    ```
    GET /api/v1/requests/track/BR20250101-0001?token=9f2c...
    ```
    """
    proof = CustomerProof.from_values(token=token, email=email, phone=phone)
    view = service.track(request_number, proof, identifier)
    return TrackingResponse.from_view(view)
