"""Payment endpoints.

Payment capture itself happens at the register; this surface only records
that a DUE intent was settled.
"""

from typing import Any

from fastapi import APIRouter, Depends

from checkin_api.dependencies import get_payment_service
from checkin_api.models.checkin import MarkPaidRequest
from checkin_api.security import AuthScope, Principal, require_auth
from checkin_core.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/{payment_intent_id}/mark-paid",
    summary="Mark payment intent paid",
    description="""
Settle a DUE payment intent. The owning session moves on to
AWAITING_SIGNATURE. Repeating the call on a PAID intent returns
`alreadyPaid: true`.

**Requires staff authentication.**
""",
)
def mark_paid(
    payment_intent_id: str,
    body: MarkPaidRequest | None = None,
    auth: Principal = Depends(require_auth(AuthScope.STAFF)),
    service: PaymentService = Depends(get_payment_service),
) -> dict[str, Any]:
    return service.mark_paid(
        payment_intent_id,
        payment_method=body.payment_method if body else None,
        staff_id=auth.staff_id,
    )
