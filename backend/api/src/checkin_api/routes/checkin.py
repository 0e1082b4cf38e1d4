"""Lane check-in endpoints.

Provides REST endpoints for one lane's check-in handshake:
- Starting a session (explicit customer, ID scan, or renewal of an open visit)
- Scan lookup and employee re-selection
- Two-phase rental selection (propose, confirm, acknowledge)
- Resource assignment and customer confirmation of a cross-tier assignment
- Payment intent creation
- Agreement signature and the completion transaction
- Reset, kiosk acknowledgement, language and membership choices

Handlers are plain `def`: DynamoDB calls block, so FastAPI runs them in its
threadpool. Every successful mutation broadcasts the lane's session snapshot.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from starlette.status import HTTP_403_FORBIDDEN

from checkin_api.dependencies import (
    get_assignment_service,
    get_completion_service,
    get_identity_resolver,
    get_lane_session_service,
    get_payment_service,
    get_selection_service,
    get_waitlist_service,
)
from checkin_api.models.checkin import (
    AcknowledgeSelectionRequest,
    AssignRequest,
    CheckinScanRequest,
    ConfirmSelectionRequest,
    CustomerConfirmRequest,
    MembershipChoiceRequest,
    MembershipPurchaseIntentRequest,
    PastDueBypassRequest,
    ProposeSelectionRequest,
    ScanIdRequest,
    SetLanguageRequest,
    SignAgreementRequest,
    StartLaneSessionRequest,
    scan_result_payload,
)
from checkin_api.security import AuthScope, Principal, require_auth
from checkin_core.models import ErrorCode, RentalType, ScanResultType
from checkin_core.services.assignment import AssignmentService
from checkin_core.services.completion import CompletionService
from checkin_core.services.identity import IdentityResolver
from checkin_core.services.lane_sessions import LaneSessionService
from checkin_core.services.payment_service import PaymentService
from checkin_core.services.selection import SelectionService
from checkin_core.services.session_resolution import SessionLookup
from checkin_core.services.waitlist import WaitlistService

router = APIRouter(prefix="/checkin", tags=["checkin"])

staff_auth = require_auth(AuthScope.STAFF)
lane_auth = require_auth(AuthScope.LANE)


@router.post(
    "/lane/{lane_id}/start",
    summary="Start lane session",
    description="""
Start (or take over) the lane's session for a customer.

**Requires staff authentication.**

Provide `customerId` or `idScanValue`. With `visitId` the session renews an
open visit (`renewalHours` 2 or 6, default 6).

**Errors:**
- 400: neither identity given, or bad renewal parameters
- 403: customer banned, or visit belongs to another customer
- 404: explicit customer or visit not found
- 409: `ALREADY_CHECKED_IN` (with `activeCheckin`) or `LANE_BUSY`
""",
    responses={403: {"description": "Banned"}, 409: {"description": "Already checked in"}},
)
def start_lane_session(
    lane_id: str,
    body: StartLaneSessionRequest,
    auth: Principal = Depends(staff_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any]:
    return service.start(
        lane_id,
        auth.staff_id,
        customer_id=body.customer_id,
        id_scan_value=body.id_scan_value,
        membership_scan_value=body.membership_scan_value,
        visit_id=body.visit_id,
        renewal_hours=body.renewal_hours,
    )


@router.post(
    "/lane/{lane_id}/scan-id",
    summary="Scan ID and start",
    description="""
Resolve a state ID scan and start the lane session. An unknown ID creates the
customer from the barcode fields. `MULTIPLE_MATCHES` is returned without
starting; resubmit through `POST /checkin/scan` with `selectedCustomerId`.

**Errors:**
- 403: `BANNED`, or the ID is not valid for check-in (`UNDERAGE`, `ID_EXPIRED`)
""",
)
def scan_id(
    lane_id: str,
    body: ScanIdRequest,
    auth: Principal = Depends(staff_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any]:
    result, started = service.scan_id(lane_id, auth.staff_id, body.raw_scan_text)
    return {**scan_result_payload(result), "session": started}


@router.post(
    "/scan",
    summary="Resolve a scan",
    description="""
Match raw scanner output (state ID barcode or membership card) to a customer.
Never creates a customer.

Returns `{result: MATCHED|NO_MATCH|MULTIPLE_MATCHES|ERROR, ...}`. A banned
customer is an `ERROR` result with HTTP 403. An expired or underage ID is an
`ERROR` result (`UNDERAGE` or `ID_EXPIRED`) with HTTP 200. A
`selectedCustomerId` that does not match the scanned identity is 400
`INVALID_SELECTION`.
""",
)
def checkin_scan(
    body: CheckinScanRequest,
    auth: Principal = Depends(staff_auth),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Any:
    result = resolver.resolve_scan(body.raw_scan_text, body.selected_customer_id)
    payload = scan_result_payload(result)
    if result.result == ScanResultType.ERROR and result.error_code == ErrorCode.BANNED.value:
        return JSONResponse(status_code=HTTP_403_FORBIDDEN, content=payload)
    return payload


@router.post("/lane/{lane_id}/propose-selection", summary="Propose rental type")
def propose_selection(
    lane_id: str,
    body: ProposeSelectionRequest,
    auth: Principal = Depends(lane_auth),
    service: SelectionService = Depends(get_selection_service),
) -> dict[str, Any]:
    """Either party proposes a rental type. Nothing is locked."""
    auth.require_actor(body.proposed_by)
    return service.propose(
        lane_id,
        body.rental_type,
        body.proposed_by,
        waitlist_desired_type=body.waitlist_desired_type,
        backup_rental_type=body.backup_rental_type,
    )


@router.post("/lane/{lane_id}/confirm-selection", summary="Confirm and lock selection")
def confirm_selection(
    lane_id: str,
    body: ConfirmSelectionRequest,
    auth: Principal = Depends(lane_auth),
    service: SelectionService = Depends(get_selection_service),
) -> dict[str, Any]:
    """Lock the proposed rental type. Idempotent once locked."""
    auth.require_actor(body.confirmed_by)
    return service.confirm(lane_id, body.confirmed_by)


@router.post("/lane/{lane_id}/acknowledge-selection", summary="Acknowledge locked selection")
def acknowledge_selection(
    lane_id: str,
    body: AcknowledgeSelectionRequest,
    auth: Principal = Depends(lane_auth),
    service: SelectionService = Depends(get_selection_service),
) -> dict[str, Any]:
    auth.require_actor(body.acknowledged_by)
    return service.acknowledge(lane_id, body.acknowledged_by)


@router.post(
    "/lane/{lane_id}/assign",
    summary="Reserve a resource",
    description="""
Soft-reserve a room or locker for the lane's session.

**Errors:**
- 400: session status does not allow assignment, or resource not clean
- 404: no live session, or unknown resource
- 409: resource assigned or reserved by another session
""",
)
def assign_resource(
    lane_id: str,
    body: AssignRequest,
    auth: Principal = Depends(staff_auth),
    service: AssignmentService = Depends(get_assignment_service),
) -> dict[str, Any]:
    return service.assign(lane_id, body.resource_type, body.resource_id, auth.staff_id)


@router.post(
    "/lane/{lane_id}/customer-confirm", summary="Accept or decline a cross-tier assignment"
)
def customer_confirm(
    lane_id: str,
    body: CustomerConfirmRequest,
    auth: Principal = Depends(lane_auth),
    service: AssignmentService = Depends(get_assignment_service),
) -> dict[str, Any]:
    return service.customer_confirm(lane_id, body.session_id, body.confirmed)


@router.post("/lane/{lane_id}/create-payment-intent", summary="Create payment intent")
def create_payment_intent(
    lane_id: str,
    auth: Principal = Depends(staff_auth),
    service: PaymentService = Depends(get_payment_service),
) -> dict[str, Any]:
    """Quote the locked selection and create (or reuse) the session's DUE intent."""
    return service.create_payment_intent(lane_id)


@router.post(
    "/lane/{lane_id}/sign-agreement",
    summary="Sign agreement and complete check-in",
    description="""
Generate the signed agreement and commit the check-in: the resource becomes
OCCUPIED, the visit and block are recorded, and the session completes.

Requires a locked selection and a PAID payment intent. A cross-tier room must
first be accepted by the customer (400 `CUSTOMER_CONFIRMATION_PENDING`).
""",
)
def sign_agreement(
    lane_id: str,
    body: SignAgreementRequest,
    auth: Principal = Depends(lane_auth),
    service: CompletionService = Depends(get_completion_service),
) -> dict[str, Any]:
    return service.sign_agreement(lane_id, body.signature_payload, staff_id=auth.staff_id)


@router.post("/lane/{lane_id}/manual-signature-override", summary="Complete with manual signature")
def manual_signature_override(
    lane_id: str,
    auth: Principal = Depends(staff_auth),
    service: CompletionService = Depends(get_completion_service),
) -> dict[str, Any]:
    """Complete check-in on a paper signature. Audited."""
    return service.manual_override(lane_id, auth.require_staff_id())


@router.post("/lane/{lane_id}/reset", summary="Reset lane")
def reset_lane(
    lane_id: str,
    auth: Principal = Depends(lane_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any]:
    """Return the lane to a clean slate. Repeating the call is a no-op."""
    return {"success": True, "reset": service.reset(lane_id, auth.staff_id)}


@router.post("/lane/{lane_id}/kiosk-ack", summary="Kiosk acknowledgement")
def kiosk_ack(
    lane_id: str,
    auth: Principal = Depends(lane_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any]:
    service.kiosk_ack(lane_id)
    return {"success": True}


@router.post("/lane/{lane_id}/set-language", summary="Set customer language")
def set_language(
    lane_id: str,
    body: SetLanguageRequest,
    auth: Principal = Depends(lane_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any]:
    lookup = SessionLookup(lane_id, body.session_id, body.customer_name)
    return service.set_language(lookup, body.language)


@router.post("/lane/{lane_id}/membership-purchase-intent", summary="Set membership purchase intent")
def membership_purchase_intent(
    lane_id: str,
    body: MembershipPurchaseIntentRequest,
    auth: Principal = Depends(lane_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any]:
    """PURCHASE or RENEW adds the six-month membership to the quote; NONE clears it."""
    lookup = SessionLookup(lane_id, body.session_id, body.customer_name)
    service.set_membership_purchase_intent(lookup, body.intent)
    return {"success": True, "intent": body.intent.value if body.intent else None}


@router.post("/lane/{lane_id}/membership-choice", summary="Set membership choice")
def membership_choice(
    lane_id: str,
    body: MembershipChoiceRequest,
    auth: Principal = Depends(lane_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any]:
    lookup = SessionLookup(lane_id, body.session_id, body.customer_name)
    service.set_membership_choice(lookup, body.choice)
    return {"success": True, "choice": body.choice.value if body.choice else None}


@router.post(
    "/lane/{lane_id}/past-due/bypass",
    summary="Bypass past-due balance",
    description="""
Let a customer with a past-due balance proceed after manager approval.

**Errors:**
- 401: wrong manager PIN
- 403: manager is not an ADMIN
- 404: no live session, or unknown manager
""",
)
def past_due_bypass(
    lane_id: str,
    body: PastDueBypassRequest,
    auth: Principal = Depends(staff_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any]:
    service.past_due_bypass(lane_id, auth.staff_id, body.manager_id, body.manager_pin)
    return {"success": True}


@router.get("/lane/{lane_id}/session-snapshot", summary="Current session snapshot")
def session_snapshot(
    lane_id: str,
    auth: Principal = Depends(lane_auth),
    service: LaneSessionService = Depends(get_lane_session_service),
) -> dict[str, Any] | None:
    """Same payload as SESSION_UPDATED, or null when the lane has no session."""
    return service.snapshot(lane_id)


@router.get("/waitlist-info", summary="Waitlist position and ETA")
def waitlist_info(
    tier: RentalType = Query(..., description="Desired room tier"),
    auth: Principal = Depends(lane_auth),
    service: WaitlistService = Depends(get_waitlist_service),
) -> dict[str, Any]:
    return service.info(tier)
