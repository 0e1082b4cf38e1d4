"""Request models for the check-in endpoints, plus scan result serialization."""

from typing import Any

from pydantic import Field, field_validator

from checkin_core.models import (
    Actor,
    Language,
    MembershipChoice,
    MembershipPurchaseIntent,
    PaymentMethod,
    RentalType,
    ResourceType,
)
from checkin_core.models.items import iso
from checkin_core.services.identity import ScanResult

from .common import CamelModel


class StartLaneSessionRequest(CamelModel):
    """Start a lane session from a customer id or a scanned ID.

    Identity and renewal rules are checked by the service (400, not 422).
    """

    customer_id: str | None = None
    id_scan_value: str | None = Field(default=None, min_length=1)
    membership_scan_value: str | None = None
    visit_id: str | None = None
    renewal_hours: int | None = None


class ScanIdRequest(CamelModel):
    raw_scan_text: str = Field(..., min_length=1)


class CheckinScanRequest(CamelModel):
    """Read-style scan lookup; never creates a customer."""

    lane_id: str = Field(..., min_length=1)
    raw_scan_text: str = Field(..., min_length=1)
    selected_customer_id: str | None = None


class SessionScopedRequest(CamelModel):
    """Body of kiosk-side updates that may name the session explicitly."""

    session_id: str | None = None
    customer_name: str | None = None


class ProposeSelectionRequest(CamelModel):
    rental_type: RentalType
    proposed_by: Actor
    waitlist_desired_type: RentalType | None = None
    backup_rental_type: RentalType | None = None


class ConfirmSelectionRequest(CamelModel):
    confirmed_by: Actor


class AcknowledgeSelectionRequest(CamelModel):
    acknowledged_by: Actor


class AssignRequest(CamelModel):
    resource_type: ResourceType
    resource_id: str = Field(..., min_length=1)


class CustomerConfirmRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    confirmed: bool


class SignAgreementRequest(CamelModel):
    """PNG signature as a data URL or bare base64."""

    signature_payload: str
    session_id: str | None = None


class MarkPaidRequest(CamelModel):
    payment_method: PaymentMethod | None = None


class PastDueBypassRequest(CamelModel):
    manager_id: str = Field(..., min_length=1)
    manager_pin: str = Field(..., pattern=r"^\d{6}$")


class SetLanguageRequest(SessionScopedRequest):
    language: Language


class MembershipPurchaseIntentRequest(SessionScopedRequest):
    intent: MembershipPurchaseIntent | None

    @field_validator("intent", mode="before")
    @classmethod
    def none_marker(cls, value: Any) -> Any:
        return None if value == "NONE" else value


class MembershipChoiceRequest(SessionScopedRequest):
    choice: MembershipChoice | None

    @field_validator("choice", mode="before")
    @classmethod
    def none_marker(cls, value: Any) -> Any:
        return None if value == "NONE" else value


class StaffSignInRequest(CamelModel):
    staff_id: str = Field(..., min_length=1)
    pin: str = Field(..., min_length=4)


def scan_result_payload(result: ScanResult) -> dict[str, Any]:
    """camelCase JSON for a ScanResult."""
    payload: dict[str, Any] = {"result": result.result.value}
    if result.scan_type is not None:
        payload["scanType"] = result.scan_type.value
    if result.normalized_raw_scan_text is not None:
        payload["normalizedRawScanText"] = result.normalized_raw_scan_text
    if result.id_scan_hash is not None:
        payload["idScanHash"] = result.id_scan_hash
    if result.customer is not None:
        customer = result.customer
        payload["customer"] = {
            "id": customer.customer_id,
            "name": customer.name,
            "dob": iso(customer.dob),
            "membershipNumber": customer.membership_number,
        }
    if result.candidates:
        payload["candidates"] = [
            {
                "id": c.customer_id,
                "name": c.name,
                "dob": iso(c.dob),
                "membershipNumber": c.membership_number,
                "matchScore": c.score,
            }
            for c in result.candidates
        ]
    if result.extracted is not None:
        extracted = result.extracted
        payload["extracted"] = {
            "firstName": extracted.first_name,
            "lastName": extracted.last_name,
            "fullName": extracted.display_name,
            "dob": iso(extracted.dob),
            "idNumber": extracted.id_number,
            "jurisdiction": extracted.jurisdiction,
        }
    if result.membership_candidate is not None:
        payload["membershipCandidate"] = result.membership_candidate
    if result.match_strategy is not None:
        payload["matchStrategy"] = result.match_strategy.value
    if result.enriched:
        payload["enriched"] = True
    if result.id_scan_issue is not None:
        payload["idScanIssue"] = result.id_scan_issue.value
    if result.error_code is not None:
        payload["error"] = {"code": result.error_code, "message": result.error_message}
    return payload
