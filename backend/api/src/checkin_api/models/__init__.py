"""API request/response models."""

from .checkin import (
    AcknowledgeSelectionRequest,
    AssignRequest,
    CheckinScanRequest,
    ConfirmSelectionRequest,
    CustomerConfirmRequest,
    MarkPaidRequest,
    MembershipChoiceRequest,
    MembershipPurchaseIntentRequest,
    PastDueBypassRequest,
    ProposeSelectionRequest,
    ScanIdRequest,
    SessionScopedRequest,
    SetLanguageRequest,
    SignAgreementRequest,
    StaffSignInRequest,
    StartLaneSessionRequest,
    scan_result_payload,
)
from .common import CamelModel, ValidationErrorResponse

__all__ = [
    "AcknowledgeSelectionRequest",
    "AssignRequest",
    "CamelModel",
    "CheckinScanRequest",
    "ConfirmSelectionRequest",
    "CustomerConfirmRequest",
    "MarkPaidRequest",
    "MembershipChoiceRequest",
    "MembershipPurchaseIntentRequest",
    "PastDueBypassRequest",
    "ProposeSelectionRequest",
    "ScanIdRequest",
    "SessionScopedRequest",
    "SetLanguageRequest",
    "SignAgreementRequest",
    "StaffSignInRequest",
    "StartLaneSessionRequest",
    "ValidationErrorResponse",
    "scan_result_payload",
]
