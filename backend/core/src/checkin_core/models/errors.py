"""Error codes and domain exceptions for the check-in core.

Every failure a check-in operation can report is one of a closed set of
exception variants. Each variant carries its HTTP status and a machine
readable ErrorCode, and is translated to a JSON response only at the API
boundary (see checkin_api.exceptions).
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Machine-readable error codes returned to lane clients."""

    # Validation (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_STATE = "INVALID_STATE"
    INVALID_SELECTION = "INVALID_SELECTION"
    SELECTION_LOCKED = "SELECTION_LOCKED"
    SELECTION_NOT_LOCKED = "SELECTION_NOT_LOCKED"
    NO_PROPOSAL = "NO_PROPOSAL"
    PAYMENT_NOT_PAID = "PAYMENT_NOT_PAID"
    CUSTOMER_CONFIRMATION_PENDING = "CUSTOMER_CONFIRMATION_PENDING"
    RESOURCE_NOT_CLEAN = "RESOURCE_NOT_CLEAN"
    RENEWAL_NOT_ALLOWED = "RENEWAL_NOT_ALLOWED"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    AGREEMENT_FAILED = "AGREEMENT_FAILED"

    # Not found / stale state (404)
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"
    VISIT_NOT_FOUND = "VISIT_NOT_FOUND"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    PAYMENT_INTENT_NOT_FOUND = "PAYMENT_INTENT_NOT_FOUND"
    STAFF_NOT_FOUND = "STAFF_NOT_FOUND"

    # Conflict (409)
    RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"
    NO_RESOURCE_AVAILABLE = "NO_RESOURCE_AVAILABLE"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    LANE_BUSY = "LANE_BUSY"
    SESSION_CHANGED = "SESSION_CHANGED"

    # Authorization (401/403)
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    FORBIDDEN = "FORBIDDEN"
    BANNED = "BANNED"
    PAST_DUE_BLOCKED = "PAST_DUE_BLOCKED"
    UNDERAGE = "UNDERAGE"
    ID_EXPIRED = "ID_EXPIRED"

    # Fatal (500)
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


# Default human-readable messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_REQUEST: "The request is invalid",
    ErrorCode.INVALID_STATE: "The lane session is not in a state that allows this action",
    ErrorCode.INVALID_SELECTION: "The selected customer does not match the scanned identity",
    ErrorCode.SELECTION_LOCKED: "The rental selection is already locked",
    ErrorCode.SELECTION_NOT_LOCKED: "The rental selection must be confirmed first",
    ErrorCode.NO_PROPOSAL: "No rental selection has been proposed",
    ErrorCode.PAYMENT_NOT_PAID: "Payment must be completed first",
    ErrorCode.CUSTOMER_CONFIRMATION_PENDING: "The customer must accept or decline the room",
    ErrorCode.RESOURCE_NOT_CLEAN: "The selected resource is not clean",
    ErrorCode.RENEWAL_NOT_ALLOWED: "The visit cannot be renewed",
    ErrorCode.SIGNATURE_INVALID: "A valid signature is required",
    ErrorCode.AGREEMENT_FAILED: "The agreement document could not be generated",
    ErrorCode.NO_ACTIVE_SESSION: "No active session found",
    ErrorCode.CUSTOMER_NOT_FOUND: "Customer not found",
    ErrorCode.VISIT_NOT_FOUND: "Visit not found",
    ErrorCode.RESOURCE_NOT_FOUND: "Resource not found",
    ErrorCode.PAYMENT_INTENT_NOT_FOUND: "Payment intent not found",
    ErrorCode.STAFF_NOT_FOUND: "Staff member not found",
    ErrorCode.RESOURCE_UNAVAILABLE: "The resource is assigned or reserved by another session",
    ErrorCode.NO_RESOURCE_AVAILABLE: "No resource of the requested type is available",
    ErrorCode.ALREADY_CHECKED_IN: "Customer is currently checked in",
    ErrorCode.LANE_BUSY: "The lane already has a check-in in progress",
    ErrorCode.SESSION_CHANGED: "The lane session changed concurrently; refresh and retry",
    ErrorCode.AUTH_REQUIRED: "Authentication required to perform this action",
    ErrorCode.INVALID_CREDENTIALS: "Invalid credentials",
    ErrorCode.FORBIDDEN: "Not permitted to perform this action",
    ErrorCode.BANNED: "Customer is banned",
    ErrorCode.PAST_DUE_BLOCKED: "Customer has a past-due balance",
    ErrorCode.UNDERAGE: "Customer is under the minimum age",
    ErrorCode.ID_EXPIRED: "The scanned ID is expired",
    ErrorCode.INVARIANT_VIOLATION: "Check-in invariant violated",
}


class ErrorResponse(BaseModel):
    """Standard JSON error envelope returned by every endpoint."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: str
    message: str
    details: Optional[dict[str, Any]] = None


class CheckinError(Exception):
    """Base class for all domain errors raised by check-in operations."""

    status_code: int = 400

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message or ERROR_MESSAGES[code]
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert this exception to the JSON error envelope."""
        return ErrorResponse(
            error_code=self.code.value,
            message=self.message,
            details=self.details,
        )


class ValidationError(CheckinError):
    """Malformed input or a business rule violation (400)."""

    status_code = 400


class NotFoundError(CheckinError):
    """No session/resource in the expected state (404)."""

    status_code = 404


class ConflictError(CheckinError):
    """Concurrent contention on a shared resource (409)."""

    status_code = 409


class AuthError(CheckinError):
    """Authentication (401) or authorization (403) failure."""

    status_code = 403

    def __init__(
        self,
        code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        status_code: int | None = None,
    ):
        super().__init__(code, message, details)
        if status_code is not None:
            self.status_code = status_code
        elif code in (ErrorCode.AUTH_REQUIRED, ErrorCode.INVALID_CREDENTIALS):
            self.status_code = 401


class InvariantViolation(CheckinError):
    """Post-condition failure inside the reservation pipeline (500).

    Carries full diagnostic context; never expected in correct operation.
    """

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any]):
        super().__init__(ErrorCode.INVARIANT_VIOLATION, message, details)
