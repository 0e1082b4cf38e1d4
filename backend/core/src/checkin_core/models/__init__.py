"""Domain models for the lane check-in core."""

from .customer import Customer, customer_to_item, item_to_customer
from .enums import (
    Actor,
    BlockType,
    CheckinMode,
    EventType,
    IdScanIssue,
    Language,
    LaneSessionStatus,
    MatchStrategy,
    MembershipCardType,
    MembershipChoice,
    MembershipPurchaseIntent,
    PaymentIntentStatus,
    PaymentMethod,
    RentalType,
    ResourceStatus,
    ResourceType,
    ScanResultType,
    ScanType,
    SignatureMethod,
    StaffRole,
    WaitlistStatus,
)
from .errors import (
    AuthError,
    CheckinError,
    ConflictError,
    ErrorCode,
    ErrorResponse,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from .inventory import Resource, item_to_resource, resource_key
from .lane_session import LaneSession, item_to_lane_session, lane_session_to_item
from .payment import PaymentIntent, item_to_payment_intent, payment_intent_to_item
from .staff import Staff, StaffSession, item_to_staff, item_to_staff_session
from .visit import (
    CheckinBlock,
    Visit,
    WaitlistEntry,
    item_to_block,
    item_to_visit,
    item_to_waitlist_entry,
    block_to_item,
    visit_to_item,
    waitlist_entry_to_item,
)

__all__ = [
    # Enums
    "Actor",
    "BlockType",
    "CheckinMode",
    "EventType",
    "IdScanIssue",
    "Language",
    "LaneSessionStatus",
    "MatchStrategy",
    "MembershipCardType",
    "MembershipChoice",
    "MembershipPurchaseIntent",
    "PaymentIntentStatus",
    "PaymentMethod",
    "RentalType",
    "ResourceStatus",
    "ResourceType",
    "ScanResultType",
    "ScanType",
    "SignatureMethod",
    "StaffRole",
    "WaitlistStatus",
    # Errors
    "AuthError",
    "CheckinError",
    "ConflictError",
    "ErrorCode",
    "ErrorResponse",
    "InvariantViolation",
    "NotFoundError",
    "ValidationError",
    # Entities
    "CheckinBlock",
    "Customer",
    "LaneSession",
    "PaymentIntent",
    "Resource",
    "Staff",
    "StaffSession",
    "Visit",
    "WaitlistEntry",
    # Mapping
    "block_to_item",
    "customer_to_item",
    "item_to_block",
    "item_to_customer",
    "item_to_lane_session",
    "item_to_payment_intent",
    "item_to_resource",
    "item_to_staff",
    "item_to_staff_session",
    "item_to_visit",
    "item_to_waitlist_entry",
    "lane_session_to_item",
    "payment_intent_to_item",
    "resource_key",
    "visit_to_item",
    "waitlist_entry_to_item",
]
