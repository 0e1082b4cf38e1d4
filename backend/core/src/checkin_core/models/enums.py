"""Enumeration types for check-in data models."""

from enum import Enum


class LaneSessionStatus(str, Enum):
    """Status of a lane session."""

    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    AWAITING_CUSTOMER = "AWAITING_CUSTOMER"
    AWAITING_ASSIGNMENT = "AWAITING_ASSIGNMENT"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    AWAITING_SIGNATURE = "AWAITING_SIGNATURE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_SESSION_STATUSES = frozenset(
    {LaneSessionStatus.COMPLETED, LaneSessionStatus.CANCELLED}
)

# Statuses a lane session can hold a soft reservation in
NON_TERMINAL_SESSION_STATUSES = frozenset(
    {
        LaneSessionStatus.ACTIVE,
        LaneSessionStatus.AWAITING_CUSTOMER,
        LaneSessionStatus.AWAITING_ASSIGNMENT,
        LaneSessionStatus.AWAITING_PAYMENT,
        LaneSessionStatus.AWAITING_SIGNATURE,
    }
)

# Statuses in which `start` may take over the lane's existing session
REUSABLE_SESSION_STATUSES = frozenset(
    {
        LaneSessionStatus.IDLE,
        LaneSessionStatus.ACTIVE,
        LaneSessionStatus.AWAITING_CUSTOMER,
    }
)


class RentalType(str, Enum):
    """Rental tier offered at check-in."""

    LOCKER = "LOCKER"
    GYM_LOCKER = "GYM_LOCKER"
    STANDARD = "STANDARD"
    DOUBLE = "DOUBLE"
    SPECIAL = "SPECIAL"

    @property
    def is_locker(self) -> bool:
        return self in (RentalType.LOCKER, RentalType.GYM_LOCKER)


ROOM_TIERS = (RentalType.STANDARD, RentalType.DOUBLE, RentalType.SPECIAL)


class ResourceType(str, Enum):
    """Kind of physical resource held by a session."""

    ROOM = "room"
    LOCKER = "locker"


class ResourceStatus(str, Enum):
    """Housekeeping status of a room or locker."""

    CLEAN = "CLEAN"
    OCCUPIED = "OCCUPIED"
    CLEANING = "CLEANING"
    DIRTY = "DIRTY"


class Actor(str, Enum):
    """Party performing a selection action."""

    CUSTOMER = "CUSTOMER"
    EMPLOYEE = "EMPLOYEE"


class CheckinMode(str, Enum):
    """Whether a session opens a new visit or extends an open one."""

    INITIAL = "INITIAL"
    RENEWAL = "RENEWAL"


class BlockType(str, Enum):
    """Type of check-in block within a visit."""

    INITIAL = "INITIAL"
    RENEWAL = "RENEWAL"
    FINAL2H = "FINAL2H"


class PaymentIntentStatus(str, Enum):
    """Lifecycle of a payment intent."""

    DUE = "DUE"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    """Tender recorded when marking an intent paid."""

    CASH = "CASH"
    CREDIT = "CREDIT"


class WaitlistStatus(str, Enum):
    """Status of a waitlist entry."""

    ACTIVE = "ACTIVE"
    OFFERED = "OFFERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class ScanResultType(str, Enum):
    """Outcome of resolving a scan."""

    MATCHED = "MATCHED"
    NO_MATCH = "NO_MATCH"
    MULTIPLE_MATCHES = "MULTIPLE_MATCHES"
    ERROR = "ERROR"


class ScanType(str, Enum):
    """Classification of raw scan text."""

    STATE_ID = "STATE_ID"
    MEMBERSHIP = "MEMBERSHIP"


class MatchStrategy(str, Enum):
    """Which identity pipeline step produced a match."""

    HASH = "HASH"
    EXACT_NAME_DOB = "EXACT_NAME_DOB"
    FUZZY_NAME_DOB = "FUZZY_NAME_DOB"
    MEMBERSHIP = "MEMBERSHIP"
    SELECTED = "SELECTED"


class IdScanIssue(str, Enum):
    """Advisory problems detected on a scanned ID."""

    UNDERAGE = "UNDERAGE"
    ID_EXPIRED = "ID_EXPIRED"


class StaffRole(str, Enum):
    """Staff permission level."""

    STAFF = "STAFF"
    ADMIN = "ADMIN"


class SignatureMethod(str, Enum):
    """How the agreement was signed."""

    DIGITAL = "DIGITAL"
    MANUAL = "MANUAL"


class MembershipCardType(str, Enum):
    """Membership card held by a customer."""

    NONE = "NONE"
    SIX_MONTH = "SIX_MONTH"


class MembershipPurchaseIntent(str, Enum):
    """Customer's intent to buy or renew a six-month membership."""

    PURCHASE = "PURCHASE"
    RENEW = "RENEW"


class MembershipChoice(str, Enum):
    """Membership option chosen on the kiosk."""

    ONE_TIME = "ONE_TIME"
    SIX_MONTH = "SIX_MONTH"


class Language(str, Enum):
    """Customer primary language."""

    EN = "EN"
    ES = "ES"


class EventType(str, Enum):
    """Events published on the lane event bus."""

    SESSION_UPDATED = "SESSION_UPDATED"
    SELECTION_PROPOSED = "SELECTION_PROPOSED"
    SELECTION_LOCKED = "SELECTION_LOCKED"
    SELECTION_FORCED = "SELECTION_FORCED"
    SELECTION_ACKNOWLEDGED = "SELECTION_ACKNOWLEDGED"
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    ASSIGNMENT_FAILED = "ASSIGNMENT_FAILED"
    CUSTOMER_CONFIRMATION_REQUIRED = "CUSTOMER_CONFIRMATION_REQUIRED"
    CUSTOMER_CONFIRMED = "CUSTOMER_CONFIRMED"
    CUSTOMER_DECLINED = "CUSTOMER_DECLINED"
    WAITLIST_UPDATED = "WAITLIST_UPDATED"
    INVENTORY_UPDATED = "INVENTORY_UPDATED"
