"""Check-in services: persistence, lane workflow and completion."""

from .assignment import AssignmentService
from .completion import CompletionService
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .events import EventBus, LaneEvent
from .identity import IdentityResolver, ScanResult
from .lane_sessions import LaneSessionService
from .payment_service import PaymentService
from .reservation import ReservationEngine
from .selection import SelectionService
from .snapshot import SessionSnapshotBuilder
from .staff import StaffService
from .store import CheckinStore
from .waitlist import WaitlistService

__all__ = [
    "AssignmentService",
    "CheckinStore",
    "CompletionService",
    "DynamoDBService",
    "EventBus",
    "IdentityResolver",
    "LaneEvent",
    "LaneSessionService",
    "PaymentService",
    "ReservationEngine",
    "ScanResult",
    "SelectionService",
    "SessionSnapshotBuilder",
    "StaffService",
    "WaitlistService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
]
