"""FastAPI dependency injection providers for check-in services.

Stateless collaborators (store, resolver, reservation engine, staff auth) are
cached with @lru_cache. Services that publish take the event bus through
Depends, so tests can swap the bus with `app.dependency_overrides`.

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── CheckinStore
        │       ├── IdentityResolver
        │       ├── ReservationEngine
        │       ├── WaitlistService
        │       └── (+ EventBus) LaneSession/Selection/Assignment/
        │                        Payment/Completion services
        └── StaffService

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from fastapi import Depends

from checkin_core.services.assignment import AssignmentService
from checkin_core.services.completion import CompletionService
from checkin_core.services.dynamodb import get_dynamodb_service
from checkin_core.services.events import EventBus
from checkin_core.services.identity import IdentityResolver
from checkin_core.services.lane_sessions import LaneSessionService
from checkin_core.services.payment_service import PaymentService
from checkin_core.services.reservation import ReservationEngine
from checkin_core.services.selection import SelectionService
from checkin_core.services.staff import StaffService
from checkin_core.services.store import CheckinStore
from checkin_core.services.waitlist import WaitlistService


@lru_cache
def get_event_bus() -> EventBus:
    """Process-wide event bus; started and stopped by the app lifespan."""
    return EventBus()


@lru_cache
def get_checkin_store() -> CheckinStore:
    return CheckinStore(db=get_dynamodb_service())


@lru_cache
def get_staff_service() -> StaffService:
    return StaffService(db=get_dynamodb_service())


@lru_cache
def get_identity_resolver() -> IdentityResolver:
    return IdentityResolver(get_checkin_store())


@lru_cache
def get_reservation_engine() -> ReservationEngine:
    return ReservationEngine(get_checkin_store())


@lru_cache
def get_waitlist_service() -> WaitlistService:
    return WaitlistService(get_checkin_store())


def get_lane_session_service(bus: EventBus = Depends(get_event_bus)) -> LaneSessionService:
    return LaneSessionService(
        get_checkin_store(),
        bus,
        identity=get_identity_resolver(),
        staff=get_staff_service(),
    )


def get_selection_service(bus: EventBus = Depends(get_event_bus)) -> SelectionService:
    return SelectionService(get_checkin_store(), bus)


def get_assignment_service(bus: EventBus = Depends(get_event_bus)) -> AssignmentService:
    return AssignmentService(get_checkin_store(), bus, get_reservation_engine())


def get_payment_service(bus: EventBus = Depends(get_event_bus)) -> PaymentService:
    return PaymentService(get_checkin_store(), bus)


def get_completion_service(bus: EventBus = Depends(get_event_bus)) -> CompletionService:
    return CompletionService(get_checkin_store(), bus, get_reservation_engine())


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB singleton.
    """
    from checkin_core.services.dynamodb import reset_dynamodb_service

    get_event_bus.cache_clear()
    get_checkin_store.cache_clear()
    get_staff_service.cache_clear()
    get_identity_resolver.cache_clear()
    get_reservation_engine.cache_clear()
    get_waitlist_service.cache_clear()

    reset_dynamodb_service()
