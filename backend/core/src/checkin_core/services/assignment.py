"""Soft assignment of a room or locker to a lane session."""

import datetime as dt
from typing import TYPE_CHECKING, Any

from checkin_core.models import (
    ConflictError,
    ErrorCode,
    EventType,
    LaneSessionStatus,
    NotFoundError,
    RentalType,
    ResourceType,
    ValidationError,
)
from checkin_core.models.items import utcnow
from checkin_core.utils.logging import get_logger, log_checkin_operation

from .base import LaneService
from .reservation import ReservationEngine

if TYPE_CHECKING:
    from .events import EventBus
    from .store import CheckinStore

logger = get_logger(__name__)

ASSIGNABLE_STATUSES = frozenset(
    {
        LaneSessionStatus.ACTIVE,
        LaneSessionStatus.AWAITING_ASSIGNMENT,
        LaneSessionStatus.AWAITING_PAYMENT,
        LaneSessionStatus.AWAITING_SIGNATURE,
    }
)


class AssignmentService(LaneService):
    """Register-driven resource assignment and the customer's cross-tier answer."""

    def __init__(
        self,
        store: "CheckinStore",
        bus: "EventBus",
        reservations: ReservationEngine | None = None,
    ) -> None:
        super().__init__(store, bus)
        self.reservations = reservations or ReservationEngine(store)

    def assign(
        self,
        lane_id: str,
        resource_type: ResourceType,
        resource_id: str,
        staff_id: str | None,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        """Soft-reserve a specific room or locker for the lane's session.

        A room of a different tier than requested needs an explicit customer
        confirmation round-trip before it is final.

        Raises:
            NotFoundError: No live session, unknown resource
            ValidationError: Session status does not allow assignment, or not CLEAN
            ConflictError: Resource assigned or held by another session
        """
        now = now or utcnow()
        session = self.store.get_live_session(lane_id)
        if session is None:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)
        if session.status not in ASSIGNABLE_STATUSES:
            raise ValidationError(
                ErrorCode.INVALID_STATE,
                f"Cannot assign a resource while the session is {session.status.value}",
            )

        try:
            reservation = self.reservations.reserve(session, resource_type, resource_id, now)
        except ConflictError as exc:
            log_checkin_operation(
                logger,
                "assign",
                lane_id=lane_id,
                session_id=session.session_id,
                resource_id=resource_id,
                error=exc.message,
            )
            self.publish(
                EventType.ASSIGNMENT_FAILED,
                {
                    "sessionId": session.session_id,
                    "reason": exc.message,
                    "requestedRoomId": resource_id
                    if resource_type == ResourceType.ROOM
                    else None,
                    "requestedLockerId": resource_id
                    if resource_type == ResourceType.LOCKER
                    else None,
                    "raceLost": True,
                },
                lane_id,
            )
            raise

        resource = reservation.resource
        self.store.write_audit(
            "ASSIGN",
            staff_id,
            session.session_id,
            {
                "resourceType": resource_type.value,
                "resourceId": resource_id,
                "resourceNumber": resource.number,
            },
        )

        tier = resource.tier if resource_type == ResourceType.ROOM else RentalType.LOCKER
        assignment: dict[str, Any] = {"sessionId": session.session_id, "rentalType": tier.value}
        if resource_type == ResourceType.ROOM:
            assignment.update(roomId=resource_id, roomNumber=resource.number)
        else:
            assignment.update(lockerId=resource_id, lockerNumber=resource.number)
        self.publish(EventType.ASSIGNMENT_CREATED, assignment, lane_id)

        if reservation.needs_confirmation and reservation.requested_type is not None:
            self.publish(
                EventType.CUSTOMER_CONFIRMATION_REQUIRED,
                {
                    "sessionId": session.session_id,
                    "requestedType": reservation.requested_type.value,
                    "selectedType": tier.value,
                    "selectedNumber": resource.number,
                },
                lane_id,
            )
        self.broadcast_session(session.session_id)

        result: dict[str, Any] = {
            "success": True,
            "sessionId": session.session_id,
            "resourceType": resource_type.value,
            "resourceId": resource_id,
            "needsConfirmation": reservation.needs_confirmation,
        }
        if resource_type == ResourceType.ROOM:
            result["roomNumber"] = resource.number
        else:
            result["lockerNumber"] = resource.number
        return result

    def customer_confirm(
        self,
        lane_id: str,
        session_id: str,
        confirmed: bool,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        """Customer accepts or declines a cross-tier assignment.

        Decline releases the soft reservation. Events carry the resource
        number and tier, never the raw id.
        """
        now = now or utcnow()
        session = self.store.get_session(session_id)
        if session is None or session.lane_id != lane_id or session.is_terminal:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION, "Session not found")

        if confirmed:
            if not (session.assigned_resource_type and session.assigned_resource_id):
                raise ValidationError(ErrorCode.INVALID_STATE, "No assigned resource to confirm")
            resource = self.store.get_resource(
                session.assigned_resource_type, session.assigned_resource_id
            )
            if resource is None:
                raise NotFoundError(ErrorCode.RESOURCE_NOT_FOUND)
            if session.needs_customer_confirmation:
                self.reservations.acknowledge(session, now)
            self.publish(
                EventType.CUSTOMER_CONFIRMED,
                {
                    "sessionId": session.session_id,
                    "confirmedType": resource.tier.value,
                    "confirmedNumber": resource.number,
                },
                lane_id,
            )
        else:
            self.reservations.release(session, now)
            self.publish(
                EventType.CUSTOMER_DECLINED,
                {
                    "sessionId": session.session_id,
                    "requestedType": session.desired_rental_type.value
                    if session.desired_rental_type
                    else "",
                },
                lane_id,
            )
            self.publish_computed(
                EventType.INVENTORY_UPDATED,
                lambda: {"available": self.reservations.available_counts()},
                lane_id,
            )

        log_checkin_operation(
            logger,
            "customer_confirm",
            lane_id=lane_id,
            session_id=session.session_id,
            resource_id=session.assigned_resource_id,
            confirmed=confirmed,
        )
        self.broadcast_session(session.session_id)
        return {"success": True, "confirmed": confirmed}
