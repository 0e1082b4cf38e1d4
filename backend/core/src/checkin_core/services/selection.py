"""Two-phase rental selection: propose, confirm (lock), acknowledge.

Either party may propose. The first confirmation locks the selection and
freezes the proposal as the desired rental type; later confirmations are
answered with the existing lock instead of an error, since the customer
and the employee can race to confirm.
"""

import datetime as dt
from typing import Any

from checkin_core.models import (
    Actor,
    ConflictError,
    ErrorCode,
    EventType,
    LaneSessionStatus,
    NotFoundError,
    RentalType,
    ValidationError,
)
from checkin_core.models.enums import ROOM_TIERS
from checkin_core.models.items import iso, utcnow
from checkin_core.utils.expressions import Update
from checkin_core.utils.logging import get_logger, log_checkin_operation

from .base import LaneService
from .snapshot import allowed_rentals

logger = get_logger(__name__)

SELECTION_STATUSES = frozenset(
    {LaneSessionStatus.ACTIVE, LaneSessionStatus.AWAITING_ASSIGNMENT}
)


class SelectionService(LaneService):
    """Rental selection negotiation between kiosk and register."""

    def propose(
        self,
        lane_id: str,
        rental_type: RentalType,
        proposed_by: Actor,
        waitlist_desired_type: RentalType | None = None,
        backup_rental_type: RentalType | None = None,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        """Propose a rental type, optionally with a waitlist/backup pair.

        Raises:
            NotFoundError: No session in ACTIVE/AWAITING_ASSIGNMENT
            AuthError: PAST_DUE_BLOCKED for a customer proposal
            ValidationError: Selection already locked, or rental not allowed
        """
        now = now or utcnow()
        session = self.store.require_live_session(lane_id, SELECTION_STATUSES)
        customer = self.require_session_customer(session)
        self.check_past_due(session, customer, proposed_by)
        if session.selection_confirmed:
            raise ValidationError(ErrorCode.SELECTION_LOCKED)

        if rental_type.value not in allowed_rentals(customer.membership_number):
            raise ValidationError(
                ErrorCode.INVALID_REQUEST, f"{rental_type.value} is not available to this customer"
            )
        if waitlist_desired_type is not None:
            if waitlist_desired_type not in ROOM_TIERS:
                raise ValidationError(
                    ErrorCode.INVALID_REQUEST, "waitlistDesiredType must be a room tier"
                )
            backup_rental_type = backup_rental_type or rental_type

        update = (
            Update()
            .set("proposed_rental_type", rental_type)
            .set("proposed_by", proposed_by)
            .set("updated_at", now)
            .where_in("status", SELECTION_STATUSES)
            .where_absent_or_equals("selection_confirmed", False)
        )
        # Omitted waitlist fields keep earlier values
        if waitlist_desired_type is not None:
            update.set("waitlist_desired_type", waitlist_desired_type)
        if backup_rental_type is not None:
            update.set("backup_rental_type", backup_rental_type)

        key = {"session_id": session.session_id}
        if update.apply(self.db, self.store.SESSIONS_TABLE, key) is None:
            current = self.store.get_session(session.session_id)
            if current is not None and current.selection_confirmed:
                raise ValidationError(ErrorCode.SELECTION_LOCKED)
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)

        log_checkin_operation(
            logger,
            "propose_selection",
            lane_id=lane_id,
            session_id=session.session_id,
            customer_id=session.customer_id,
            rental_type=rental_type.value,
            actor=proposed_by.value,
        )
        self.publish(
            EventType.SELECTION_PROPOSED,
            {
                "sessionId": session.session_id,
                "rentalType": rental_type.value,
                "proposedBy": proposed_by.value,
            },
            lane_id,
        )
        self.broadcast_session(session.session_id)
        return {
            "sessionId": session.session_id,
            "proposedRentalType": rental_type.value,
            "proposedBy": proposed_by.value,
        }

    def confirm(
        self, lane_id: str, confirmed_by: Actor, now: dt.datetime | None = None
    ) -> dict[str, Any]:
        """Lock the proposed selection. Idempotent once locked.

        Returns:
            sessionId, rentalType, confirmedBy, plus alreadyConfirmed on repeats
        """
        now = now or utcnow()
        session = self.store.require_live_session(lane_id, SELECTION_STATUSES)
        customer = self.require_session_customer(session)
        self.check_past_due(session, customer, confirmed_by)
        if session.selection_confirmed:
            return self._already_confirmed(session.session_id)
        if session.proposed_rental_type is None:
            raise ValidationError(ErrorCode.NO_PROPOSAL)

        update = (
            Update()
            .set("selection_confirmed", True)
            .set("selection_confirmed_by", confirmed_by)
            .set("selection_locked_at", now)
            .set("desired_rental_type", session.proposed_rental_type)
            .set("status", LaneSessionStatus.AWAITING_ASSIGNMENT)
            .set("updated_at", now)
            .where_in("status", SELECTION_STATUSES)
            .where_absent_or_equals("selection_confirmed", False)
            .where_equals("proposed_rental_type", session.proposed_rental_type)
        )
        key = {"session_id": session.session_id}
        if update.apply(self.db, self.store.SESSIONS_TABLE, key) is None:
            current = self.store.get_session(session.session_id)
            if current is not None and current.selection_confirmed:
                return self._already_confirmed(session.session_id)
            raise ConflictError(
                ErrorCode.SESSION_CHANGED, "The proposal changed; review it and confirm again"
            )

        rental_type = session.proposed_rental_type.value
        log_checkin_operation(
            logger,
            "confirm_selection",
            lane_id=lane_id,
            session_id=session.session_id,
            customer_id=session.customer_id,
            status=LaneSessionStatus.AWAITING_ASSIGNMENT.value,
            rental_type=rental_type,
            actor=confirmed_by.value,
        )
        self.publish(
            EventType.SELECTION_LOCKED,
            {
                "sessionId": session.session_id,
                "rentalType": rental_type,
                "confirmedBy": confirmed_by.value,
                "lockedAt": iso(now),
            },
            lane_id,
        )
        if confirmed_by == Actor.EMPLOYEE:
            self.publish(
                EventType.SELECTION_FORCED,
                {
                    "sessionId": session.session_id,
                    "rentalType": rental_type,
                    "forcedBy": Actor.EMPLOYEE.value,
                },
                lane_id,
            )
        self.broadcast_session(session.session_id)
        return {
            "sessionId": session.session_id,
            "rentalType": rental_type,
            "confirmedBy": confirmed_by.value,
        }

    def _already_confirmed(self, session_id: str) -> dict[str, Any]:
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)
        rental_type = session.desired_rental_type or session.proposed_rental_type
        return {
            "sessionId": session.session_id,
            "rentalType": rental_type.value if rental_type else None,
            "confirmedBy": session.selection_confirmed_by.value
            if session.selection_confirmed_by
            else None,
            "alreadyConfirmed": True,
        }

    def acknowledge(
        self, lane_id: str, acknowledged_by: Actor, now: dt.datetime | None = None
    ) -> dict[str, Any]:
        """The other party saw the locked selection."""
        now = now or utcnow()
        session = self.store.require_live_session(lane_id, SELECTION_STATUSES)
        if not session.selection_confirmed:
            raise ValidationError(ErrorCode.SELECTION_NOT_LOCKED, "Selection is not locked yet")

        Update().set("selection_acknowledged_at", now).set("updated_at", now).where_in(
            "status", SELECTION_STATUSES
        ).apply(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id})
        self.publish(
            EventType.SELECTION_ACKNOWLEDGED,
            {"sessionId": session.session_id, "acknowledgedBy": acknowledged_by.value},
            lane_id,
        )
        self.broadcast_session(session.session_id)
        return {"sessionId": session.session_id, "acknowledgedBy": acknowledged_by.value}
