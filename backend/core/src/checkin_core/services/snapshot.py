"""Full lane session snapshot.

The SESSION_UPDATED payload is the source of truth clients resync from;
it is rebuilt from storage after every mutation rather than patched.
"""

import os
from typing import TYPE_CHECKING, Any

from checkin_core.models import CheckinMode, EventType, LaneSession, RentalType
from checkin_core.models.items import iso
from checkin_core.utils.logging import get_logger

if TYPE_CHECKING:
    from .events import EventBus
    from .store import CheckinStore

logger = get_logger(__name__)

BASE_RENTALS = [RentalType.LOCKER, RentalType.STANDARD, RentalType.DOUBLE, RentalType.SPECIAL]


def gym_locker_eligible(membership_number: str | None) -> bool:
    """Membership number inside one of GYM_LOCKER_ELIGIBLE_RANGES ("100-199,500-599")."""
    if not membership_number:
        return False
    ranges = os.getenv("GYM_LOCKER_ELIGIBLE_RANGES", "").strip()
    if not ranges:
        return False
    try:
        number = int(membership_number)
    except ValueError:
        return False
    for part in ranges.split(","):
        start, _, end = part.strip().partition("-")
        try:
            if int(start) <= number <= int(end or start):
                return True
        except ValueError:
            continue
    return False


def allowed_rentals(membership_number: str | None) -> list[str]:
    rentals = [r.value for r in BASE_RENTALS]
    if gym_locker_eligible(membership_number):
        rentals.append(RentalType.GYM_LOCKER.value)
    return rentals


def mode_label(mode: CheckinMode) -> str:
    """Client-facing mode name."""
    return "RENEWAL" if mode == CheckinMode.RENEWAL else "CHECKIN"


def _value(enum_value: Any) -> Any:
    return enum_value.value if enum_value is not None else None


class SessionSnapshotBuilder:
    """Builds the SESSION_UPDATED payload for a lane session."""

    def __init__(self, store: "CheckinStore") -> None:
        self.store = store

    def build(self, session: LaneSession) -> dict[str, Any]:
        customer = self.store.get_customer(session.customer_id) if session.customer_id else None
        membership_number = (customer.membership_number if customer else None) or (
            session.membership_number
        )
        past_due_balance = customer.past_due_balance if customer else 0

        assigned_number = None
        if session.assigned_resource_id and session.assigned_resource_type:
            resource = self.store.get_resource(
                session.assigned_resource_type, session.assigned_resource_id
            )
            assigned_number = resource.number if resource else None

        intent = None
        if session.payment_intent_id:
            intent = self.store.get_payment_intent(session.payment_intent_id)
        if intent is None:
            intents = self.store.payment_intents_for_session(session.session_id)
            intent = intents[0] if intents else None

        quote = session.price_quote or (intent.quote if intent else None) or {}
        blocks = self.store.blocks_for_session(session.session_id)
        block = blocks[0] if blocks else None

        active_visit_id = None
        active_block_ends_at = None
        if block is None and customer is not None:
            visit = self.store.open_visit_for_customer(customer.customer_id)
            if visit is not None:
                active_visit_id = visit.visit_id
                visit_blocks = self.store.blocks_for_visit(visit.visit_id)
                if visit_blocks:
                    active_block_ends_at = iso(visit_blocks[0].ends_at)

        return {
            "sessionId": session.session_id,
            "laneId": session.lane_id,
            "status": session.status.value,
            "customerId": session.customer_id,
            "customerName": (customer.name if customer else None)
            or session.customer_display_name
            or "",
            "membershipNumber": membership_number,
            "customerMembershipValidUntil": iso(customer.membership_valid_until)
            if customer
            else None,
            "customerPrimaryLanguage": _value(customer.primary_language) if customer else None,
            "customerDobMonthDay": customer.dob.strftime("%m/%d")
            if customer and customer.dob
            else None,
            "customerNotes": customer.notes if customer else None,
            "customerHasEncryptedLookupMarker": bool(customer and customer.id_scan_hash),
            "allowedRentals": allowed_rentals(membership_number),
            "mode": mode_label(session.checkin_mode),
            "renewalHours": session.renewal_hours,
            "proposedRentalType": _value(session.proposed_rental_type),
            "proposedBy": _value(session.proposed_by),
            "desiredRentalType": _value(session.desired_rental_type),
            "selectionConfirmed": session.selection_confirmed,
            "selectionConfirmedBy": _value(session.selection_confirmed_by),
            "selectionLockedAt": iso(session.selection_locked_at),
            "selectionAcknowledgedAt": iso(session.selection_acknowledged_at),
            "waitlistDesiredType": _value(session.waitlist_desired_type),
            "backupRentalType": _value(session.backup_rental_type),
            "assignedResourceType": _value(session.assigned_resource_type),
            "assignedResourceNumber": assigned_number,
            "needsCustomerConfirmation": session.needs_customer_confirmation,
            "pastDueBalance": past_due_balance,
            "pastDueBlocked": past_due_balance > 0 and not session.past_due_bypassed,
            "pastDueBypassed": session.past_due_bypassed,
            "membershipPurchaseIntent": _value(session.membership_purchase_intent),
            "membershipChoice": _value(session.membership_choice),
            "kioskAcknowledgedAt": iso(session.kiosk_acknowledged_at),
            "paymentIntentId": intent.payment_intent_id if intent else None,
            "paymentStatus": _value(intent.status) if intent else None,
            "paymentMethod": _value(intent.payment_method) if intent else None,
            "paymentTotal": intent.amount if intent else None,
            "paymentLineItems": quote.get("lineItems"),
            "agreementSigned": bool(block and block.agreement_signed),
            "agreementSignedMethod": _value(session.agreement_signed_method),
            "visitId": block.visit_id if block else (session.visit_id or active_visit_id),
            "blockEndsAt": iso(block.ends_at) if block else active_block_ends_at,
            "checkoutAt": iso(block.ends_at) if block else None,
            "updatedAt": iso(session.updated_at),
        }

    def publish(self, bus: "EventBus", session_id: str) -> None:
        """Rebuild and broadcast SESSION_UPDATED for a session."""
        session = self.store.get_session(session_id)
        if session is None:
            logger.warning("Cannot broadcast unknown session %s", session_id)
            return
        bus.publish(EventType.SESSION_UPDATED, self.build(session), session.lane_id)
