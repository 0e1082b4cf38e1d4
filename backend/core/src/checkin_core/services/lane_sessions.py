"""Lane session lifecycle: start, reuse, reset and kiosk-side updates.

A lane holds at most one non-terminal session. The `lanes` item carries an
`active_session_id` pointer; creating a session writes the session and
claims the pointer in one transaction conditioned on the pointer still
being what was read, so of two racing starts exactly one commits.
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

from checkin_core.models import (
    AuthError,
    CheckinBlock,
    CheckinMode,
    ConflictError,
    Customer,
    ErrorCode,
    Language,
    LaneSession,
    LaneSessionStatus,
    MembershipChoice,
    MembershipPurchaseIntent,
    NotFoundError,
    PaymentIntentStatus,
    ValidationError,
    Visit,
    WaitlistStatus,
    lane_session_to_item,
)
from checkin_core.models.enums import NON_TERMINAL_SESSION_STATUSES, REUSABLE_SESSION_STATUSES
from checkin_core.models.items import iso, new_id, utcnow
from checkin_core.utils.expressions import Condition, Update
from checkin_core.utils.logging import get_logger, log_checkin_operation

from .base import LaneService
from .identity import IdentityResolver, ScanResult
from .payment_service import quote_for_session
from .reservation import ReservationEngine
from .session_resolution import SessionLookup, SessionResolutionStrategy, default_resolution
from .snapshot import allowed_rentals, mode_label
from .staff import StaffService

if TYPE_CHECKING:
    from .events import EventBus
    from .store import CheckinStore

logger = get_logger(__name__)

RENEWAL_HOURS = (2, 6)
DEFAULT_RENEWAL_HOURS = 6
RENEWAL_WINDOW = dt.timedelta(hours=1)
MAX_STAY_HOURS = 14

# Per-customer negotiation state, cleared on reset and on reuse by a new customer
NEGOTIATION_DEFAULTS: dict[str, Any] = {
    "desired_rental_type": None,
    "proposed_rental_type": None,
    "proposed_by": None,
    "waitlist_desired_type": None,
    "backup_rental_type": None,
    "selection_confirmed": False,
    "selection_confirmed_by": None,
    "selection_locked_at": None,
    "selection_acknowledged_at": None,
    "assigned_resource_id": None,
    "assigned_resource_type": None,
    "needs_customer_confirmation": False,
    "payment_intent_id": None,
    "price_quote": None,
    "past_due_bypassed": False,
    "past_due_bypassed_by_staff_id": None,
    "past_due_bypassed_at": None,
    "membership_purchase_intent": None,
    "membership_choice": None,
    "kiosk_acknowledged_at": None,
    "agreement_signed_method": None,
}

CUSTOMER_DEFAULTS: dict[str, Any] = {
    "customer_id": None,
    "customer_display_name": None,
    "membership_number": None,
    "staff_id": None,
    "visit_id": None,
    "renewal_hours": None,
}


def check_renewal_allowed(blocks: list[CheckinBlock], hours: int, now: dt.datetime) -> float:
    """Validate a renewal against the visit's blocks (latest end first).

    Returns the visit's current total hours.

    Raises:
        ValidationError: RENEWAL_NOT_ALLOWED
    """
    if not blocks:
        raise ValidationError(
            ErrorCode.RENEWAL_NOT_ALLOWED, "Cannot determine checkout time for renewal"
        )
    if abs(blocks[0].ends_at - now) > RENEWAL_WINDOW:
        raise ValidationError(
            ErrorCode.RENEWAL_NOT_ALLOWED,
            "Renewal is only available within 1 hour of checkout",
        )
    total_hours = sum(block.hours for block in blocks)
    if total_hours + hours > MAX_STAY_HOURS:
        raise ValidationError(
            ErrorCode.RENEWAL_NOT_ALLOWED,
            f"Renewal would exceed {MAX_STAY_HOURS}-hour maximum. Current total: "
            f"{total_hours:g} hours, renewal would add {hours} hours.",
        )
    return total_hours


class LaneSessionService(LaneService):
    """Starts, reuses and resets lane sessions."""

    def __init__(
        self,
        store: "CheckinStore",
        bus: "EventBus",
        identity: IdentityResolver | None = None,
        staff: StaffService | None = None,
        resolution: SessionResolutionStrategy | None = None,
    ) -> None:
        super().__init__(store, bus)
        self.identity = identity or IdentityResolver(store)
        self.staff = staff or StaffService(store.db)
        self.resolution = resolution or default_resolution()
        self.reservations = ReservationEngine(store)

    # Start

    def start(
        self,
        lane_id: str,
        staff_id: str | None,
        *,
        customer_id: str | None = None,
        id_scan_value: str | None = None,
        membership_scan_value: str | None = None,
        visit_id: str | None = None,
        renewal_hours: int | None = None,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        """Start (or take over) the lane's session for a customer.

        Raises:
            ValidationError: Missing identity, bad renewal parameters
            NotFoundError: Explicit customer or visit not found
            AuthError: Customer banned, or visit belongs to someone else
            ConflictError: ALREADY_CHECKED_IN, or LANE_BUSY
        """
        now = now or utcnow()
        if not customer_id and not id_scan_value:
            raise ValidationError(
                ErrorCode.INVALID_REQUEST, "customerId or idScanValue is required"
            )
        if renewal_hours is not None and not visit_id:
            raise ValidationError(
                ErrorCode.INVALID_REQUEST, "renewalHours requires an explicit visitId"
            )
        if renewal_hours is not None and renewal_hours not in RENEWAL_HOURS:
            raise ValidationError(ErrorCode.INVALID_REQUEST, "renewalHours must be 2 or 6")

        if customer_id:
            customer = self.store.require_customer(customer_id)
            IdentityResolver.check_not_banned(customer, now)
        else:
            customer = self.identity.customer_for_start(
                id_scan_value, membership_scan_value, now
            )

        context: dict[str, Any] = {}
        mode = CheckinMode.INITIAL
        hours: int | None = None
        if visit_id:
            mode = CheckinMode.RENEWAL
            hours = renewal_hours or DEFAULT_RENEWAL_HOURS
            context = self._renewal_context(customer, visit_id, hours, now)
        else:
            visit = self.store.open_visit_for_customer(customer.customer_id)
            if visit is not None:
                raise ConflictError(
                    ErrorCode.ALREADY_CHECKED_IN,
                    details={"activeCheckin": self.active_checkin(visit, now)},
                )

        session = self._claim_lane(lane_id, customer, staff_id, mode, hours, visit_id, now)
        log_checkin_operation(
            logger,
            "start",
            lane_id=lane_id,
            session_id=session.session_id,
            customer_id=customer.customer_id,
            status=session.status.value,
            mode=mode.value,
        )
        self.broadcast_session(session.session_id)

        past_due_balance = customer.past_due_balance
        return {
            "sessionId": session.session_id,
            "laneId": lane_id,
            "status": session.status.value,
            "customerId": customer.customer_id,
            "customerName": customer.name,
            "membershipNumber": customer.membership_number,
            "allowedRentals": allowed_rentals(customer.membership_number),
            "mode": mode_label(mode),
            "renewalHours": hours,
            "pastDueBalance": past_due_balance,
            "pastDueBlocked": past_due_balance > 0 and not session.past_due_bypassed,
            "customerHasEncryptedLookupMarker": bool(customer.id_scan_hash),
            **context,
        }

    def scan_id(
        self,
        lane_id: str,
        staff_id: str | None,
        raw_text: str,
        now: dt.datetime | None = None,
    ) -> tuple[ScanResult, dict[str, Any] | None]:
        """Resolve an ID scan (creating the customer on NO_MATCH) and start.

        MULTIPLE_MATCHES returns (result, None) without starting.
        """
        now = now or utcnow()
        customer, result = self.identity.customer_for_id_scan(raw_text, now)
        if customer is None:
            return result, None
        started = self.start(lane_id, staff_id, customer_id=customer.customer_id, now=now)
        return result, started

    def _renewal_context(
        self, customer: Customer, visit_id: str, hours: int, now: dt.datetime
    ) -> dict[str, Any]:
        visit = self.store.get_visit(visit_id)
        if visit is None:
            raise NotFoundError(ErrorCode.VISIT_NOT_FOUND)
        if visit.customer_id != customer.customer_id:
            raise AuthError(ErrorCode.FORBIDDEN, "Visit does not belong to this customer")
        if not visit.is_open:
            raise ValidationError(ErrorCode.RENEWAL_NOT_ALLOWED, "Visit has already ended")

        blocks = self.store.blocks_for_visit(visit.visit_id)
        total_hours = check_renewal_allowed(blocks, hours, now)
        checkout_at = blocks[0].ends_at
        latest = blocks[0]
        return {
            "visitId": visit.visit_id,
            "blockEndsAt": iso(checkout_at),
            "currentTotalHours": total_hours,
            "activeAssignedResourceType": latest.resource_type.value
            if latest.resource_type
            else None,
            "activeAssignedResourceNumber": latest.resource_number,
            "activeRentalType": latest.rental_type.value,
        }

    def active_checkin(self, visit: Visit, now: dt.datetime) -> dict[str, Any]:
        """Snapshot of an open visit, attached to ALREADY_CHECKED_IN."""
        blocks = self.store.blocks_for_visit(visit.visit_id)
        latest = blocks[0] if blocks else None
        waitlist = [
            entry
            for entry in self.store.waitlist_for_visit(visit.visit_id)
            if entry.status in (WaitlistStatus.ACTIVE, WaitlistStatus.OFFERED)
        ]
        entry = waitlist[0] if waitlist else None
        return {
            "visitId": visit.visit_id,
            "rentalType": latest.rental_type.value if latest else None,
            "assignedResourceType": latest.resource_type.value
            if latest and latest.resource_type
            else None,
            "assignedResourceNumber": latest.resource_number if latest else None,
            "checkinAt": iso(latest.starts_at) if latest else None,
            "checkoutAt": iso(latest.ends_at) if latest else None,
            "overdue": latest.ends_at < now if latest else None,
            "currentTotalHours": sum(block.hours for block in blocks),
            "waitlist": {
                "id": entry.waitlist_id,
                "desiredTier": entry.desired_tier.value,
                "backupTier": entry.backup_tier.value,
                "status": entry.status.value,
            }
            if entry
            else None,
        }

    def _claim_lane(
        self,
        lane_id: str,
        customer: Customer,
        staff_id: str | None,
        mode: CheckinMode,
        renewal_hours: int | None,
        visit_id: str | None,
        now: dt.datetime,
    ) -> LaneSession:
        pointer = self.store.get_lane_pointer(lane_id)
        current = self.store.get_session(pointer) if pointer else None
        if current is not None and not current.is_terminal:
            if current.status not in REUSABLE_SESSION_STATUSES:
                raise ConflictError(
                    ErrorCode.LANE_BUSY,
                    details={"sessionId": current.session_id, "status": current.status.value},
                )
            return self._reuse(current, customer, staff_id, mode, renewal_hours, visit_id, now)

        session = LaneSession(
            session_id=new_id("SES"),
            lane_id=lane_id,
            status=LaneSessionStatus.ACTIVE,
            customer_id=customer.customer_id,
            customer_display_name=customer.name,
            membership_number=customer.membership_number,
            staff_id=staff_id,
            checkin_mode=mode,
            renewal_hours=renewal_hours,
            visit_id=visit_id,
            created_at=now,
            updated_at=now,
        )
        items = [
            self.db.tx_put(
                self.store.SESSIONS_TABLE,
                lane_session_to_item(session),
                **Condition().absent("session_id").kwargs(),
            ),
            self.db.tx_put(
                self.store.LANES_TABLE,
                {
                    "lane_id": lane_id,
                    "active_session_id": session.session_id,
                    "updated_at": iso(now),
                },
                **Condition().absent_or_equals("active_session_id", pointer).kwargs(),
            ),
        ]
        if not self.db.transact_write(items):
            raise ConflictError(ErrorCode.LANE_BUSY)
        return session

    def _reuse(
        self,
        current: LaneSession,
        customer: Customer,
        staff_id: str | None,
        mode: CheckinMode,
        renewal_hours: int | None,
        visit_id: str | None,
        now: dt.datetime,
    ) -> LaneSession:
        values: dict[str, Any] = {
            "status": LaneSessionStatus.ACTIVE,
            "customer_id": customer.customer_id,
            "customer_display_name": customer.name,
            "membership_number": customer.membership_number,
            "staff_id": staff_id,
            "checkin_mode": mode,
            "renewal_hours": renewal_hours,
            "visit_id": visit_id,
            "updated_at": now,
        }
        new_customer = current.customer_id != customer.customer_id
        if new_customer:
            values.update(NEGOTIATION_DEFAULTS)

        items = [
            Update()
            .set_all(values)
            .where_equals("status", current.status)
            .where_absent_or_equals("customer_id", current.customer_id)
            .transact(self.db, self.store.SESSIONS_TABLE, {"session_id": current.session_id})
        ]
        if new_customer:
            release = self.reservations.release_item(current)
            if release is not None:
                items.append(release)
        if not self.db.transact_write(items):
            raise ConflictError(ErrorCode.LANE_BUSY)

        session = self.store.get_session(current.session_id)
        if session is None:
            raise ConflictError(ErrorCode.LANE_BUSY)
        return session

    # Reset

    def reset(self, lane_id: str, staff_id: str | None, now: dt.datetime | None = None) -> bool:
        """Force the lane back to a clean slate. Never fails on repeat calls.

        A lost race against another writer re-reads the lane and tries again
        until no live session is left.

        Returns True when something was reset, False for a no-op.
        """
        now = now or utcnow()
        while True:
            session = self.store.get_live_session(lane_id)
            if session is None:
                return self._clear_completed(lane_id, now)
            if self._reset_live(session, now):
                log_checkin_operation(
                    logger,
                    "reset",
                    lane_id=lane_id,
                    session_id=session.session_id,
                    status=LaneSessionStatus.COMPLETED.value,
                    staff_id=staff_id,
                )
                self.broadcast_session(session.session_id)
                return True
            logger.info("Lane %s changed during reset, retrying", lane_id)

    def _reset_live(self, session: LaneSession, now: dt.datetime) -> bool:
        items = [
            Update()
            .set_all(NEGOTIATION_DEFAULTS)
            .set_all(CUSTOMER_DEFAULTS)
            .set("status", LaneSessionStatus.COMPLETED)
            .set("updated_at", now)
            .where_equals("status", session.status)
            .transact(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id}),
            Update()
            .remove("active_session_id")
            .set("updated_at", now)
            .where_equals("active_session_id", session.session_id)
            .transact(self.db, self.store.LANES_TABLE, {"lane_id": session.lane_id}),
        ]
        release = self.reservations.release_item(session)
        if release is not None:
            items.append(release)
        return self.db.transact_write(items)

    def _clear_completed(self, lane_id: str, now: dt.datetime) -> bool:
        """Clear the customer off the lane's last completed session."""
        session = self.last_completed_session(lane_id)
        if session is None:
            return False
        updated = (
            Update()
            .set_all(CUSTOMER_DEFAULTS)
            .set("kiosk_acknowledged_at", None)
            .set("updated_at", now)
            .where_equals("status", LaneSessionStatus.COMPLETED)
            .apply(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id})
        )
        if updated is not None:
            self.broadcast_session(session.session_id)
        return updated is not None

    def last_completed_session(self, lane_id: str) -> LaneSession | None:
        """Newest COMPLETED session on the lane still showing a customer."""
        sessions = [
            s
            for s in self.store.lane_sessions(lane_id)
            if s.status == LaneSessionStatus.COMPLETED
            and (s.customer_id or s.customer_display_name)
        ]
        return max(sessions, key=lambda s: s.updated_at) if sessions else None

    # Snapshot

    def snapshot(self, lane_id: str) -> dict[str, Any] | None:
        """Live session payload, else the last completed one, else None."""
        session = self.store.get_live_session(lane_id) or self.last_completed_session(lane_id)
        return self.snapshots.build(session) if session else None

    # Kiosk-side updates

    def kiosk_ack(self, lane_id: str, now: dt.datetime | None = None) -> None:
        """Mark that the customer tapped OK on the completion screen.

        Does not end or clear the session.
        """
        now = now or utcnow()
        session = self.store.get_live_session(lane_id) or self.last_completed_session(lane_id)
        if session is None:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION, "No session found")
        Update().set("kiosk_acknowledged_at", now).set("updated_at", now).apply(
            self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id}
        )
        log_checkin_operation(
            logger, "kiosk_ack", lane_id=lane_id, session_id=session.session_id
        )
        self.broadcast_session(session.session_id)

    def resolve_session(self, lookup: SessionLookup) -> LaneSession:
        session = self.resolution.resolve(self.store, lookup)
        if session is None:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)
        return session

    def set_language(
        self, lookup: SessionLookup, language: Language, now: dt.datetime | None = None
    ) -> dict[str, Any]:
        """Store the customer's primary language."""
        now = now or utcnow()
        session = self.resolve_session(lookup)
        customer = self.require_session_customer(session)
        Update().set("primary_language", language).set("updated_at", now).apply(
            self.db, self.store.CUSTOMERS_TABLE, {"customer_id": customer.customer_id}
        )
        self.broadcast_session(session.session_id)
        return {
            "success": True,
            "sessionId": session.session_id,
            "language": language.value,
            "laneId": session.lane_id,
        }

    def set_membership_purchase_intent(
        self,
        lookup: SessionLookup,
        intent: MembershipPurchaseIntent | None,
        now: dt.datetime | None = None,
    ) -> None:
        """Record (or clear) a six-month membership purchase.

        A DUE payment intent on a locked selection is re-quoted in place.
        """
        now = now or utcnow()
        session = self.resolve_session(lookup)
        customer = self.require_session_customer(session)
        session_update = (
            Update()
            .set("membership_purchase_intent", intent)
            .set("updated_at", now)
            .where_in("status", NON_TERMINAL_SESSION_STATUSES)
        )

        items = []
        intent_record = (
            self.store.get_payment_intent(session.payment_intent_id)
            if session.payment_intent_id
            else None
        )
        if (
            session.selection_confirmed
            and intent_record is not None
            and intent_record.status == PaymentIntentStatus.DUE
        ):
            session.membership_purchase_intent = intent
            quote = quote_for_session(session, customer, now).to_dict()
            session_update.set("price_quote", quote)
            items.append(
                Update()
                .set("amount", quote["total"])
                .set("quote", quote)
                .set("updated_at", now)
                .where_equals("status", PaymentIntentStatus.DUE)
                .transact(
                    self.db,
                    self.store.PAYMENT_INTENTS_TABLE,
                    {"payment_intent_id": intent_record.payment_intent_id},
                )
            )
        items.insert(
            0,
            session_update.transact(
                self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id}
            ),
        )
        if not self.db.transact_write(items):
            raise ConflictError(ErrorCode.SESSION_CHANGED)
        self.broadcast_session(session.session_id)

    def set_membership_choice(
        self,
        lookup: SessionLookup,
        choice: MembershipChoice | None,
        now: dt.datetime | None = None,
    ) -> None:
        """Mirror the kiosk's membership step on the session."""
        now = now or utcnow()
        session = self.resolve_session(lookup)
        updated = (
            Update()
            .set("membership_choice", choice)
            .set("updated_at", now)
            .where_in("status", NON_TERMINAL_SESSION_STATUSES)
            .apply(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id})
        )
        if updated is None:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)
        self.broadcast_session(session.session_id)

    # Manager override

    def past_due_bypass(
        self,
        lane_id: str,
        staff_id: str | None,
        manager_id: str,
        manager_pin: str,
        now: dt.datetime | None = None,
    ) -> None:
        """Let a customer with a past-due balance proceed, after an ADMIN PIN."""
        now = now or utcnow()
        session = self.store.require_live_session(lane_id, NON_TERMINAL_SESSION_STATUSES)
        manager = self.staff.verify_manager_pin(manager_id, manager_pin)

        updated = (
            Update()
            .set("past_due_bypassed", True)
            .set("past_due_bypassed_by_staff_id", manager.staff_id)
            .set("past_due_bypassed_at", now)
            .set("updated_at", now)
            .where_in("status", NON_TERMINAL_SESSION_STATUSES)
            .apply(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id})
        )
        if updated is None:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)
        self.store.write_audit(
            "PAST_DUE_BYPASS",
            staff_id,
            session.session_id,
            {"managerId": manager.staff_id, "customerId": session.customer_id},
        )
        log_checkin_operation(
            logger,
            "past_due_bypass",
            lane_id=lane_id,
            session_id=session.session_id,
            customer_id=session.customer_id,
            manager_id=manager.staff_id,
        )
        self.broadcast_session(session.session_id)
