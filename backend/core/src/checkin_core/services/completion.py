"""Check-in completion.

Once the selection is locked and paid, signing the agreement (or a staff
manual override) commits the check-in as one DynamoDB transaction:

    1. the reserved (or first available) resource becomes OCCUPIED and
       assigned to the customer, conditioned on it still being available
    2. a new visit (INITIAL) or the open visit being renewed
    3. the check-in block with its computed start/end
    4. an ACTIVE waitlist entry when a waitlist/backup pair was chosen
    5. the immutable signature record
    6. the lane session COMPLETED and the lane pointer cleared

The agreement PDF is generated first, so a generation failure aborts before
anything is written. After commit the resource is re-read and must be
occupied by the customer and unavailable; anything else is an invariant
violation.
"""

import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from checkin_core.models import (
    BlockType,
    CheckinBlock,
    CheckinMode,
    ConflictError,
    Customer,
    ErrorCode,
    EventType,
    InvariantViolation,
    LaneSession,
    LaneSessionStatus,
    NotFoundError,
    PaymentIntentStatus,
    RentalType,
    Resource,
    ResourceStatus,
    ResourceType,
    SignatureMethod,
    ValidationError,
    Visit,
    WaitlistEntry,
    WaitlistStatus,
    block_to_item,
    resource_key,
    visit_to_item,
    waitlist_entry_to_item,
)
from checkin_core.models.inventory import RESOURCE_TABLES
from checkin_core.models.items import compact, iso, new_id, utcnow
from checkin_core.utils.expressions import Condition, Update
from checkin_core.utils.logging import get_logger, log_checkin_operation

from .agreement import AgreementDocument, decode_signature, generate_agreement_pdf
from .base import LaneService
from .lane_sessions import RENEWAL_HOURS, check_renewal_allowed
from .reservation import ReservationEngine

if TYPE_CHECKING:
    from .events import EventBus
    from .store import CheckinStore

logger = get_logger(__name__)

SIGNABLE_STATUSES = frozenset(
    {LaneSessionStatus.AWAITING_SIGNATURE, LaneSessionStatus.AWAITING_PAYMENT}
)
BLOCK_HOURS = 6
FINAL_BLOCK_HOURS = 2
QUARTER_HOUR = dt.timedelta(minutes=15)


def round_up_to_quarter_hour(moment: dt.datetime) -> dt.datetime:
    """Next quarter-hour boundary at or after `moment`."""
    hour = moment.replace(minute=0, second=0, microsecond=0)
    quarters = -(-(moment - hour) // QUARTER_HOUR)
    return hour + quarters * QUARTER_HOUR


@dataclass
class BlockPlan:
    """Where and when the new check-in block goes."""

    visit: Visit
    new_visit: bool
    block_type: BlockType
    starts_at: dt.datetime
    ends_at: dt.datetime
    rental_type: RentalType
    previous: CheckinBlock | None = None


class CompletionService(LaneService):
    """Agreement signing and the completion transaction."""

    def __init__(
        self,
        store: "CheckinStore",
        bus: "EventBus",
        reservations: ReservationEngine | None = None,
    ) -> None:
        super().__init__(store, bus)
        self.reservations = reservations or ReservationEngine(store)

    def sign_agreement(
        self,
        lane_id: str,
        signature_png_base64: str,
        staff_id: str | None = None,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        """Complete the check-in with the customer's drawn signature.

        Raises:
            NotFoundError: No session awaiting signature
            ValidationError: Not locked, not paid, cross-tier room not yet accepted,
                bad signature, PDF failure
            ConflictError: Reserved resource taken, nothing available
            InvariantViolation: Resource not occupied after commit
        """
        now = now or utcnow()
        session, customer = self._ready_session(lane_id)
        signature = decode_signature(signature_png_base64)
        document = generate_agreement_pdf(
            customer.name,
            customer.membership_number,
            now,
            customer.primary_language,
            signature_png=signature,
        )
        return self._complete(
            session,
            customer,
            document,
            SignatureMethod.DIGITAL,
            signature_png_base64.strip(),
            staff_id,
            now,
        )

    def manual_override(
        self, lane_id: str, staff_id: str, now: dt.datetime | None = None
    ) -> dict[str, Any]:
        """Complete the check-in without a drawn signature (staff only)."""
        now = now or utcnow()
        session, customer = self._ready_session(lane_id)
        document = generate_agreement_pdf(
            customer.name, customer.membership_number, now, customer.primary_language
        )
        return self._complete(
            session, customer, document, SignatureMethod.MANUAL, None, staff_id, now
        )

    # Preconditions

    def _ready_session(self, lane_id: str) -> tuple[LaneSession, Customer]:
        session = self.store.require_live_session(lane_id, SIGNABLE_STATUSES)
        if not session.selection_confirmed:
            raise ValidationError(ErrorCode.SELECTION_NOT_LOCKED)
        if session.needs_customer_confirmation:
            raise ValidationError(ErrorCode.CUSTOMER_CONFIRMATION_PENDING)
        intent = (
            self.store.get_payment_intent(session.payment_intent_id)
            if session.payment_intent_id
            else None
        )
        if intent is None or intent.status != PaymentIntentStatus.PAID:
            raise ValidationError(ErrorCode.PAYMENT_NOT_PAID)
        return session, self.require_session_customer(session)

    def _plan_block(
        self, session: LaneSession, customer: Customer, now: dt.datetime
    ) -> BlockPlan:
        rental_type = session.desired_rental_type or session.backup_rental_type
        if session.checkin_mode != CheckinMode.RENEWAL:
            return BlockPlan(
                visit=Visit(
                    visit_id=new_id("VIS"), customer_id=customer.customer_id, started_at=now
                ),
                new_visit=True,
                block_type=BlockType.INITIAL,
                starts_at=now,
                ends_at=round_up_to_quarter_hour(now + dt.timedelta(hours=BLOCK_HOURS)),
                rental_type=rental_type or RentalType.LOCKER,
            )

        hours = session.renewal_hours
        if hours not in RENEWAL_HOURS:
            raise ValidationError(ErrorCode.INVALID_STATE, "Renewal hours not set for this session")
        visit = (
            self.store.get_visit(session.visit_id)
            if session.visit_id
            else self.store.open_visit_for_customer(customer.customer_id)
        )
        if visit is None or not visit.is_open or visit.customer_id != customer.customer_id:
            raise ValidationError(
                ErrorCode.RENEWAL_NOT_ALLOWED, "No active visit found for renewal"
            )
        blocks = self.store.blocks_for_visit(visit.visit_id)
        check_renewal_allowed(blocks, hours, now)
        latest = blocks[0]
        starts_at = latest.ends_at
        if hours == FINAL_BLOCK_HOURS:
            block_type = BlockType.FINAL2H
            ends_at = starts_at + dt.timedelta(hours=FINAL_BLOCK_HOURS)
        else:
            block_type = BlockType.RENEWAL
            ends_at = round_up_to_quarter_hour(starts_at + dt.timedelta(hours=BLOCK_HOURS))
        return BlockPlan(
            visit=visit,
            new_visit=False,
            block_type=block_type,
            starts_at=starts_at,
            ends_at=ends_at,
            rental_type=rental_type or latest.rental_type,
            previous=latest,
        )

    # Commit

    def _complete(
        self,
        session: LaneSession,
        customer: Customer,
        document: AgreementDocument,
        method: SignatureMethod,
        signature: str | None,
        staff_id: str | None,
        now: dt.datetime,
    ) -> dict[str, Any]:
        plan = self._plan_block(session, customer, now)

        def commit(resource: Resource, kept: bool) -> CheckinBlock | None:
            return self._commit(
                session, customer, plan, resource, kept, document, method, signature, staff_id, now
            )

        block: CheckinBlock | None
        previous = plan.previous
        if session.assigned_resource_id and session.assigned_resource_type:
            resource = self._revalidate_reserved(session)
            block = commit(resource, kept=False)
            if block is None:
                self._raise_commit_failure(session, plan)
        elif previous is not None and previous.resource_type and previous.resource_id:
            # Renewal without a new pick stays in the visit's resource
            kept_resource = self.store.get_resource(previous.resource_type, previous.resource_id)
            if kept_resource is None:
                raise NotFoundError(ErrorCode.RESOURCE_NOT_FOUND)
            if kept_resource.assigned_to_customer_id != customer.customer_id:
                raise ConflictError(
                    ErrorCode.RESOURCE_UNAVAILABLE,
                    f"{kept_resource.resource_type.value.title()} {kept_resource.number} "
                    "is no longer assigned to this customer",
                )
            resource = kept_resource
            block = commit(resource, kept=True)
            if block is None:
                self._ensure_unchanged(session, plan)
                raise ConflictError(ErrorCode.RESOURCE_UNAVAILABLE)
        else:
            resource, block = self._commit_first_available(session, plan, commit)
        if block is None:
            raise ConflictError(ErrorCode.RESOURCE_UNAVAILABLE)

        self.verify_occupied(session, customer, resource.resource_type, resource.resource_id)

        log_checkin_operation(
            logger,
            "complete",
            lane_id=session.lane_id,
            session_id=session.session_id,
            customer_id=customer.customer_id,
            resource_id=resource.resource_id,
            status=LaneSessionStatus.COMPLETED.value,
            block_id=block.block_id,
            block_type=block.block_type.value,
            method=method.value,
        )
        self._publish_completion(session, plan, resource, block)

        return {
            "success": True,
            "sessionId": session.session_id,
            "visitId": plan.visit.visit_id,
            "blockId": block.block_id,
            "blockType": block.block_type.value,
            "rentalType": block.rental_type.value,
            "resourceType": resource.resource_type.value,
            "resourceNumber": resource.number,
            "startsAt": iso(block.starts_at),
            "endsAt": iso(block.ends_at),
            "signatureMethod": method.value,
            "agreementPdfSha256": document.sha256,
        }

    def _commit_first_available(
        self,
        session: LaneSession,
        plan: BlockPlan,
        commit: Callable[[Resource, bool], CheckinBlock | None],
    ) -> tuple[Resource, CheckinBlock]:
        """Claim candidates in selection order, skipping ones taken concurrently."""
        candidates = self.reservations.candidates_for_new_checkin(plan.rental_type, plan.starts_at)
        for candidate in candidates:
            block = commit(candidate, False)
            if block is not None:
                return candidate, block
            self._ensure_unchanged(session, plan)
            logger.info(
                "Candidate %s %s taken concurrently, trying next",
                candidate.resource_type.value,
                candidate.number,
            )
        kind = "lockers" if plan.rental_type.is_locker else "rooms"
        raise ConflictError(ErrorCode.NO_RESOURCE_AVAILABLE, f"No available {kind}")

    def _commit(
        self,
        session: LaneSession,
        customer: Customer,
        plan: BlockPlan,
        resource: Resource,
        kept: bool,
        document: AgreementDocument,
        method: SignatureMethod,
        signature: str | None,
        staff_id: str | None,
        now: dt.datetime,
    ) -> CheckinBlock | None:
        """One TransactWriteItems call. None when any condition failed."""
        table, _ = RESOURCE_TABLES[resource.resource_type]
        key = resource_key(resource.resource_type, resource.resource_id)
        if kept:
            resource_update = (
                Update()
                .set("status", ResourceStatus.OCCUPIED)
                .set("last_status_change", now)
                .where_equals("assigned_to_customer_id", customer.customer_id)
            )
        else:
            resource_update = self.reservations.occupy_update(resource, customer.customer_id, now)
        items = [resource_update.transact(self.db, table, key)]

        visit = plan.visit
        if plan.new_visit:
            items.append(
                self.db.tx_put(
                    self.store.VISITS_TABLE,
                    visit_to_item(visit),
                    **Condition().absent("visit_id").kwargs(),
                )
            )
        else:
            items.append(
                Update()
                .set("updated_at", now)
                .where_absent("ended_at")
                .where_equals("customer_id", customer.customer_id)
                .transact(self.db, self.store.VISITS_TABLE, {"visit_id": visit.visit_id})
            )

        block_id = new_id("BLK")
        entry: WaitlistEntry | None = None
        if session.waitlist_desired_type and session.backup_rental_type:
            entry = WaitlistEntry(
                waitlist_id=new_id("WL"),
                visit_id=visit.visit_id,
                checkin_block_id=block_id,
                desired_tier=session.waitlist_desired_type,
                backup_tier=session.backup_rental_type,
                resource_assigned_initially=resource.resource_id,
                status=WaitlistStatus.ACTIVE,
                created_at=now,
            )

        block = CheckinBlock(
            block_id=block_id,
            visit_id=visit.visit_id,
            session_id=session.session_id,
            block_type=plan.block_type,
            starts_at=plan.starts_at,
            ends_at=plan.ends_at,
            rental_type=plan.rental_type,
            resource_type=resource.resource_type,
            resource_id=resource.resource_id,
            resource_number=resource.number,
            agreement_signed=True,
            agreement_signed_at=now,
            agreement_pdf_sha256=document.sha256,
            signature_method=method,
            waitlist_id=entry.waitlist_id if entry else None,
            created_at=now,
        )
        items.append(
            self.db.tx_put(
                self.store.BLOCKS_TABLE,
                block_to_item(block),
                **Condition().absent("block_id").kwargs(),
            )
        )
        if entry is not None:
            items.append(self.db.tx_put(self.store.WAITLIST_TABLE, waitlist_entry_to_item(entry)))

        items.append(
            self.db.tx_put(
                self.store.SIGNATURES_TABLE,
                compact(
                    {
                        "signature_id": new_id("SIG"),
                        "checkin_block_id": block.block_id,
                        "session_id": session.session_id,
                        "customer_id": customer.customer_id,
                        "customer_name": customer.name,
                        "membership_number": customer.membership_number,
                        "signed_at": iso(now),
                        "signature_method": method.value,
                        "signature_png_base64": signature,
                        "agreement_title": document.title,
                        "agreement_text_snapshot": document.text,
                        "agreement_version": document.version,
                        "agreement_pdf_sha256": document.sha256,
                        "staff_id": staff_id,
                    }
                ),
            )
        )

        items.append(
            Update()
            .set("status", LaneSessionStatus.COMPLETED)
            .set("assigned_resource_id", resource.resource_id)
            .set("assigned_resource_type", resource.resource_type)
            .set("needs_customer_confirmation", False)
            .set("agreement_signed_method", method)
            .set("visit_id", visit.visit_id)
            .set("updated_at", now)
            .where_equals("status", session.status)
            .where_equals("selection_confirmed", True)
            .where_absent_or_equals("needs_customer_confirmation", False)
            .where_equals("payment_intent_id", session.payment_intent_id)
            .where_absent_or_equals("assigned_resource_id", session.assigned_resource_id)
            .transact(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id})
        )
        items.append(
            Update()
            .remove("active_session_id")
            .set("updated_at", now)
            .where_equals("active_session_id", session.session_id)
            .transact(self.db, self.store.LANES_TABLE, {"lane_id": session.lane_id})
        )
        if method == SignatureMethod.MANUAL:
            items.append(
                self.db.tx_put(
                    self.store.AUDIT_TABLE,
                    self.store.audit_item(
                        "MANUAL_SIGNATURE_OVERRIDE",
                        staff_id,
                        session.session_id,
                        {"customerId": customer.customer_id, "blockId": block.block_id},
                    ),
                )
            )

        if not self.db.transact_write(items):
            return None
        return block

    # Failure classification

    def _revalidate_reserved(self, session: LaneSession) -> Resource:
        resource_type = session.assigned_resource_type
        resource_id = session.assigned_resource_id
        if resource_type is None or resource_id is None:
            raise NotFoundError(
                ErrorCode.RESOURCE_NOT_FOUND, "No resource is reserved for this session"
            )
        resource = self.store.get_resource(resource_type, resource_id)
        label = resource_type.value.title()
        if resource is None:
            raise NotFoundError(
                ErrorCode.RESOURCE_NOT_FOUND, f"Selected {resource_type.value} not found"
            )
        if resource.status != ResourceStatus.CLEAN or resource.assigned_to_customer_id:
            raise ConflictError(
                ErrorCode.RESOURCE_UNAVAILABLE,
                f"Selected {label.lower()} {resource.number} is no longer available",
                details={"resourceNumber": resource.number},
            )
        marker = resource.reserved_by_session_id
        if (
            marker
            and marker != session.session_id
            and not self.reservations.stale_markers([resource])
        ):
            raise ConflictError(
                ErrorCode.RESOURCE_UNAVAILABLE,
                f"Selected {label.lower()} {resource.number} is reserved by another lane session",
                details={"resourceNumber": resource.number},
            )
        return resource

    def _ensure_unchanged(self, session: LaneSession, plan: BlockPlan) -> None:
        """Raise when a cancelled commit was caused by the session or visit moving on."""
        current = self.store.get_session(session.session_id)
        if current is None or current.status != session.status:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)
        if (
            current.assigned_resource_id != session.assigned_resource_id
            or current.payment_intent_id != session.payment_intent_id
            or self.store.get_lane_pointer(session.lane_id) != session.session_id
        ):
            raise ConflictError(ErrorCode.SESSION_CHANGED)
        if current.needs_customer_confirmation:
            raise ValidationError(ErrorCode.CUSTOMER_CONFIRMATION_PENDING)
        if not plan.new_visit:
            visit = self.store.get_visit(plan.visit.visit_id)
            if visit is None or not visit.is_open:
                raise ValidationError(
                    ErrorCode.RENEWAL_NOT_ALLOWED, "No active visit found for renewal"
                )

    def _raise_commit_failure(self, session: LaneSession, plan: BlockPlan) -> None:
        self._ensure_unchanged(session, plan)
        # Re-raises the precise 404/409 from a fresh read
        self._revalidate_reserved(session)
        raise ConflictError(ErrorCode.RESOURCE_UNAVAILABLE)

    # Post-condition

    def verify_occupied(
        self,
        session: LaneSession,
        customer: Customer,
        resource_type: ResourceType,
        resource_id: str,
    ) -> None:
        """Re-read the resource: occupied by the customer and not available.

        Raises:
            InvariantViolation: With the ids and the observed resource state
        """
        current = self.store.get_resource(resource_type, resource_id)
        stale = self.reservations.stale_markers([current]) if current else set()
        if (
            current is not None
            and current.status == ResourceStatus.OCCUPIED
            and current.assigned_to_customer_id == customer.customer_id
            and not self.reservations.is_available(current, stale)
        ):
            return
        details = {
            "sessionId": session.session_id,
            "laneId": session.lane_id,
            "customerId": customer.customer_id,
            "resourceType": resource_type.value,
            "resourceId": resource_id,
            "resourceNumber": current.number if current else None,
            "expectedStatus": ResourceStatus.OCCUPIED.value,
            "observedStatus": current.status.value if current else None,
            "observedAssignedToCustomerId": current.assigned_to_customer_id if current else None,
            "observedReservedBySessionId": current.reserved_by_session_id if current else None,
        }
        logger.error("Check-in invariant violated: %s", details)
        raise InvariantViolation(
            "Assigned resource is not persisted as occupied by the checked-in customer",
            details,
        )

    # Events

    def _publish_completion(
        self, session: LaneSession, plan: BlockPlan, resource: Resource, block: CheckinBlock
    ) -> None:
        lane_id = session.lane_id
        assignment: dict[str, Any] = {
            "sessionId": session.session_id,
            "rentalType": block.rental_type.value,
        }
        if resource.resource_type == ResourceType.ROOM:
            assignment.update(roomId=resource.resource_id, roomNumber=resource.number)
        else:
            assignment.update(lockerId=resource.resource_id, lockerNumber=resource.number)
        self.publish(EventType.ASSIGNMENT_CREATED, assignment, lane_id)

        if block.waitlist_id and session.waitlist_desired_type:
            self.publish(
                EventType.WAITLIST_UPDATED,
                {
                    "waitlistId": block.waitlist_id,
                    "status": WaitlistStatus.ACTIVE.value,
                    "visitId": plan.visit.visit_id,
                    "desiredTier": session.waitlist_desired_type.value,
                },
                lane_id,
            )
        self.broadcast_session(session.session_id)
        self.publish_computed(
            EventType.INVENTORY_UPDATED,
            lambda: {"available": self.reservations.available_counts()},
            lane_id,
        )
