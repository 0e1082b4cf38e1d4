"""Race-safe room and locker reservation.

Availability of a resource is evaluated on the resource item itself:

    status == CLEAN
    AND assigned_to_customer_id is absent
    AND (reserved_by_session_id is absent OR names a terminal session)

A soft reservation is written in one transaction as the lane session's
`assigned_resource_id`/`assigned_resource_type` plus the resource's
`reserved_by_session_id` marker. The conditional write on the resource is
the row lock: of any number of sessions racing for the same resource,
exactly one transaction commits and the rest are cancelled.

Ordinary room selection honours waitlist demand. With N ACTIVE waitlist
entries for a tier whose visits are open and whose blocks have not ended,
the first N available rooms of that tier (by room number) are skipped, and
rooms currently OFFERED to such an entry are never picked.
"""

import datetime as dt
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from checkin_core.models import (
    ConflictError,
    ErrorCode,
    LaneSession,
    NotFoundError,
    RentalType,
    Resource,
    ResourceStatus,
    ResourceType,
    ValidationError,
    WaitlistEntry,
    WaitlistStatus,
)
from checkin_core.models.enums import NON_TERMINAL_SESSION_STATUSES, ROOM_TIERS
from checkin_core.models.inventory import RESOURCE_TABLES, resource_key
from checkin_core.models.items import utcnow
from checkin_core.utils.expressions import Update
from checkin_core.utils.logging import get_logger, log_checkin_operation

if TYPE_CHECKING:
    from .store import CheckinStore

logger = get_logger(__name__)


@dataclass
class Reservation:
    """Result of a successful soft reservation."""

    resource: Resource
    needs_confirmation: bool
    requested_type: RentalType | None


class ReservationEngine:
    """Selects and soft-reserves rooms and lockers."""

    def __init__(self, store: "CheckinStore") -> None:
        self.store = store
        self.db = store.db

    # Availability

    def live_entries(
        self, entries: list[WaitlistEntry], now: dt.datetime | None = None
    ) -> list[WaitlistEntry]:
        """Entries whose visit is still open and whose check-in block has not ended."""
        if not entries:
            return []
        now = now or utcnow()
        open_visits = {
            visit.visit_id
            for visit in self.store.get_visits({e.visit_id for e in entries})
            if visit.is_open
        }
        blocks = {
            block.block_id: block
            for block in self.store.get_blocks({e.checkin_block_id for e in entries})
        }
        return [
            entry
            for entry in entries
            if entry.visit_id in open_visits
            and entry.checkin_block_id in blocks
            and blocks[entry.checkin_block_id].ends_at > now
        ]

    def waitlist_demand(self, tier: RentalType, now: dt.datetime | None = None) -> int:
        """Live ACTIVE waitlist entries for `tier`."""
        entries = self.store.waitlist_for_tier(tier, {WaitlistStatus.ACTIVE})
        return len(self.live_entries(entries, now))

    def offered_room_ids(self, now: dt.datetime | None = None) -> set[str]:
        """Rooms currently offered to a live waitlist entry."""
        offered = [
            entry
            for entry in self.store.waitlist_with_status(WaitlistStatus.OFFERED)
            if entry.room_id
        ]
        return {entry.room_id for entry in self.live_entries(offered, now) if entry.room_id}

    def stale_markers(self, resources: list[Resource]) -> set[str]:
        """Reservation markers that name terminal (or missing) sessions."""
        markers = {r.reserved_by_session_id for r in resources if r.reserved_by_session_id}
        return self.store.terminal_session_ids(markers)

    @staticmethod
    def is_available(resource: Resource, stale_markers: set[str]) -> bool:
        return (
            resource.status == ResourceStatus.CLEAN
            and resource.assigned_to_customer_id is None
            and (
                resource.reserved_by_session_id is None
                or resource.reserved_by_session_id in stale_markers
            )
        )

    def list_available(
        self,
        resource_type: ResourceType,
        tier: RentalType | None = None,
        exclude_offered: bool = True,
        now: dt.datetime | None = None,
    ) -> list[Resource]:
        """Available resources in number order.

        Reads are not locked; callers that act on the result re-validate
        with a conditional write.
        """
        resources = self.store.list_resources(resource_type, tier)
        stale = self.stale_markers(resources)
        available = [r for r in resources if self.is_available(r, stale)]
        if resource_type == ResourceType.ROOM and exclude_offered:
            offered = self.offered_room_ids(now)
            available = [r for r in available if r.resource_id not in offered]
        return available

    def available_counts(self) -> dict[str, int]:
        """Available rooms per tier plus lockers."""
        rooms = self.list_available(ResourceType.ROOM)
        counts = {tier.value: 0 for tier in ROOM_TIERS}
        for room in rooms:
            counts[room.tier.value] = counts.get(room.tier.value, 0) + 1
        counts[RentalType.LOCKER.value] = len(self.list_available(ResourceType.LOCKER))
        return counts

    def candidates_for_new_checkin(
        self, rental_type: RentalType, now: dt.datetime | None = None
    ) -> list[Resource]:
        """Ordinary selection order for a tier, after waitlist skipping."""
        if rental_type.is_locker:
            return self.list_available(ResourceType.LOCKER)
        rooms = self.list_available(ResourceType.ROOM, rental_type, now=now)
        demand = self.waitlist_demand(rental_type, now)
        return rooms[demand:]

    def select_room_for_new_checkin(
        self, tier: RentalType, now: dt.datetime | None = None
    ) -> Resource | None:
        """Next room an ordinary check-in of `tier` would get, or None."""
        candidates = self.candidates_for_new_checkin(tier, now)
        return candidates[0] if candidates else None

    # Reservation

    def claim_update(self, resource: Resource, session_id: str) -> Update:
        """Conditional marker write that re-validates availability.

        A marker observed as stale is overwritten only if it is still the
        same value, so a concurrent claim always wins or loses atomically.
        """
        update = (
            Update()
            .set("reserved_by_session_id", session_id)
            .where_equals("status", ResourceStatus.CLEAN)
            .where_absent("assigned_to_customer_id")
        )
        observed = resource.reserved_by_session_id
        if observed and observed != session_id:
            update.where_equals("reserved_by_session_id", observed)
        else:
            update.where_absent_or_equals("reserved_by_session_id", session_id)
        return update

    def occupy_update(
        self, resource: Resource, customer_id: str, now: dt.datetime | None = None
    ) -> Update:
        """Conditional write turning an available resource into an occupied one.

        The marker condition restates the marker value that was validated:
        the session's own marker, a stale one, or none.
        """
        now = now or utcnow()
        update = (
            Update()
            .set("status", ResourceStatus.OCCUPIED)
            .set("assigned_to_customer_id", customer_id)
            .set("last_status_change", now)
            .remove("reserved_by_session_id")
            .where_equals("status", ResourceStatus.CLEAN)
            .where_absent("assigned_to_customer_id")
        )
        if resource.reserved_by_session_id:
            update.where_equals("reserved_by_session_id", resource.reserved_by_session_id)
        else:
            update.where_absent("reserved_by_session_id")
        return update

    def release_item(self, session: LaneSession) -> dict[str, Any] | None:
        """Transaction item clearing this session's marker, if it still holds one."""
        if not (session.assigned_resource_id and session.assigned_resource_type):
            return None
        resource = self.store.get_resource(
            session.assigned_resource_type, session.assigned_resource_id
        )
        if resource is None or resource.reserved_by_session_id != session.session_id:
            return None
        table, _ = RESOURCE_TABLES[resource.resource_type]
        return (
            Update()
            .remove("reserved_by_session_id")
            .where_equals("reserved_by_session_id", session.session_id)
            .transact(self.db, table, resource_key(resource.resource_type, resource.resource_id))
        )

    def reserve(
        self,
        session: LaneSession,
        resource_type: ResourceType,
        resource_id: str,
        now: dt.datetime | None = None,
    ) -> Reservation:
        """Soft-reserve a resource for a lane session.

        Any resource the session held before is released in the same
        transaction.

        Raises:
            NotFoundError: Unknown resource, or the session moved on
            ValidationError: Resource is not CLEAN
            ConflictError: Assigned to a customer or held by another session
        """
        now = now or utcnow()
        resource = self._require_reservable(session, resource_type, resource_id)

        requested = (
            session.desired_rental_type
            or session.proposed_rental_type
            or session.backup_rental_type
        )
        needs_confirmation = (
            resource_type == ResourceType.ROOM
            and requested is not None
            and resource.tier != requested
        )

        table, _ = RESOURCE_TABLES[resource_type]
        items = [
            self.claim_update(resource, session.session_id).transact(
                self.db, table, resource_key(resource_type, resource_id)
            ),
            Update()
            .set("assigned_resource_id", resource_id)
            .set("assigned_resource_type", resource_type)
            .set("needs_customer_confirmation", needs_confirmation)
            .set("updated_at", now)
            .where_in("status", NON_TERMINAL_SESSION_STATUSES)
            .where_absent_or_equals("assigned_resource_id", session.assigned_resource_id)
            .transact(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id}),
        ]
        if session.assigned_resource_id != resource_id:
            release = self.release_item(session)
            if release is not None:
                items.append(release)

        if not self.db.transact_write(items):
            self._raise_reservation_failure(session, resource_type, resource_id)

        log_checkin_operation(
            logger,
            "reserve",
            lane_id=session.lane_id,
            session_id=session.session_id,
            resource_id=resource_id,
            status="reserved",
            needs_confirmation=needs_confirmation,
        )
        resource.reserved_by_session_id = session.session_id
        return Reservation(
            resource=resource, needs_confirmation=needs_confirmation, requested_type=requested
        )

    def release(self, session: LaneSession, now: dt.datetime | None = None) -> bool:
        """Drop the session's soft reservation (customer declined).

        Clears the marker, clears `assigned_to_customer_id` on a resource that
        is not OCCUPIED, and clears the session's assignment fields.
        """
        now = now or utcnow()
        if not (session.assigned_resource_id and session.assigned_resource_type):
            return False
        resource_type = session.assigned_resource_type
        table, _ = RESOURCE_TABLES[resource_type]
        key = resource_key(resource_type, session.assigned_resource_id)
        resource = self.store.get_resource(resource_type, session.assigned_resource_id)

        items = [
            Update()
            .remove("assigned_resource_id", "assigned_resource_type")
            .set("needs_customer_confirmation", False)
            .set("updated_at", now)
            .where_equals("assigned_resource_id", session.assigned_resource_id)
            .transact(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id})
        ]
        if resource is not None:
            resource_update = Update()
            if resource.reserved_by_session_id == session.session_id:
                resource_update.remove("reserved_by_session_id").where_equals(
                    "reserved_by_session_id", session.session_id
                )
            if resource.status != ResourceStatus.OCCUPIED and resource.assigned_to_customer_id:
                resource_update.remove("assigned_to_customer_id").where_not_equals(
                    "status", ResourceStatus.OCCUPIED
                )
            if not resource_update.is_empty:
                items.append(resource_update.transact(self.db, table, key))

        if not self.db.transact_write(items):
            raise ConflictError(ErrorCode.SESSION_CHANGED)
        log_checkin_operation(
            logger,
            "release",
            lane_id=session.lane_id,
            session_id=session.session_id,
            resource_id=session.assigned_resource_id,
            status="released",
        )
        return True

    def acknowledge(self, session: LaneSession, now: dt.datetime | None = None) -> None:
        """Customer accepted a cross-tier assignment; the reservation stands."""
        now = now or utcnow()
        update = (
            Update()
            .set("needs_customer_confirmation", False)
            .set("updated_at", now)
            .where_in("status", NON_TERMINAL_SESSION_STATUSES)
            .where_equals("assigned_resource_id", session.assigned_resource_id)
        )
        key = {"session_id": session.session_id}
        if update.apply(self.db, self.store.SESSIONS_TABLE, key) is None:
            raise ConflictError(ErrorCode.SESSION_CHANGED)

    def _require_reservable(
        self, session: LaneSession, resource_type: ResourceType, resource_id: str
    ) -> Resource:
        resource = self.store.get_resource(resource_type, resource_id)
        if resource is None:
            raise NotFoundError(ErrorCode.RESOURCE_NOT_FOUND)
        if resource.status != ResourceStatus.CLEAN:
            raise ValidationError(
                ErrorCode.RESOURCE_NOT_CLEAN,
                f"{resource_type.value.title()} {resource.number} is not available "
                f"(status: {resource.status.value})",
            )
        if resource.assigned_to_customer_id:
            raise ConflictError(
                ErrorCode.RESOURCE_UNAVAILABLE,
                f"{resource_type.value.title()} {resource.number} is already assigned",
                details={"resourceNumber": resource.number},
            )
        marker = resource.reserved_by_session_id
        if marker and marker != session.session_id and not self.stale_markers([resource]):
            raise ConflictError(
                ErrorCode.RESOURCE_UNAVAILABLE,
                f"{resource_type.value.title()} {resource.number} is already selected "
                "by another lane session",
                details={"resourceNumber": resource.number},
            )
        return resource

    def _raise_reservation_failure(
        self, session: LaneSession, resource_type: ResourceType, resource_id: str
    ) -> None:
        """Classify a cancelled reservation transaction from fresh state."""
        current = self.store.get_session(session.session_id)
        if current is None or current.status not in NON_TERMINAL_SESSION_STATUSES:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)
        if current.assigned_resource_id != session.assigned_resource_id:
            raise ConflictError(ErrorCode.SESSION_CHANGED)
        # Re-raises the precise 404/400/409 from a fresh read
        self._require_reservable(current, resource_type, resource_id)
        raise ConflictError(ErrorCode.RESOURCE_UNAVAILABLE)
