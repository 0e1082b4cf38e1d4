"""Typed read access to the check-in tables.

Every loader maps raw DynamoDB items through the explicit `item_to_*`
functions, so services only ever see validated domain models.
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from checkin_core.models import (
    CheckinBlock,
    Customer,
    ErrorCode,
    LaneSession,
    LaneSessionStatus,
    NotFoundError,
    PaymentIntent,
    RentalType,
    Resource,
    ResourceType,
    Visit,
    WaitlistEntry,
    WaitlistStatus,
    customer_to_item,
    item_to_block,
    item_to_customer,
    item_to_lane_session,
    item_to_payment_intent,
    item_to_resource,
    item_to_visit,
    item_to_waitlist_entry,
    resource_key,
)
from checkin_core.models.enums import TERMINAL_SESSION_STATUSES
from checkin_core.models.inventory import RESOURCE_TABLES
from checkin_core.models.items import new_id

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

_EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.UTC)


class CheckinStore:
    """Loaders shared by the check-in services."""

    CUSTOMERS_TABLE = "customers"
    LANES_TABLE = "lanes"
    SESSIONS_TABLE = "lane-sessions"
    PAYMENT_INTENTS_TABLE = "payment-intents"
    VISITS_TABLE = "visits"
    BLOCKS_TABLE = "checkin-blocks"
    WAITLIST_TABLE = "waitlist"
    SIGNATURES_TABLE = "agreement-signatures"
    AUDIT_TABLE = "audit-log"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    # Customers

    def get_customer(self, customer_id: str) -> Customer | None:
        item = self.db.get_item(self.CUSTOMERS_TABLE, {"customer_id": customer_id})
        return item_to_customer(item) if item else None

    def require_customer(self, customer_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        if customer is None:
            raise NotFoundError(ErrorCode.CUSTOMER_NOT_FOUND)
        return customer

    def customers_by(self, index_name: str, attribute: str, value: str) -> list[Customer]:
        """Customers whose indexed attribute equals `value`, oldest first."""
        items = self.db.query_by_gsi(self.CUSTOMERS_TABLE, index_name, attribute, value)
        customers = [item_to_customer(item) for item in items]
        return sorted(customers, key=lambda c: c.created_at or _EPOCH)

    def find_customer_by_membership(self, membership_number: str) -> Customer | None:
        matches = self.customers_by(
            "membership_number-index", "membership_number", membership_number
        )
        return matches[0] if matches else None

    def customers_with_dob(self, dob: dt.date) -> list[Customer]:
        return self.customers_by("dob-index", "dob", dob.isoformat())

    def save_customer(self, customer: Customer) -> None:
        self.db.put_item(self.CUSTOMERS_TABLE, customer_to_item(customer))

    # Lanes and sessions

    def get_session(self, session_id: str) -> LaneSession | None:
        item = self.db.get_item(self.SESSIONS_TABLE, {"session_id": session_id})
        return item_to_lane_session(item) if item else None

    def get_lane_pointer(self, lane_id: str) -> str | None:
        """Session id the lane currently points at, stale or not."""
        item = self.db.get_item(self.LANES_TABLE, {"lane_id": lane_id})
        return item.get("active_session_id") if item else None

    def get_live_session(self, lane_id: str) -> LaneSession | None:
        """The lane's non-terminal session, if any."""
        session_id = self.get_lane_pointer(lane_id)
        if not session_id:
            return None
        session = self.get_session(session_id)
        if session is None or session.is_terminal:
            return None
        return session

    def require_live_session(
        self,
        lane_id: str,
        statuses: frozenset[LaneSessionStatus] | set[LaneSessionStatus],
    ) -> LaneSession:
        """The lane's session, provided it is in one of `statuses`.

        Raises:
            NotFoundError: No session in an expected status
        """
        session = self.get_live_session(lane_id)
        if session is None or session.status not in statuses:
            raise NotFoundError(ErrorCode.NO_ACTIVE_SESSION)
        return session

    def lane_sessions(self, lane_id: str, newest_first: bool = True) -> list[LaneSession]:
        items = self.db.query_by_gsi(
            self.SESSIONS_TABLE,
            "lane_id-index",
            "lane_id",
            lane_id,
            scan_index_forward=not newest_first,
        )
        return [item_to_lane_session(item) for item in items]

    def terminal_session_ids(self, session_ids: set[str]) -> set[str]:
        """Which of the given sessions are terminal or no longer exist."""
        if not session_ids:
            return set()
        items = self.db.batch_get(
            self.SESSIONS_TABLE, [{"session_id": sid} for sid in session_ids]
        )
        live = {
            item["session_id"]
            for item in items
            if LaneSessionStatus(item["status"]) not in TERMINAL_SESSION_STATUSES
        }
        return session_ids - live

    # Rooms and lockers

    def get_resource(self, resource_type: ResourceType, resource_id: str) -> Resource | None:
        table, _ = RESOURCE_TABLES[resource_type]
        item = self.db.get_item(table, resource_key(resource_type, resource_id))
        return item_to_resource(resource_type, item) if item else None

    def list_resources(
        self, resource_type: ResourceType, tier: RentalType | None = None
    ) -> list[Resource]:
        """Resources of a type (rooms optionally by tier), in number order."""
        table, _ = RESOURCE_TABLES[resource_type]
        if resource_type == ResourceType.ROOM and tier is not None:
            items = self.db.query_by_gsi(table, "tier-index", "tier", tier.value)
        else:
            items = self.db.scan(table)
        resources = [item_to_resource(resource_type, item) for item in items]
        return sorted(resources, key=lambda r: r.sort_key)

    # Payment intents

    def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent | None:
        item = self.db.get_item(
            self.PAYMENT_INTENTS_TABLE, {"payment_intent_id": payment_intent_id}
        )
        return item_to_payment_intent(item) if item else None

    def payment_intents_for_session(self, session_id: str) -> list[PaymentIntent]:
        """Intents for a session, newest first."""
        items = self.db.query_by_gsi(
            self.PAYMENT_INTENTS_TABLE, "lane_session_id-index", "lane_session_id", session_id
        )
        intents = [item_to_payment_intent(item) for item in items]
        return sorted(intents, key=lambda i: i.created_at, reverse=True)

    # Visits, blocks and waitlist

    def get_visit(self, visit_id: str) -> Visit | None:
        item = self.db.get_item(self.VISITS_TABLE, {"visit_id": visit_id})
        return item_to_visit(item) if item else None

    def open_visit_for_customer(self, customer_id: str) -> Visit | None:
        """Most recently started unended visit."""
        items = self.db.query_by_gsi(
            self.VISITS_TABLE,
            "customer_id-index",
            "customer_id",
            customer_id,
            filter_expression=Attr("ended_at").not_exists(),
        )
        visits = sorted(
            (item_to_visit(item) for item in items),
            key=lambda v: v.started_at,
            reverse=True,
        )
        return visits[0] if visits else None

    def blocks_for_visit(self, visit_id: str) -> list[CheckinBlock]:
        """Blocks of a visit, latest end first."""
        items = self.db.query_by_gsi(self.BLOCKS_TABLE, "visit_id-index", "visit_id", visit_id)
        return sorted((item_to_block(i) for i in items), key=lambda b: b.ends_at, reverse=True)

    def blocks_for_session(self, session_id: str) -> list[CheckinBlock]:
        items = self.db.query_by_gsi(
            self.BLOCKS_TABLE, "session_id-index", "session_id", session_id
        )
        return sorted((item_to_block(i) for i in items), key=lambda b: b.created_at, reverse=True)

    def waitlist_for_tier(
        self, tier: RentalType, statuses: set[WaitlistStatus] | None = None
    ) -> list[WaitlistEntry]:
        items = self.db.query_by_gsi(
            self.WAITLIST_TABLE, "desired_tier-index", "desired_tier", tier.value
        )
        entries = [item_to_waitlist_entry(item) for item in items]
        if statuses is not None:
            entries = [e for e in entries if e.status in statuses]
        return sorted(entries, key=lambda e: e.created_at)

    def waitlist_with_status(self, status: WaitlistStatus) -> list[WaitlistEntry]:
        items = self.db.query_by_gsi(self.WAITLIST_TABLE, "status-index", "status", status.value)
        return [item_to_waitlist_entry(item) for item in items]

    def waitlist_for_visit(self, visit_id: str) -> list[WaitlistEntry]:
        """Entries of a visit, newest first."""
        items = self.db.query_by_gsi(self.WAITLIST_TABLE, "visit_id-index", "visit_id", visit_id)
        entries = [item_to_waitlist_entry(item) for item in items]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    def get_blocks(self, block_ids: set[str]) -> list[CheckinBlock]:
        items = self.db.batch_get(self.BLOCKS_TABLE, [{"block_id": bid} for bid in block_ids])
        return [item_to_block(item) for item in items]

    def upcoming_room_blocks(self, now: dt.datetime) -> list[CheckinBlock]:
        """Room blocks that have not ended yet, soonest end first."""
        items = self.db.scan(
            self.BLOCKS_TABLE,
            filter_expression=Attr("ends_at").gt(now.isoformat())
            & Attr("resource_type").eq(ResourceType.ROOM.value),
        )
        return sorted((item_to_block(i) for i in items), key=lambda b: b.ends_at)

    def get_visits(self, visit_ids: set[str]) -> list[Visit]:
        if not visit_ids:
            return []
        items = self.db.batch_get(self.VISITS_TABLE, [{"visit_id": vid} for vid in visit_ids])
        return [item_to_visit(item) for item in items]

    # Audit

    def audit_item(
        self,
        action: str,
        staff_id: str | None,
        session_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Build an `audit-log` item (written directly or inside a transaction)."""
        item: dict[str, Any] = {
            "audit_id": new_id("AUD"),
            "action": action,
            "created_at": dt.datetime.now(dt.UTC).isoformat(),
        }
        if staff_id:
            item["staff_id"] = staff_id
        if session_id:
            item["session_id"] = session_id
        if details:
            item["details"] = details
        return item

    def write_audit(
        self,
        action: str,
        staff_id: str | None,
        session_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.db.put_item(self.AUDIT_TABLE, self.audit_item(action, staff_id, session_id, details))
