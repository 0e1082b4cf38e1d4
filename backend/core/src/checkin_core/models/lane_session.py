"""Lane session: the per-lane check-in state machine instance."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    TERMINAL_SESSION_STATUSES,
    Actor,
    CheckinMode,
    LaneSessionStatus,
    MembershipChoice,
    MembershipPurchaseIntent,
    RentalType,
    ResourceType,
    SignatureMethod,
)
from .items import compact, iso, parse_datetime, plain, to_int


class LaneSession(BaseModel):
    """Aggregate root for one in-progress check-in on a lane.

    `assigned_resource_id` is a soft reservation, not an occupancy.
    """

    model_config = ConfigDict(strict=True)

    session_id: str
    lane_id: str
    status: LaneSessionStatus
    customer_id: str | None = None
    customer_display_name: str | None = None
    membership_number: str | None = None
    staff_id: str | None = None

    # Selection negotiation
    desired_rental_type: RentalType | None = None
    proposed_rental_type: RentalType | None = None
    proposed_by: Actor | None = None
    waitlist_desired_type: RentalType | None = None
    backup_rental_type: RentalType | None = None
    selection_confirmed: bool = False
    selection_confirmed_by: Actor | None = None
    selection_locked_at: dt.datetime | None = None
    selection_acknowledged_at: dt.datetime | None = None

    # Soft reservation
    assigned_resource_id: str | None = None
    assigned_resource_type: ResourceType | None = None
    needs_customer_confirmation: bool = False

    # Payment
    payment_intent_id: str | None = None
    price_quote: dict[str, Any] | None = None

    # Past-due gate
    past_due_bypassed: bool = False
    past_due_bypassed_by_staff_id: str | None = None
    past_due_bypassed_at: dt.datetime | None = None

    membership_purchase_intent: MembershipPurchaseIntent | None = None
    membership_choice: MembershipChoice | None = None

    checkin_mode: CheckinMode = CheckinMode.INITIAL
    renewal_hours: int | None = Field(default=None, description="2 or 6 for renewals")
    visit_id: str | None = Field(default=None, description="Visit being renewed")

    kiosk_acknowledged_at: dt.datetime | None = None
    agreement_signed_method: SignatureMethod | None = None

    created_at: dt.datetime
    updated_at: dt.datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES


def _enum(enum_cls: Any, value: Any) -> Any:
    return enum_cls(value) if value else None


def item_to_lane_session(item: dict[str, Any]) -> LaneSession:
    """Map a `lane-sessions` item to a LaneSession."""
    renewal_hours = item.get("renewal_hours")
    quote = item.get("price_quote")
    return LaneSession(
        session_id=item["session_id"],
        lane_id=item["lane_id"],
        status=LaneSessionStatus(item["status"]),
        customer_id=item.get("customer_id"),
        customer_display_name=item.get("customer_display_name"),
        membership_number=item.get("membership_number"),
        staff_id=item.get("staff_id"),
        desired_rental_type=_enum(RentalType, item.get("desired_rental_type")),
        proposed_rental_type=_enum(RentalType, item.get("proposed_rental_type")),
        proposed_by=_enum(Actor, item.get("proposed_by")),
        waitlist_desired_type=_enum(RentalType, item.get("waitlist_desired_type")),
        backup_rental_type=_enum(RentalType, item.get("backup_rental_type")),
        selection_confirmed=bool(item.get("selection_confirmed", False)),
        selection_confirmed_by=_enum(Actor, item.get("selection_confirmed_by")),
        selection_locked_at=parse_datetime(item.get("selection_locked_at")),
        selection_acknowledged_at=parse_datetime(item.get("selection_acknowledged_at")),
        assigned_resource_id=item.get("assigned_resource_id"),
        assigned_resource_type=_enum(ResourceType, item.get("assigned_resource_type")),
        needs_customer_confirmation=bool(item.get("needs_customer_confirmation", False)),
        payment_intent_id=item.get("payment_intent_id"),
        price_quote=plain(quote) if quote else None,
        past_due_bypassed=bool(item.get("past_due_bypassed", False)),
        past_due_bypassed_by_staff_id=item.get("past_due_bypassed_by_staff_id"),
        past_due_bypassed_at=parse_datetime(item.get("past_due_bypassed_at")),
        membership_purchase_intent=_enum(
            MembershipPurchaseIntent, item.get("membership_purchase_intent")
        ),
        membership_choice=_enum(MembershipChoice, item.get("membership_choice")),
        checkin_mode=CheckinMode(item.get("checkin_mode") or CheckinMode.INITIAL.value),
        renewal_hours=to_int(renewal_hours) if renewal_hours is not None else None,
        visit_id=item.get("visit_id"),
        kiosk_acknowledged_at=parse_datetime(item.get("kiosk_acknowledged_at")),
        agreement_signed_method=_enum(SignatureMethod, item.get("agreement_signed_method")),
        created_at=parse_datetime(item["created_at"]),
        updated_at=parse_datetime(item.get("updated_at") or item["created_at"]),
    )


def lane_session_to_item(session: LaneSession) -> dict[str, Any]:
    """Map a LaneSession to a `lane-sessions` item."""

    def value(enum_value: Any) -> Any:
        return enum_value.value if enum_value is not None else None

    return compact(
        {
            "session_id": session.session_id,
            "lane_id": session.lane_id,
            "status": session.status.value,
            "customer_id": session.customer_id,
            "customer_display_name": session.customer_display_name,
            "membership_number": session.membership_number,
            "staff_id": session.staff_id,
            "desired_rental_type": value(session.desired_rental_type),
            "proposed_rental_type": value(session.proposed_rental_type),
            "proposed_by": value(session.proposed_by),
            "waitlist_desired_type": value(session.waitlist_desired_type),
            "backup_rental_type": value(session.backup_rental_type),
            "selection_confirmed": session.selection_confirmed,
            "selection_confirmed_by": value(session.selection_confirmed_by),
            "selection_locked_at": iso(session.selection_locked_at),
            "selection_acknowledged_at": iso(session.selection_acknowledged_at),
            "assigned_resource_id": session.assigned_resource_id,
            "assigned_resource_type": value(session.assigned_resource_type),
            "needs_customer_confirmation": session.needs_customer_confirmation,
            "payment_intent_id": session.payment_intent_id,
            "price_quote": session.price_quote,
            "past_due_bypassed": session.past_due_bypassed,
            "past_due_bypassed_by_staff_id": session.past_due_bypassed_by_staff_id,
            "past_due_bypassed_at": iso(session.past_due_bypassed_at),
            "membership_purchase_intent": value(session.membership_purchase_intent),
            "membership_choice": value(session.membership_choice),
            "checkin_mode": session.checkin_mode.value,
            "renewal_hours": session.renewal_hours,
            "visit_id": session.visit_id,
            "kiosk_acknowledged_at": iso(session.kiosk_acknowledged_at),
            "agreement_signed_method": value(session.agreement_signed_method),
            "created_at": iso(session.created_at),
            "updated_at": iso(session.updated_at),
        }
    )
