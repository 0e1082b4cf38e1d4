"""Payment intent model for lane check-in charges."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import PaymentIntentStatus, PaymentMethod
from .items import compact, iso, parse_datetime, plain, to_int


class PaymentIntent(BaseModel):
    """A pending or settled charge for a lane session.

    Amounts are stored in cents. At most one DUE intent exists per session.
    """

    model_config = ConfigDict(strict=True)

    payment_intent_id: str = Field(..., description="Unique payment intent ID")
    lane_session_id: str = Field(..., description="Reference to LaneSession")
    amount: int = Field(..., ge=0, description="Amount in cents")
    status: PaymentIntentStatus
    quote: dict[str, Any] = Field(default_factory=dict, description="Price quote snapshot")
    payment_method: PaymentMethod | None = None
    paid_at: dt.datetime | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


def item_to_payment_intent(item: dict[str, Any]) -> PaymentIntent:
    """Map a `payment-intents` item to a PaymentIntent."""
    method = item.get("payment_method")
    return PaymentIntent(
        payment_intent_id=item["payment_intent_id"],
        lane_session_id=item["lane_session_id"],
        amount=to_int(item.get("amount")),
        status=PaymentIntentStatus(item["status"]),
        quote=plain(item.get("quote") or {}),
        payment_method=PaymentMethod(method) if method else None,
        paid_at=parse_datetime(item.get("paid_at")),
        created_at=parse_datetime(item["created_at"]),
        updated_at=parse_datetime(item.get("updated_at") or item["created_at"]),
    )


def payment_intent_to_item(intent: PaymentIntent) -> dict[str, Any]:
    """Map a PaymentIntent to a `payment-intents` item."""
    return compact(
        {
            "payment_intent_id": intent.payment_intent_id,
            "lane_session_id": intent.lane_session_id,
            "amount": intent.amount,
            "status": intent.status.value,
            "quote": intent.quote,
            "payment_method": intent.payment_method.value if intent.payment_method else None,
            "paid_at": iso(intent.paid_at),
            "created_at": iso(intent.created_at),
            "updated_at": iso(intent.updated_at),
        }
    )
