"""Payment intents for lane check-ins.

A payment intent is created once the rental selection is locked and is
marked PAID by the register after the tender is taken. At most one DUE
intent exists per lane session; creating again re-quotes the newest DUE
intent in place and cancels any duplicates.
"""

import datetime as dt
from typing import Any

from checkin_core.models import (
    CheckinMode,
    ConflictError,
    Customer,
    ErrorCode,
    LaneSession,
    LaneSessionStatus,
    NotFoundError,
    PaymentIntent,
    PaymentIntentStatus,
    PaymentMethod,
    RentalType,
    ValidationError,
    payment_intent_to_item,
)
from checkin_core.models.items import new_id, utcnow
from checkin_core.utils.expressions import Condition, Update
from checkin_core.utils.logging import get_logger, log_checkin_operation

from .base import LaneService
from .pricing import PriceQuote, PricingInput, calculate_price_quote, calculate_renewal_quote

logger = get_logger(__name__)

PAYABLE_STATUSES = frozenset(
    {
        LaneSessionStatus.ACTIVE,
        LaneSessionStatus.AWAITING_ASSIGNMENT,
        LaneSessionStatus.AWAITING_PAYMENT,
    }
)


def quote_for_session(session: LaneSession, customer: Customer, now: dt.datetime) -> PriceQuote:
    """Price the session's locked selection for its customer.

    Raises:
        ValidationError: Renewal session without 2 or 6 renewal hours
    """
    rental_type = session.desired_rental_type or session.backup_rental_type or RentalType.LOCKER
    data = PricingInput(
        rental_type=rental_type,
        check_in_time=now,
        customer_age=customer.age_on(now.date()),
        membership_card_type=customer.membership_card_type,
        membership_valid_until=customer.membership_valid_until,
        include_six_month_membership=session.membership_purchase_intent is not None,
    )
    if session.checkin_mode == CheckinMode.RENEWAL:
        if session.renewal_hours not in (2, 6):
            raise ValidationError(
                ErrorCode.INVALID_STATE, "Renewal hours not set for this session"
            )
        return calculate_renewal_quote(data, session.renewal_hours)
    return calculate_price_quote(data)


class PaymentService(LaneService):
    """Service for creating and settling lane payment intents."""

    def create_payment_intent(
        self, lane_id: str, now: dt.datetime | None = None
    ) -> dict[str, Any]:
        """Quote the locked selection and move the session to AWAITING_PAYMENT.

        Returns:
            paymentIntentId, amount (cents) and the quote

        Raises:
            NotFoundError: No session in a payable status
            ValidationError: Selection not locked
            ConflictError: Session or intent changed concurrently
        """
        now = now or utcnow()
        session = self.store.require_live_session(lane_id, PAYABLE_STATUSES)
        if not session.selection_confirmed or session.selection_locked_at is None:
            raise ValidationError(
                ErrorCode.SELECTION_NOT_LOCKED,
                "Selection must be confirmed/locked before creating payment intent",
            )
        customer = self.require_session_customer(session)
        quote = quote_for_session(session, customer, now).to_dict()

        due = [
            intent
            for intent in self.store.payment_intents_for_session(session.session_id)
            if intent.status == PaymentIntentStatus.DUE
        ]
        items: list[dict[str, Any]] = []
        if due:
            intent = due[0]
            items.append(
                Update()
                .set("amount", quote["total"])
                .set("quote", quote)
                .set("updated_at", now)
                .where_equals("status", PaymentIntentStatus.DUE)
                .transact(
                    self.db,
                    self.store.PAYMENT_INTENTS_TABLE,
                    {"payment_intent_id": intent.payment_intent_id},
                )
            )
            for extra in due[1:]:
                items.append(
                    Update()
                    .set("status", PaymentIntentStatus.CANCELLED)
                    .set("updated_at", now)
                    .where_equals("status", PaymentIntentStatus.DUE)
                    .transact(
                        self.db,
                        self.store.PAYMENT_INTENTS_TABLE,
                        {"payment_intent_id": extra.payment_intent_id},
                    )
                )
            intent_id = intent.payment_intent_id
        else:
            intent = PaymentIntent(
                payment_intent_id=new_id("PI"),
                lane_session_id=session.session_id,
                amount=quote["total"],
                status=PaymentIntentStatus.DUE,
                quote=quote,
                created_at=now,
                updated_at=now,
            )
            items.append(
                self.db.tx_put(
                    self.store.PAYMENT_INTENTS_TABLE,
                    payment_intent_to_item(intent),
                    **Condition().absent("payment_intent_id").kwargs(),
                )
            )
            intent_id = intent.payment_intent_id

        items.append(
            Update()
            .set("payment_intent_id", intent_id)
            .set("price_quote", quote)
            .set("status", LaneSessionStatus.AWAITING_PAYMENT)
            .set("updated_at", now)
            .where_in("status", PAYABLE_STATUSES)
            .where_equals("selection_confirmed", True)
            .transact(self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id})
        )
        if not self.db.transact_write(items):
            raise ConflictError(ErrorCode.SESSION_CHANGED)

        log_checkin_operation(
            logger,
            "create_payment_intent",
            lane_id=lane_id,
            session_id=session.session_id,
            customer_id=session.customer_id,
            status=LaneSessionStatus.AWAITING_PAYMENT.value,
            payment_intent_id=intent_id,
            amount=quote["total"],
            cancelled_duplicates=max(len(due) - 1, 0),
        )
        self.broadcast_session(session.session_id)
        return {"paymentIntentId": intent_id, "amount": quote["total"], "quote": quote}

    def mark_paid(
        self,
        payment_intent_id: str,
        payment_method: PaymentMethod | None = None,
        staff_id: str | None = None,
        now: dt.datetime | None = None,
    ) -> dict[str, Any]:
        """Settle a DUE intent. Repeating on a PAID intent reports alreadyPaid.

        The owning session advances from AWAITING_PAYMENT to AWAITING_SIGNATURE.
        """
        now = now or utcnow()
        intent = self.store.get_payment_intent(payment_intent_id)
        if intent is None:
            raise NotFoundError(ErrorCode.PAYMENT_INTENT_NOT_FOUND)
        if intent.status == PaymentIntentStatus.PAID:
            return {"paymentIntentId": payment_intent_id, "status": "PAID", "alreadyPaid": True}
        if intent.status != PaymentIntentStatus.DUE:
            raise ValidationError(
                ErrorCode.INVALID_STATE, f"Payment intent is {intent.status.value}"
            )

        items = [
            Update()
            .set("status", PaymentIntentStatus.PAID)
            .set("payment_method", payment_method)
            .set("paid_at", now)
            .set("updated_at", now)
            .where_equals("status", PaymentIntentStatus.DUE)
            .transact(
                self.db,
                self.store.PAYMENT_INTENTS_TABLE,
                {"payment_intent_id": payment_intent_id},
            )
        ]
        session = self.store.get_session(intent.lane_session_id)
        if (
            session is not None
            and session.status == LaneSessionStatus.AWAITING_PAYMENT
            and session.payment_intent_id == payment_intent_id
        ):
            items.append(
                Update()
                .set("status", LaneSessionStatus.AWAITING_SIGNATURE)
                .set("updated_at", now)
                .where_equals("status", LaneSessionStatus.AWAITING_PAYMENT)
                .where_equals("payment_intent_id", payment_intent_id)
                .transact(
                    self.db, self.store.SESSIONS_TABLE, {"session_id": session.session_id}
                )
            )

        if not self.db.transact_write(items):
            current = self.store.get_payment_intent(payment_intent_id)
            if current is not None and current.status == PaymentIntentStatus.PAID:
                return {
                    "paymentIntentId": payment_intent_id,
                    "status": "PAID",
                    "alreadyPaid": True,
                }
            raise ConflictError(ErrorCode.SESSION_CHANGED)

        log_checkin_operation(
            logger,
            "mark_paid",
            lane_id=session.lane_id if session else None,
            session_id=intent.lane_session_id,
            status=PaymentIntentStatus.PAID.value,
            payment_intent_id=payment_intent_id,
            staff_id=staff_id,
        )
        if session is not None:
            self.broadcast_session(session.session_id)
        return {"paymentIntentId": payment_intent_id, "status": "PAID"}
