"""Check-in price quotes.

Deterministic rules keyed on rental type, customer age, check-in time and
membership status. All amounts are integer cents. Day/time windows are
evaluated in FACILITY_TIMEZONE (UTC when unset).
"""

import datetime as dt
import os
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

from checkin_core.models import MembershipCardType, RentalType

DOLLAR = 100

ROOM_PRICES = {
    # (standard, weekday discount window)
    RentalType.STANDARD: (30 * DOLLAR, 27 * DOLLAR),
    RentalType.DOUBLE: (40 * DOLLAR, 37 * DOLLAR),
    RentalType.SPECIAL: (50 * DOLLAR, 47 * DOLLAR),
}
YOUTH_ROOM_PRICES = {
    RentalType.STANDARD: 30 * DOLLAR,
    RentalType.DOUBLE: 50 * DOLLAR,
    RentalType.SPECIAL: 50 * DOLLAR,
}
ROOM_NAMES = {
    RentalType.STANDARD: "Standard Room",
    RentalType.DOUBLE: "Double Room",
    RentalType.SPECIAL: "Special Room",
}

LOCKER_DISCOUNT_PRICE = 16 * DOLLAR
LOCKER_WEEKEND_PRICE = 24 * DOLLAR
LOCKER_EVENING_PRICE = 19 * DOLLAR
YOUTH_LOCKER_PRICE = 7 * DOLLAR

DAILY_MEMBERSHIP_FEE = 13 * DOLLAR
SIX_MONTH_MEMBERSHIP_PRICE = 43 * DOLLAR
TWO_HOUR_RENEWAL_PRICE = 20 * DOLLAR

QUOTE_MESSAGES = ["No refunds"]


class LineItem(BaseModel):
    description: str
    amount: int = Field(..., description="Amount in cents")


class PricingInput(BaseModel):
    """Inputs to a quote."""

    model_config = ConfigDict(strict=True)

    rental_type: RentalType
    check_in_time: dt.datetime
    customer_age: int | None = None
    membership_card_type: MembershipCardType | None = None
    membership_valid_until: dt.date | None = None
    include_six_month_membership: bool = Field(
        default=False,
        description="Quote a six-month membership purchase and waive the daily fee",
    )


class PriceQuote(BaseModel):
    """Price breakdown. Serialized onto the session and payment intent."""

    rental_fee: int
    membership_fee: int
    total: int
    line_items: list[LineItem]
    messages: list[str]

    def to_dict(self) -> dict[str, object]:
        """Wire/storage shape (camelCase keys)."""
        return {
            "rentalFee": self.rental_fee,
            "membershipFee": self.membership_fee,
            "total": self.total,
            "lineItems": [
                {"description": item.description, "amount": item.amount}
                for item in self.line_items
            ],
            "messages": list(self.messages),
        }


def facility_time(moment: dt.datetime) -> dt.datetime:
    """Convert to the facility's local time."""
    tz_name = os.getenv("FACILITY_TIMEZONE")
    tz = ZoneInfo(tz_name) if tz_name else dt.UTC
    return moment.astimezone(tz)


def is_weekday_discount_window(moment: dt.datetime) -> bool:
    """Monday-Friday, 08:00 through 16:00 inclusive."""
    local = facility_time(moment)
    if local.weekday() > 4:
        return False
    if 8 <= local.hour < 16:
        return True
    return local.hour == 16 and local.minute == 0


def is_youth(age: int | None) -> bool:
    return age is not None and 18 <= age <= 24


def has_valid_six_month_membership(
    moment: dt.datetime,
    card_type: MembershipCardType | None,
    valid_until: dt.date | None,
) -> bool:
    """Valid through the end of the expiry date."""
    if card_type != MembershipCardType.SIX_MONTH or valid_until is None:
        return False
    return facility_time(moment).date() <= valid_until


def locker_price(rental_type: RentalType, moment: dt.datetime, youth: bool) -> int:
    if rental_type == RentalType.GYM_LOCKER:
        return 0
    discount = is_weekday_discount_window(moment)
    if youth:
        return 0 if discount else YOUTH_LOCKER_PRICE
    if discount:
        return LOCKER_DISCOUNT_PRICE

    local = facility_time(moment)
    weekday = local.weekday()  # Monday == 0
    # Friday 16:00 through Monday 08:00 is weekend pricing
    if weekday in (5, 6):
        return LOCKER_WEEKEND_PRICE
    if weekday == 4 and local.hour >= 16:
        return LOCKER_WEEKEND_PRICE
    if weekday == 0 and local.hour < 8:
        return LOCKER_WEEKEND_PRICE
    return LOCKER_EVENING_PRICE


def membership_fee(data: PricingInput) -> int:
    """Daily fee for 25+ without a valid six-month card."""
    if data.customer_age is not None and data.customer_age < 25:
        return 0
    if has_valid_six_month_membership(
        data.check_in_time, data.membership_card_type, data.membership_valid_until
    ):
        return 0
    return DAILY_MEMBERSHIP_FEE


def _membership_lines(data: PricingInput, line_items: list[LineItem]) -> tuple[int, int]:
    """Append membership lines; returns (daily fee, six-month purchase)."""
    purchase = SIX_MONTH_MEMBERSHIP_PRICE if data.include_six_month_membership else 0
    daily = 0 if data.include_six_month_membership else membership_fee(data)
    if daily:
        line_items.append(LineItem(description="Membership Fee", amount=daily))
    if purchase:
        line_items.append(LineItem(description="6 Month Membership", amount=purchase))
    return daily, purchase


def calculate_price_quote(data: PricingInput) -> PriceQuote:
    """Quote an initial check-in (or a six-hour renewal)."""
    youth = is_youth(data.customer_age)
    line_items: list[LineItem] = []

    if data.rental_type.is_locker:
        rental_fee = locker_price(data.rental_type, data.check_in_time, youth)
        if rental_fee > 0:
            description = "Gym Locker" if data.rental_type == RentalType.GYM_LOCKER else "Locker"
            line_items.append(LineItem(description=description, amount=rental_fee))
        elif data.rental_type == RentalType.GYM_LOCKER:
            line_items.append(LineItem(description="Gym Locker (no cost)", amount=0))
    else:
        if youth:
            rental_fee = YOUTH_ROOM_PRICES[data.rental_type]
        else:
            standard, discounted = ROOM_PRICES[data.rental_type]
            rental_fee = discounted if is_weekday_discount_window(data.check_in_time) else standard
        line_items.append(LineItem(description=ROOM_NAMES[data.rental_type], amount=rental_fee))

    daily, purchase = _membership_lines(data, line_items)
    return PriceQuote(
        rental_fee=rental_fee,
        membership_fee=daily,
        total=rental_fee + daily + purchase,
        line_items=line_items,
        messages=list(QUOTE_MESSAGES),
    )


def calculate_renewal_quote(data: PricingInput, renewal_hours: int | None) -> PriceQuote:
    """Quote a renewal: six hours at full pricing, two hours at a flat fee."""
    if (renewal_hours or 6) == 6:
        return calculate_price_quote(data)

    line_items = [LineItem(description="Renewal (2 Hours)", amount=TWO_HOUR_RENEWAL_PRICE)]
    daily, purchase = _membership_lines(data, line_items)
    return PriceQuote(
        rental_fee=TWO_HOUR_RENEWAL_PRICE,
        membership_fee=daily,
        total=TWO_HOUR_RENEWAL_PRICE + daily + purchase,
        line_items=line_items,
        messages=list(QUOTE_MESSAGES),
    )
