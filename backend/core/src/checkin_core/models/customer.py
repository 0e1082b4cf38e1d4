"""Customer identity record."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import Language, MembershipCardType
from .items import compact, iso, parse_date, parse_datetime, to_int


class Customer(BaseModel):
    """A club customer.

    Created on first scan/start; never deleted. Money is stored in cents.
    """

    model_config = ConfigDict(strict=True)

    customer_id: str = Field(..., description="Unique customer ID")
    name: str = Field(..., description="Display name")
    dob: dt.date | None = Field(default=None, description="Date of birth")
    primary_language: Language | None = None
    membership_number: str | None = None
    membership_card_type: MembershipCardType | None = None
    membership_valid_until: dt.date | None = None
    banned_until: dt.datetime | None = None
    past_due_balance: int = Field(default=0, ge=0, description="Past-due balance in cents")
    id_scan_hash: str | None = Field(
        default=None, description="SHA-256 of the normalized ID scan"
    )
    id_scan_value: str | None = Field(default=None, description="Normalized ID scan text")
    notes: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    def is_banned(self, now: dt.datetime) -> bool:
        """True while the ban expiry is in the future."""
        return self.banned_until is not None and self.banned_until > now

    def age_on(self, day: dt.date) -> int | None:
        """Age in whole years on the given day, or None without a DOB."""
        if self.dob is None:
            return None
        years = day.year - self.dob.year
        if (day.month, day.day) < (self.dob.month, self.dob.day):
            years -= 1
        return years


def item_to_customer(item: dict[str, Any]) -> Customer:
    """Map a `customers` item to a Customer."""
    language = item.get("primary_language")
    card_type = item.get("membership_card_type")
    return Customer(
        customer_id=item["customer_id"],
        name=item.get("name", ""),
        dob=parse_date(item.get("dob")),
        primary_language=Language(language) if language else None,
        membership_number=item.get("membership_number"),
        membership_card_type=MembershipCardType(card_type) if card_type else None,
        membership_valid_until=parse_date(item.get("membership_valid_until")),
        banned_until=parse_datetime(item.get("banned_until")),
        past_due_balance=to_int(item.get("past_due_balance")),
        id_scan_hash=item.get("id_scan_hash"),
        id_scan_value=item.get("id_scan_value"),
        notes=item.get("notes"),
        created_at=parse_datetime(item.get("created_at")),
        updated_at=parse_datetime(item.get("updated_at")),
    )


def customer_to_item(customer: Customer) -> dict[str, Any]:
    """Map a Customer to a `customers` item."""
    return compact(
        {
            "customer_id": customer.customer_id,
            "name": customer.name,
            "dob": iso(customer.dob),
            "primary_language": (
                customer.primary_language.value if customer.primary_language else None
            ),
            "membership_number": customer.membership_number,
            "membership_card_type": (
                customer.membership_card_type.value
                if customer.membership_card_type
                else None
            ),
            "membership_valid_until": iso(customer.membership_valid_until),
            "banned_until": iso(customer.banned_until),
            "past_due_balance": customer.past_due_balance,
            "id_scan_hash": customer.id_scan_hash,
            "id_scan_value": customer.id_scan_value,
            "notes": customer.notes,
            "created_at": iso(customer.created_at),
            "updated_at": iso(customer.updated_at),
        }
    )
