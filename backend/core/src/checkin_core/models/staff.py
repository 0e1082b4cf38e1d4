"""Staff member and register sign-in session."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict

from .enums import StaffRole
from .items import parse_datetime


class Staff(BaseModel):
    """An employee who can operate a register or approve overrides."""

    model_config = ConfigDict(strict=True)

    staff_id: str
    name: str
    role: StaffRole
    active: bool = True
    pin_salt: str | None = None
    pin_hash: str | None = None


class StaffSession(BaseModel):
    """Bearer token issued at staff sign-in."""

    model_config = ConfigDict(strict=True)

    token: str
    staff_id: str
    expires_at: dt.datetime


def item_to_staff(item: dict[str, Any]) -> Staff:
    """Map a `staff` item to a Staff."""
    return Staff(
        staff_id=item["staff_id"],
        name=item.get("name", ""),
        role=StaffRole(item.get("role", StaffRole.STAFF.value)),
        active=bool(item.get("active", True)),
        pin_salt=item.get("pin_salt"),
        pin_hash=item.get("pin_hash"),
    )


def item_to_staff_session(item: dict[str, Any]) -> StaffSession:
    """Map a `staff-sessions` item to a StaffSession."""
    return StaffSession(
        token=item["token"],
        staff_id=item["staff_id"],
        expires_at=parse_datetime(item["expires_at"]),
    )
