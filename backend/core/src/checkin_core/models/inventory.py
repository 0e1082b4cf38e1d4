"""Rooms and lockers."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import RentalType, ResourceStatus, ResourceType
from .items import parse_datetime

# Table and key attribute per resource type
RESOURCE_TABLES: dict[ResourceType, tuple[str, str]] = {
    ResourceType.ROOM: ("rooms", "room_id"),
    ResourceType.LOCKER: ("lockers", "locker_id"),
}


class Resource(BaseModel):
    """A physical room or locker.

    Available iff status is CLEAN, it is not assigned to a customer and no
    non-terminal lane session holds it (`reserved_by_session_id`).
    """

    model_config = ConfigDict(strict=True)

    resource_type: ResourceType
    resource_id: str
    number: str = Field(..., description="Number shown to customers")
    tier: RentalType
    status: ResourceStatus
    assigned_to_customer_id: str | None = None
    reserved_by_session_id: str | None = Field(
        default=None, description="Lane session holding a soft reservation"
    )
    last_status_change: dt.datetime | None = None

    @property
    def sort_key(self) -> tuple[int, str]:
        """Order by numeric room number, then text."""
        digits = "".join(ch for ch in self.number if ch.isdigit())
        return (int(digits) if digits else 0, self.number)


def item_to_resource(resource_type: ResourceType, item: dict[str, Any]) -> Resource:
    """Map a `rooms` or `lockers` item to a Resource."""
    _, key_name = RESOURCE_TABLES[resource_type]
    tier = item.get("tier")
    if resource_type == ResourceType.LOCKER and not tier:
        tier = RentalType.LOCKER.value
    return Resource(
        resource_type=resource_type,
        resource_id=item[key_name],
        number=str(item["number"]),
        tier=RentalType(tier),
        status=ResourceStatus(item["status"]),
        assigned_to_customer_id=item.get("assigned_to_customer_id"),
        reserved_by_session_id=item.get("reserved_by_session_id"),
        last_status_change=parse_datetime(item.get("last_status_change")),
    )


def resource_key(resource_type: ResourceType, resource_id: str) -> dict[str, str]:
    """Primary key for a resource item."""
    _, key_name = RESOURCE_TABLES[resource_type]
    return {key_name: resource_id}
