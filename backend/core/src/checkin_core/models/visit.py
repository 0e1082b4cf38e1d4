"""Visits, check-in blocks, waitlist entries and signature records."""

import datetime as dt
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import BlockType, RentalType, ResourceType, SignatureMethod, WaitlistStatus
from .items import compact, iso, parse_datetime


class Visit(BaseModel):
    """A customer's continuous stay, spanning one or more blocks."""

    model_config = ConfigDict(strict=True)

    visit_id: str
    customer_id: str
    started_at: dt.datetime
    ended_at: dt.datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class CheckinBlock(BaseModel):
    """One paid, signed stretch of a visit in a specific resource."""

    model_config = ConfigDict(strict=True)

    block_id: str
    visit_id: str
    session_id: str | None = None
    block_type: BlockType
    starts_at: dt.datetime
    ends_at: dt.datetime
    rental_type: RentalType
    resource_type: ResourceType | None = None
    resource_id: str | None = None
    resource_number: str | None = None
    agreement_signed: bool = False
    agreement_signed_at: dt.datetime | None = None
    agreement_pdf_sha256: str | None = Field(
        default=None, description="Digest of the generated agreement PDF"
    )
    signature_method: SignatureMethod | None = None
    waitlist_id: str | None = None
    created_at: dt.datetime

    @property
    def hours(self) -> float:
        return (self.ends_at - self.starts_at).total_seconds() / 3600


class WaitlistEntry(BaseModel):
    """Demand for a higher tier by a customer who accepted a lesser one."""

    model_config = ConfigDict(strict=True)

    waitlist_id: str
    visit_id: str
    checkin_block_id: str
    desired_tier: RentalType
    backup_tier: RentalType
    resource_assigned_initially: str | None = None
    room_id: str | None = Field(default=None, description="Room offered to this entry")
    status: WaitlistStatus
    created_at: dt.datetime


def item_to_visit(item: dict[str, Any]) -> Visit:
    """Map a `visits` item to a Visit."""
    return Visit(
        visit_id=item["visit_id"],
        customer_id=item["customer_id"],
        started_at=parse_datetime(item["started_at"]),
        ended_at=parse_datetime(item.get("ended_at")),
    )


def item_to_block(item: dict[str, Any]) -> CheckinBlock:
    """Map a `checkin-blocks` item to a CheckinBlock."""
    resource_type = item.get("resource_type")
    method = item.get("signature_method")
    return CheckinBlock(
        block_id=item["block_id"],
        visit_id=item["visit_id"],
        session_id=item.get("session_id"),
        block_type=BlockType(item["block_type"]),
        starts_at=parse_datetime(item["starts_at"]),
        ends_at=parse_datetime(item["ends_at"]),
        rental_type=RentalType(item["rental_type"]),
        resource_type=ResourceType(resource_type) if resource_type else None,
        resource_id=item.get("resource_id"),
        resource_number=item.get("resource_number"),
        agreement_signed=bool(item.get("agreement_signed", False)),
        agreement_signed_at=parse_datetime(item.get("agreement_signed_at")),
        agreement_pdf_sha256=item.get("agreement_pdf_sha256"),
        signature_method=SignatureMethod(method) if method else None,
        waitlist_id=item.get("waitlist_id"),
        created_at=parse_datetime(item["created_at"]),
    )


def item_to_waitlist_entry(item: dict[str, Any]) -> WaitlistEntry:
    """Map a `waitlist` item to a WaitlistEntry."""
    return WaitlistEntry(
        waitlist_id=item["waitlist_id"],
        visit_id=item["visit_id"],
        checkin_block_id=item["checkin_block_id"],
        desired_tier=RentalType(item["desired_tier"]),
        backup_tier=RentalType(item["backup_tier"]),
        resource_assigned_initially=item.get("resource_assigned_initially"),
        room_id=item.get("room_id"),
        status=WaitlistStatus(item["status"]),
        created_at=parse_datetime(item["created_at"]),
    )


def visit_to_item(visit: Visit) -> dict[str, Any]:
    """Map a Visit to a `visits` item."""
    return compact(
        {
            "visit_id": visit.visit_id,
            "customer_id": visit.customer_id,
            "started_at": iso(visit.started_at),
            "ended_at": iso(visit.ended_at),
        }
    )


def block_to_item(block: CheckinBlock) -> dict[str, Any]:
    """Map a CheckinBlock to a `checkin-blocks` item."""
    return compact(
        {
            "block_id": block.block_id,
            "visit_id": block.visit_id,
            "session_id": block.session_id,
            "block_type": block.block_type.value,
            "starts_at": iso(block.starts_at),
            "ends_at": iso(block.ends_at),
            "rental_type": block.rental_type.value,
            "resource_type": block.resource_type.value if block.resource_type else None,
            "resource_id": block.resource_id,
            "resource_number": block.resource_number,
            "agreement_signed": block.agreement_signed,
            "agreement_signed_at": iso(block.agreement_signed_at),
            "agreement_pdf_sha256": block.agreement_pdf_sha256,
            "signature_method": block.signature_method.value if block.signature_method else None,
            "waitlist_id": block.waitlist_id,
            "created_at": iso(block.created_at),
        }
    )


def waitlist_entry_to_item(entry: WaitlistEntry) -> dict[str, Any]:
    """Map a WaitlistEntry to a `waitlist` item."""
    return compact(
        {
            "waitlist_id": entry.waitlist_id,
            "visit_id": entry.visit_id,
            "checkin_block_id": entry.checkin_block_id,
            "desired_tier": entry.desired_tier.value,
            "backup_tier": entry.backup_tier.value,
            "resource_assigned_initially": entry.resource_assigned_initially,
            "room_id": entry.room_id,
            "status": entry.status.value,
            "created_at": iso(entry.created_at),
        }
    )
