"""Waitlist position and ETA for an unavailable room tier."""

import datetime as dt
from typing import TYPE_CHECKING, Any

from checkin_core.models import ErrorCode, RentalType, ResourceType, ValidationError, WaitlistStatus
from checkin_core.models.enums import ROOM_TIERS
from checkin_core.models.items import iso, utcnow

if TYPE_CHECKING:
    from .store import CheckinStore

# Turnover allowance after a block ends before the room is ready again
READY_BUFFER = dt.timedelta(minutes=15)


class WaitlistService:
    """Read-only waitlist estimates."""

    def __init__(self, store: "CheckinStore") -> None:
        self.store = store

    def position(self, tier: RentalType) -> int:
        """1-based position a new entry for `tier` would take."""
        return len(self.store.waitlist_for_tier(tier, {WaitlistStatus.ACTIVE})) + 1

    def estimated_ready_at(
        self, tier: RentalType, position: int, now: dt.datetime
    ) -> dt.datetime | None:
        """End of the N-th upcoming block in a room of `tier`, plus the buffer.

        Only blocks of open visits count. The tier is the room's, not the
        block's rental type, since cross-tier assignments exist.
        """
        blocks = self.store.upcoming_room_blocks(now)
        if not blocks:
            return None
        room_tiers = {
            room.resource_id: room.tier for room in self.store.list_resources(ResourceType.ROOM)
        }
        open_visits = {
            visit.visit_id
            for visit in self.store.get_visits({block.visit_id for block in blocks})
            if visit.is_open
        }
        matches = [
            block
            for block in blocks
            if block.visit_id in open_visits and room_tiers.get(block.resource_id or "") == tier
        ]
        if len(matches) < position:
            return None
        return matches[position - 1].ends_at + READY_BUFFER

    def info(self, tier: RentalType, now: dt.datetime | None = None) -> dict[str, Any]:
        """Position and ETA for a desired room tier.

        Raises:
            ValidationError: Tier is not a room tier
        """
        now = now or utcnow()
        if tier not in ROOM_TIERS:
            raise ValidationError(ErrorCode.INVALID_REQUEST, "Waitlist is only for room tiers")
        position = self.position(tier)
        return {
            "desiredTier": tier.value,
            "position": position,
            "estimatedReadyAt": iso(self.estimated_ready_at(tier, position, now)),
        }
