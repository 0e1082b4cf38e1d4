"""Inventory availability endpoint."""

from typing import Any

from fastapi import APIRouter, Depends

from checkin_api.dependencies import get_reservation_engine
from checkin_api.security import AuthScope, Principal, require_auth
from checkin_core.services.reservation import ReservationEngine

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/available", summary="Available resources per tier")
def available_inventory(
    auth: Principal = Depends(require_auth(AuthScope.LANE)),
    engine: ReservationEngine = Depends(get_reservation_engine),
) -> dict[str, Any]:
    """Counts use the same availability predicate as assignment.

    Reads are unlocked and may be stale; assignment re-validates.
    """
    return {"rooms": engine.available_counts()}
