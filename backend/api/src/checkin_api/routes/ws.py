"""WebSocket feed of lane events.

Kiosk, register and office dashboard clients subscribe per lane. The current
session snapshot is sent on connect; after that every event published for the
lane (and every global event) is forwarded as it happens.
"""

import asyncio
import contextlib

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool
from starlette.status import WS_1008_POLICY_VIOLATION

from checkin_api.dependencies import get_event_bus, get_lane_session_service, get_staff_service
from checkin_api.security import AuthScope, authenticate
from checkin_core.models import AuthError, EventType
from checkin_core.services.events import EventBus, LaneEvent, Subscription
from checkin_core.services.lane_sessions import LaneSessionService
from checkin_core.services.staff import StaffService
from checkin_core.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["events"])


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await subscription.get()
        await websocket.send_json(event.to_message())


@router.websocket("/ws/lanes/{lane_id}")
async def lane_events(
    websocket: WebSocket,
    lane_id: str,
    token: str | None = Query(default=None),
    kiosk_token: str | None = Query(default=None, alias="kioskToken"),
    bus: EventBus = Depends(get_event_bus),
    sessions: LaneSessionService = Depends(get_lane_session_service),
    staff_service: StaffService = Depends(get_staff_service),
) -> None:
    """Stream lane events. Authenticate with `?token=` (staff) or `?kioskToken=`."""
    try:
        await run_in_threadpool(
            authenticate,
            staff_service,
            f"Bearer {token}" if token else None,
            kiosk_token,
            AuthScope.LANE,
        )
    except AuthError:
        await websocket.close(code=WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = bus.subscribe(lane_id)
    forward = asyncio.create_task(_forward(websocket, subscription))
    logger.info("Lane %s subscriber connected (%d total)", lane_id, bus.subscriber_count)
    try:
        snapshot = await run_in_threadpool(sessions.snapshot, lane_id)
        if snapshot is not None:
            await websocket.send_json(
                LaneEvent(EventType.SESSION_UPDATED, snapshot, lane_id).to_message()
            )
        while True:
            # Client messages are keep-alives only
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        forward.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await forward
        subscription.close()
        logger.info("Lane %s subscriber disconnected", lane_id)
