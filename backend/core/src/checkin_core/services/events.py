"""Lane event bus.

Check-in services publish state-change notifications here; WebSocket
subscribers (kiosk, employee register, office dashboard) receive them. The
bus is constructed explicitly and started/stopped with the application
lifespan, then handed to the services that publish.

Publishing is fire-and-forget: `publish()` only enqueues onto the bus
loop's queue and never raises, so a committed check-in never depends on
the broadcaster's availability or speed.
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from checkin_core.models.enums import EventType
from checkin_core.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class LaneEvent:
    """One notification published on the bus."""

    type: EventType
    payload: dict[str, Any]
    lane_id: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_message(self) -> dict[str, Any]:
        """JSON message sent to WebSocket clients."""
        return {
            "type": self.type.value,
            "laneId": self.lane_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


class Subscription:
    """A subscriber's bounded inbox.

    Lane-scoped subscriptions receive events for their lane plus global
    events (lane_id None). When the inbox is full the oldest event is dropped.
    """

    def __init__(self, bus: "EventBus", lane_id: str | None, maxsize: int = 100) -> None:
        self.bus = bus
        self.lane_id = lane_id
        self.queue: asyncio.Queue[LaneEvent] = asyncio.Queue(maxsize=maxsize)

    def wants(self, event: LaneEvent) -> bool:
        return self.lane_id is None or event.lane_id is None or event.lane_id == self.lane_id

    def offer(self, event: LaneEvent) -> None:
        if self.queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self.queue.get_nowait()
            logger.warning("Subscriber inbox full; dropped oldest event (lane=%s)", self.lane_id)
        self.queue.put_nowait(event)

    async def get(self) -> LaneEvent:
        return await self.queue.get()

    def close(self) -> None:
        self.bus.unsubscribe(self)


class EventBus:
    """Queue-based publish/subscribe hub bound to one asyncio loop."""

    def __init__(self, max_pending: int = 1000) -> None:
        self._max_pending = max_pending
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[LaneEvent] | None = None
        self._task: asyncio.Task[None] | None = None
        self._subscriptions: set[Subscription] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Bind to the running loop and start dispatching."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._max_pending)
        self._task = asyncio.create_task(self._dispatch(self._queue), name="lane-event-bus")
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop dispatching; pending events are discarded."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._subscriptions.clear()
        logger.info("Event bus stopped")

    def publish(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        lane_id: str | None = None,
    ) -> None:
        """Enqueue an event. Never blocks and never raises.

        Safe to call from worker threads as well as from the loop thread.
        """
        event = LaneEvent(type=event_type, payload=payload, lane_id=lane_id)
        if not self.running or self._loop is None:
            logger.debug("Event bus not running; dropping %s", event_type.value)
            return
        try:
            self._loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError as exc:
            # Loop closed underneath us (shutdown)
            logger.warning("Failed to publish %s: %s", event_type.value, exc)

    def subscribe(self, lane_id: str | None = None, maxsize: int = 100) -> Subscription:
        """Register a subscriber. Call from the loop thread."""
        subscription = Subscription(self, lane_id, maxsize=maxsize)
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _enqueue(self, event: LaneEvent) -> None:
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event bus queue full; dropped %s", event.type.value)

    async def _dispatch(self, queue: asyncio.Queue[LaneEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                for subscription in list(self._subscriptions):
                    if subscription.wants(event):
                        subscription.offer(event)
            except Exception:
                # Broadcast failures are logged and ignored
                logger.exception("Failed to deliver %s", event.type.value)
            finally:
                queue.task_done()
