"""Shared plumbing for services that mutate lane sessions."""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from checkin_core.models import (
    Actor,
    AuthError,
    Customer,
    ErrorCode,
    EventType,
    LaneSession,
    ValidationError,
)
from checkin_core.utils.logging import get_logger

from .snapshot import SessionSnapshotBuilder

if TYPE_CHECKING:
    from .events import EventBus
    from .store import CheckinStore

logger = get_logger(__name__)


class LaneService:
    """Base for the lane session services.

    Holds the store and the event bus handle. Publishing runs after the
    write has committed and never raises: a failure to build or send an
    event is logged and the mutation still succeeds.
    """

    def __init__(self, store: "CheckinStore", bus: "EventBus") -> None:
        self.store = store
        self.db = store.db
        self.bus = bus
        self.snapshots = SessionSnapshotBuilder(store)

    def publish(self, event_type: EventType, payload: dict[str, Any], lane_id: str) -> None:
        try:
            self.bus.publish(event_type, payload, lane_id)
        except Exception:
            logger.warning(
                "Failed to publish %s on %s", event_type.value, lane_id, exc_info=True
            )

    def publish_computed(
        self,
        event_type: EventType,
        build: Callable[[], dict[str, Any]],
        lane_id: str,
    ) -> None:
        """Publish a payload that needs fresh reads to build."""
        try:
            payload = build()
        except Exception:
            logger.warning(
                "Failed to build %s for %s", event_type.value, lane_id, exc_info=True
            )
            return
        self.publish(event_type, payload, lane_id)

    def broadcast_session(self, session_id: str) -> None:
        """Rebuild and publish the full SESSION_UPDATED snapshot."""
        try:
            self.snapshots.publish(self.bus, session_id)
        except Exception:
            logger.warning("Failed to broadcast session %s", session_id, exc_info=True)

    def require_session_customer(self, session: LaneSession) -> Customer:
        if not session.customer_id:
            raise ValidationError(ErrorCode.INVALID_STATE, "Session has no customer")
        return self.store.require_customer(session.customer_id)

    def check_past_due(self, session: LaneSession, customer: Customer, actor: Actor) -> None:
        """Customer-initiated actions are blocked by an unbypassed balance."""
        if (
            actor == Actor.CUSTOMER
            and customer.past_due_balance > 0
            and not session.past_due_bypassed
        ):
            raise AuthError(
                ErrorCode.PAST_DUE_BLOCKED,
                "Past-due balance must be addressed before selection",
                details={"pastDueBalance": customer.past_due_balance},
            )
