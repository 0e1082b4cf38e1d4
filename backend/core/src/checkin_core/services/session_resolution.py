"""Resolving which lane session a kiosk request refers to.

Kiosks can fall out of sync with the server (stale session id after a
reconnect). Callers that accept a client-supplied session id resolve it
through a SessionResolutionStrategy so the best-effort recovery path can be
swapped or removed without touching the call sites.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from checkin_core.models import LaneSession
from checkin_core.utils.logging import get_logger

if TYPE_CHECKING:
    from .store import CheckinStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionLookup:
    """What the client told us about the session it is acting on."""

    lane_id: str
    session_id: str | None = None
    customer_name: str | None = None


class SessionResolutionStrategy(ABC):
    """Maps a SessionLookup to a non-terminal lane session, or None."""

    @abstractmethod
    def resolve(self, store: "CheckinStore", lookup: SessionLookup) -> LaneSession | None:
        """Return the session, or None if this strategy cannot resolve it."""


class ExplicitIdResolution(SessionResolutionStrategy):
    """Session id when given and on the lane, else the lane's live session."""

    def resolve(self, store: "CheckinStore", lookup: SessionLookup) -> LaneSession | None:
        if lookup.session_id is None:
            return store.get_live_session(lookup.lane_id)
        session = store.get_session(lookup.session_id)
        if session is None or session.is_terminal or session.lane_id != lookup.lane_id:
            return None
        return session


class DisplayNameFallbackResolution(SessionResolutionStrategy):
    """Newest non-terminal session on the lane with the given display name.

    Two customers sharing a display name on one lane are indistinguishable
    here; the newest session wins.
    """

    def resolve(self, store: "CheckinStore", lookup: SessionLookup) -> LaneSession | None:
        if not lookup.session_id or not lookup.customer_name:
            return None
        for session in store.lane_sessions(lookup.lane_id, newest_first=True):
            if session.is_terminal:
                continue
            if session.customer_display_name == lookup.customer_name:
                logger.warning(
                    "Session %s not found; resolved %s by display name on lane %s",
                    lookup.session_id,
                    session.session_id,
                    lookup.lane_id,
                )
                return session
        return None


class ChainedResolution(SessionResolutionStrategy):
    """First strategy that resolves wins."""

    def __init__(self, *strategies: SessionResolutionStrategy) -> None:
        self.strategies = strategies

    def resolve(self, store: "CheckinStore", lookup: SessionLookup) -> LaneSession | None:
        for strategy in self.strategies:
            session = strategy.resolve(store, lookup)
            if session is not None:
                return session
        return None


def default_resolution() -> SessionResolutionStrategy:
    return ChainedResolution(ExplicitIdResolution(), DisplayNameFallbackResolution())
