"""Unit tests for register-driven resource assignment."""

import datetime as dt
from collections.abc import Callable
from typing import Any

import pytest

from checkin_core.models import (
    Actor,
    ConflictError,
    ErrorCode,
    EventType,
    NotFoundError,
    RentalType,
    ResourceType,
    ValidationError,
)
from checkin_core.services.assignment import AssignmentService


@pytest.fixture
def locked(
    lanes: Any,
    selection: Any,
    make_customer: Callable[..., Any],
    inventory: None,
    now: dt.datetime,
) -> Callable[..., dict[str, Any]]:
    """Start a lane and lock a selection."""

    def _locked(rental_type: RentalType = RentalType.STANDARD, lane_id: str = "lane-1") -> dict[str, Any]:
        started = lanes.start(lane_id, "STF-1", customer_id=make_customer()["customer_id"], now=now)
        selection.propose(lane_id, rental_type, Actor.CUSTOMER, now=now)
        selection.confirm(lane_id, Actor.CUSTOMER, now=now)
        return started

    return _locked


class TestAssign:
    def test_assign_room_of_requested_tier(
        self,
        assignment: AssignmentService,
        bus: Any,
        db: Any,
        locked: Callable[..., dict[str, Any]],
        now: dt.datetime,
    ) -> None:
        started = locked()
        bus.events.clear()

        result = assignment.assign("lane-1", ResourceType.ROOM, "room-102", "STF-1", now=now)

        assert result == {
            "success": True,
            "sessionId": started["sessionId"],
            "resourceType": "room",
            "resourceId": "room-102",
            "needsConfirmation": False,
            "roomNumber": "102",
        }
        created = bus.of_type(EventType.ASSIGNMENT_CREATED)
        assert created[0].payload == {
            "sessionId": started["sessionId"],
            "rentalType": "STANDARD",
            "roomId": "room-102",
            "roomNumber": "102",
        }
        assert EventType.CUSTOMER_CONFIRMATION_REQUIRED not in bus.types()
        audit = db.scan("audit-log")
        assert audit[0]["action"] == "ASSIGN"
        assert audit[0]["staff_id"] == "STF-1"

    def test_assign_locker(
        self,
        assignment: AssignmentService,
        locked: Callable[..., dict[str, Any]],
        now: dt.datetime,
    ) -> None:
        locked(RentalType.LOCKER)

        result = assignment.assign("lane-1", ResourceType.LOCKER, "locker-2", None, now=now)

        assert result["resourceType"] == "locker"
        assert result["lockerNumber"] == "2"
        assert "roomNumber" not in result

    def test_cross_tier_requires_customer_confirmation(
        self,
        assignment: AssignmentService,
        bus: Any,
        locked: Callable[..., dict[str, Any]],
        now: dt.datetime,
    ) -> None:
        locked(RentalType.STANDARD)

        result = assignment.assign("lane-1", ResourceType.ROOM, "room-201", "STF-1", now=now)

        assert result["needsConfirmation"] is True
        required = bus.of_type(EventType.CUSTOMER_CONFIRMATION_REQUIRED)
        assert required[0].payload["requestedType"] == "STANDARD"
        assert required[0].payload["selectedType"] == "DOUBLE"
        assert required[0].payload["selectedNumber"] == "201"

    def test_race_loser_gets_assignment_failed(
        self,
        assignment: AssignmentService,
        bus: Any,
        store: Any,
        locked: Callable[..., dict[str, Any]],
        now: dt.datetime,
    ) -> None:
        winner = locked(lane_id="lane-1")
        loser = locked(lane_id="lane-2")
        assignment.assign("lane-1", ResourceType.ROOM, "room-101", "STF-1", now=now)
        bus.events.clear()

        with pytest.raises(ConflictError) as exc_info:
            assignment.assign("lane-2", ResourceType.ROOM, "room-101", "STF-2", now=now)

        assert exc_info.value.code == ErrorCode.RESOURCE_UNAVAILABLE
        failed = bus.of_type(EventType.ASSIGNMENT_FAILED)
        assert len(failed) == 1
        assert failed[0].lane_id == "lane-2"
        assert failed[0].payload["sessionId"] == loser["sessionId"]
        assert failed[0].payload["requestedRoomId"] == "room-101"
        assert failed[0].payload["raceLost"] is True
        assert store.get_resource(ResourceType.ROOM, "room-101").reserved_by_session_id == (
            winner["sessionId"]
        )

    def test_interleaved_assigns_have_one_winner(
        self,
        assignment: AssignmentService,
        bus: Any,
        store: Any,
        locked: Callable[..., dict[str, Any]],
        monkeypatch: pytest.MonkeyPatch,
        now: dt.datetime,
    ) -> None:
        winner = locked(lane_id="lane-1")
        loser = locked(lane_id="lane-2")
        free_room = [store.get_resource(ResourceType.ROOM, "room-101")]
        assignment.assign("lane-1", ResourceType.ROOM, "room-101", "STF-1", now=now)
        read_resource = store.get_resource

        def resource_before_winner(resource_type: ResourceType, resource_id: str) -> Any:
            return free_room.pop() if free_room else read_resource(resource_type, resource_id)

        monkeypatch.setattr(store, "get_resource", resource_before_winner)
        bus.events.clear()

        with pytest.raises(ConflictError) as exc_info:
            assignment.assign("lane-2", ResourceType.ROOM, "room-101", "STF-2", now=now)

        assert exc_info.value.code == ErrorCode.RESOURCE_UNAVAILABLE
        assert exc_info.value.status_code == 409
        assert free_room == []
        assert bus.types() == [EventType.ASSIGNMENT_FAILED]
        assert bus.events[0].payload["sessionId"] == loser["sessionId"]
        assert read_resource(ResourceType.ROOM, "room-101").reserved_by_session_id == (
            winner["sessionId"]
        )
        assert store.get_session(loser["sessionId"]).assigned_resource_id is None

    def test_assignment_before_lock_is_cross_tier_against_proposal(
        self,
        assignment: AssignmentService,
        bus: Any,
        lanes: Any,
        selection: Any,
        make_customer: Callable[..., Any],
        inventory: None,
        now: dt.datetime,
    ) -> None:
        lanes.start("lane-1", None, customer_id=make_customer()["customer_id"], now=now)
        selection.propose("lane-1", RentalType.STANDARD, Actor.CUSTOMER, now=now)

        result = assignment.assign("lane-1", ResourceType.ROOM, "room-201", "STF-1", now=now)

        assert result["needsConfirmation"] is True
        required = bus.of_type(EventType.CUSTOMER_CONFIRMATION_REQUIRED)
        assert required[0].payload["requestedType"] == "STANDARD"

    def test_assignment_allowed_before_selection(
        self,
        assignment: AssignmentService,
        lanes: Any,
        make_customer: Callable[..., Any],
        inventory: None,
        now: dt.datetime,
    ) -> None:
        lanes.start("lane-1", None, customer_id=make_customer()["customer_id"], now=now)

        result = assignment.assign("lane-1", ResourceType.LOCKER, "locker-1", None, now=now)

        assert result["needsConfirmation"] is False

    def test_no_live_session(self, assignment: AssignmentService, dynamodb: Any) -> None:
        with pytest.raises(NotFoundError):
            assignment.assign("lane-1", ResourceType.ROOM, "room-101", None)

    def test_dirty_room(
        self,
        assignment: AssignmentService,
        make_room: Callable[..., Any],
        locked: Callable[..., dict[str, Any]],
        now: dt.datetime,
    ) -> None:
        make_room("150", status="CLEANING")
        locked()

        with pytest.raises(ValidationError) as exc_info:
            assignment.assign("lane-1", ResourceType.ROOM, "room-150", None, now=now)
        assert exc_info.value.code == ErrorCode.RESOURCE_NOT_CLEAN


class TestCustomerConfirm:
    def test_accept_clears_confirmation_flag(
        self,
        assignment: AssignmentService,
        store: Any,
        bus: Any,
        locked: Callable[..., dict[str, Any]],
        now: dt.datetime,
    ) -> None:
        started = locked()
        assignment.assign("lane-1", ResourceType.ROOM, "room-301", "STF-1", now=now)

        result = assignment.customer_confirm("lane-1", started["sessionId"], True, now=now)

        assert result == {"success": True, "confirmed": True}
        session = store.get_session(started["sessionId"])
        assert session.needs_customer_confirmation is False
        assert session.assigned_resource_id == "room-301"
        confirmed = bus.of_type(EventType.CUSTOMER_CONFIRMED)[0]
        assert confirmed.payload == {
            "sessionId": started["sessionId"],
            "confirmedType": "SPECIAL",
            "confirmedNumber": "301",
        }

    def test_decline_releases_reservation(
        self,
        assignment: AssignmentService,
        store: Any,
        bus: Any,
        locked: Callable[..., dict[str, Any]],
        now: dt.datetime,
    ) -> None:
        started = locked()
        assignment.assign("lane-1", ResourceType.ROOM, "room-201", "STF-1", now=now)

        result = assignment.customer_confirm("lane-1", started["sessionId"], False, now=now)

        assert result == {"success": True, "confirmed": False}
        session = store.get_session(started["sessionId"])
        assert session.assigned_resource_id is None
        assert store.get_resource(ResourceType.ROOM, "room-201").reserved_by_session_id is None
        declined = bus.of_type(EventType.CUSTOMER_DECLINED)[0]
        assert declined.payload["requestedType"] == "STANDARD"
        inventory = bus.of_type(EventType.INVENTORY_UPDATED)[0]
        assert inventory.payload["available"]["DOUBLE"] == 1

    def test_confirm_without_assignment(
        self,
        assignment: AssignmentService,
        locked: Callable[..., dict[str, Any]],
    ) -> None:
        started = locked()
        with pytest.raises(ValidationError) as exc_info:
            assignment.customer_confirm("lane-1", started["sessionId"], True)
        assert exc_info.value.code == ErrorCode.INVALID_STATE

    def test_session_on_other_lane(
        self,
        assignment: AssignmentService,
        locked: Callable[..., dict[str, Any]],
    ) -> None:
        started = locked()
        with pytest.raises(NotFoundError):
            assignment.customer_confirm("lane-9", started["sessionId"], True)
