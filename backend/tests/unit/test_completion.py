"""Unit tests for agreement signing and the completion transaction."""

import base64
import datetime as dt
from collections.abc import Callable
from typing import Any

import pytest

from checkin_core.models import (
    Actor,
    ConflictError,
    ErrorCode,
    EventType,
    InvariantViolation,
    LaneSessionStatus,
    NotFoundError,
    RentalType,
    ResourceStatus,
    ResourceType,
    ValidationError,
    WaitlistStatus,
)
from checkin_core.services.completion import CompletionService, round_up_to_quarter_hour


class TestRoundUpToQuarterHour:
    @pytest.mark.parametrize(
        ("moment", "expected"),
        [
            (dt.datetime(2024, 6, 8, 20, 0), dt.datetime(2024, 6, 8, 20, 0)),
            (dt.datetime(2024, 6, 8, 20, 7), dt.datetime(2024, 6, 8, 20, 15)),
            (dt.datetime(2024, 6, 8, 20, 15), dt.datetime(2024, 6, 8, 20, 15)),
            (dt.datetime(2024, 6, 8, 20, 15, 1), dt.datetime(2024, 6, 8, 20, 30)),
            (dt.datetime(2024, 6, 8, 23, 50), dt.datetime(2024, 6, 9, 0, 0)),
        ],
    )
    def test_rounding(self, moment: dt.datetime, expected: dt.datetime) -> None:
        assert round_up_to_quarter_hour(moment) == expected


class TestSignAgreement:
    def test_first_available_room_becomes_occupied(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        reservations: Any,
        store: Any,
        db: Any,
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        ready = checkout_ready(RentalType.STANDARD)

        result = completion.sign_agreement("lane-1", signature_png, "STF-1", now=now)

        assert result["success"] is True
        assert result["blockType"] == "INITIAL"
        assert result["rentalType"] == "STANDARD"
        assert result["resourceType"] == "room"
        assert result["resourceNumber"] == "101"
        assert result["signatureMethod"] == "DIGITAL"
        assert result["startsAt"] == now.isoformat()
        assert result["endsAt"] == (now + dt.timedelta(hours=6)).isoformat()
        assert len(result["agreementPdfSha256"]) == 64

        room = store.get_resource(ResourceType.ROOM, "room-101")
        assert room.status == ResourceStatus.OCCUPIED
        assert room.assigned_to_customer_id == ready["customerId"]
        assert room.reserved_by_session_id is None
        assert "room-101" not in {r.resource_id for r in reservations.list_available(ResourceType.ROOM)}

        session = store.get_session(ready["sessionId"])
        assert session.status == LaneSessionStatus.COMPLETED
        assert session.visit_id == result["visitId"]
        assert store.get_lane_pointer("lane-1") is None
        assert store.get_visit(result["visitId"]).is_open

        signatures = db.scan("agreement-signatures")
        assert len(signatures) == 1
        assert signatures[0]["signature_png_base64"] == signature_png
        assert signatures[0]["checkin_block_id"] == result["blockId"]

    def test_reserved_resource_is_used(
        self,
        completion: CompletionService,
        assignment: Any,
        checkout_ready: Callable[..., dict[str, Any]],
        store: Any,
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        ready = checkout_ready(RentalType.STANDARD)
        assignment.assign("lane-1", ResourceType.ROOM, "room-103", "STF-1", now=now)

        result = completion.sign_agreement("lane-1", signature_png, now=now)

        assert result["resourceNumber"] == "103"
        room = store.get_resource(ResourceType.ROOM, "room-103")
        assert room.assigned_to_customer_id == ready["customerId"]
        assert room.reserved_by_session_id is None

    def test_reserved_resource_gone_dirty(
        self,
        completion: CompletionService,
        assignment: Any,
        checkout_ready: Callable[..., dict[str, Any]],
        make_room: Callable[..., Any],
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        checkout_ready(RentalType.STANDARD)
        assignment.assign("lane-1", ResourceType.ROOM, "room-102", "STF-1", now=now)
        make_room("102", status="DIRTY")

        with pytest.raises(ConflictError) as exc_info:
            completion.sign_agreement("lane-1", signature_png, now=now)
        assert exc_info.value.code == ErrorCode.RESOURCE_UNAVAILABLE

    def test_completion_events(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        bus: Any,
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        checkout_ready(RentalType.LOCKER)
        bus.events.clear()

        completion.sign_agreement("lane-1", signature_png, now=now)

        assert bus.types() == [
            EventType.ASSIGNMENT_CREATED,
            EventType.SESSION_UPDATED,
            EventType.INVENTORY_UPDATED,
        ]
        assert bus.events[0].payload["lockerNumber"] == "1"
        assert bus.events[-1].payload["available"]["LOCKER"] == 1

    def test_waitlist_entry_created(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        store: Any,
        bus: Any,
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        checkout_ready(RentalType.LOCKER, waitlist_desired_type=RentalType.SPECIAL)

        result = completion.sign_agreement("lane-1", signature_png, now=now)

        entries = store.waitlist_for_visit(result["visitId"])
        assert len(entries) == 1
        entry = entries[0]
        assert entry.desired_tier == RentalType.SPECIAL
        assert entry.backup_tier == RentalType.LOCKER
        assert entry.status == WaitlistStatus.ACTIVE
        assert entry.checkin_block_id == result["blockId"]
        assert entry.resource_assigned_initially == "locker-1"
        updated = bus.of_type(EventType.WAITLIST_UPDATED)
        assert updated[0].payload["waitlistId"] == entry.waitlist_id

    def test_no_resource_available(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        make_room: Callable[..., Any],
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        make_room("101", status="DIRTY")
        checkout_ready(RentalType.STANDARD)

        with pytest.raises(ConflictError) as exc_info:
            completion.sign_agreement("lane-1", signature_png, now=now)
        assert exc_info.value.code == ErrorCode.NO_RESOURCE_AVAILABLE

    def test_unpaid_session(
        self,
        completion: CompletionService,
        lanes: Any,
        selection: Any,
        payments: Any,
        make_customer: Callable[..., Any],
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        lanes.start("lane-1", None, customer_id=make_customer()["customer_id"], now=now)
        selection.propose("lane-1", RentalType.LOCKER, Actor.CUSTOMER, now=now)
        selection.confirm("lane-1", Actor.CUSTOMER, now=now)
        payments.create_payment_intent("lane-1", now=now)

        with pytest.raises(ValidationError) as exc_info:
            completion.sign_agreement("lane-1", signature_png, now=now)
        assert exc_info.value.code == ErrorCode.PAYMENT_NOT_PAID

    def test_session_not_ready(
        self,
        completion: CompletionService,
        lanes: Any,
        make_customer: Callable[..., Any],
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        lanes.start("lane-1", None, customer_id=make_customer()["customer_id"], now=now)

        with pytest.raises(NotFoundError):
            completion.sign_agreement("lane-1", signature_png, now=now)

    @pytest.mark.parametrize("signature", ["", "short", "!!!!not*base64!!!!"])
    def test_bad_signature_payload(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        inventory: None,
        signature: str,
        now: dt.datetime,
    ) -> None:
        checkout_ready(RentalType.LOCKER)

        with pytest.raises(ValidationError) as exc_info:
            completion.sign_agreement("lane-1", signature, now=now)
        assert exc_info.value.code == ErrorCode.SIGNATURE_INVALID

    def test_signature_that_is_not_an_image(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        store: Any,
        inventory: None,
        now: dt.datetime,
    ) -> None:
        ready = checkout_ready(RentalType.LOCKER)
        payload = base64.b64encode(b"definitely not a png image").decode()

        with pytest.raises(ValidationError) as exc_info:
            completion.sign_agreement("lane-1", payload, now=now)

        assert exc_info.value.code == ErrorCode.AGREEMENT_FAILED
        # Nothing was written
        assert store.get_session(ready["sessionId"]).status == (
            LaneSessionStatus.AWAITING_SIGNATURE
        )
        assert store.get_resource(ResourceType.LOCKER, "locker-1").status == ResourceStatus.CLEAN

    def test_cross_tier_room_needs_customer_answer(
        self,
        completion: CompletionService,
        assignment: Any,
        checkout_ready: Callable[..., dict[str, Any]],
        store: Any,
        db: Any,
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        ready = checkout_ready(RentalType.STANDARD)
        assignment.assign("lane-1", ResourceType.ROOM, "room-201", "STF-1", now=now)

        with pytest.raises(ValidationError) as signed:
            completion.sign_agreement("lane-1", signature_png, now=now)
        with pytest.raises(ValidationError) as overridden:
            completion.manual_override("lane-1", "STF-1", now=now)

        assert signed.value.code == ErrorCode.CUSTOMER_CONFIRMATION_PENDING
        assert overridden.value.code == ErrorCode.CUSTOMER_CONFIRMATION_PENDING
        room = store.get_resource(ResourceType.ROOM, "room-201")
        assert room.status == ResourceStatus.CLEAN
        assert room.assigned_to_customer_id is None
        assert store.get_session(ready["sessionId"]).status == (
            LaneSessionStatus.AWAITING_SIGNATURE
        )
        assert db.scan("agreement-signatures") == []

        assignment.customer_confirm("lane-1", ready["sessionId"], True, now=now)
        result = completion.sign_agreement("lane-1", signature_png, now=now)

        assert result["resourceNumber"] == "201"

    def test_candidate_taken_concurrently_is_skipped(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        reservations: Any,
        store: Any,
        make_room: Callable[..., Any],
        monkeypatch: pytest.MonkeyPatch,
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        ready = checkout_ready(RentalType.STANDARD)
        listed = reservations.candidates_for_new_checkin

        def candidates_then_lose_first(*args: Any, **kwargs: Any) -> list[Any]:
            candidates = listed(*args, **kwargs)
            # Another lane occupies room 101 between the read and the commit
            make_room("101", status="OCCUPIED", assigned_to_customer_id="CUS-OTHER")
            return candidates

        monkeypatch.setattr(reservations, "candidates_for_new_checkin", candidates_then_lose_first)

        result = completion.sign_agreement("lane-1", signature_png, now=now)

        assert result["resourceNumber"] == "102"
        assert store.get_resource(ResourceType.ROOM, "room-101").assigned_to_customer_id == (
            "CUS-OTHER"
        )
        assert store.get_resource(ResourceType.ROOM, "room-102").assigned_to_customer_id == (
            ready["customerId"]
        )
        assert len(store.blocks_for_session(ready["sessionId"])) == 1

    def test_inventory_count_failure_keeps_completed_checkin(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        reservations: Any,
        store: Any,
        bus: Any,
        monkeypatch: pytest.MonkeyPatch,
        inventory: None,
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        ready = checkout_ready(RentalType.LOCKER)

        def unavailable() -> dict[str, int]:
            raise RuntimeError("inventory scan failed")

        monkeypatch.setattr(reservations, "available_counts", unavailable)
        bus.events.clear()

        result = completion.sign_agreement("lane-1", signature_png, now=now)

        assert result["success"] is True
        assert store.get_session(ready["sessionId"]).status == LaneSessionStatus.COMPLETED
        assert EventType.INVENTORY_UPDATED not in bus.types()
        assert EventType.ASSIGNMENT_CREATED in bus.types()


class TestManualOverride:
    def test_manual_override_writes_audit(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        db: Any,
        inventory: None,
        now: dt.datetime,
    ) -> None:
        ready = checkout_ready(RentalType.DOUBLE)

        result = completion.manual_override("lane-1", "STF-1", now=now)

        assert result["signatureMethod"] == "MANUAL"
        assert result["resourceNumber"] == "201"
        audit = [e for e in db.scan("audit-log") if e["action"] == "MANUAL_SIGNATURE_OVERRIDE"]
        assert len(audit) == 1
        assert audit[0]["staff_id"] == "STF-1"
        assert audit[0]["session_id"] == ready["sessionId"]
        signature = db.scan("agreement-signatures")[0]
        assert signature["signature_method"] == "MANUAL"
        assert "signature_png_base64" not in signature


class TestRenewal:
    @pytest.fixture
    def visiting(
        self,
        db: Any,
        make_customer: Callable[..., Any],
        make_room: Callable[..., Any],
        now: dt.datetime,
    ) -> dict[str, Any]:
        """A customer in room 101 whose block ends 30 minutes from now."""
        customer = make_customer(dob="1980-01-01")
        make_room("101", status="OCCUPIED", assigned_to_customer_id=customer["customer_id"])
        ends_at = now + dt.timedelta(minutes=30)
        starts_at = ends_at - dt.timedelta(hours=6)
        db.put_item(
            "visits",
            {
                "visit_id": "VIS-1",
                "customer_id": customer["customer_id"],
                "started_at": starts_at.isoformat(),
            },
        )
        db.put_item(
            "checkin-blocks",
            {
                "block_id": "BLK-1",
                "visit_id": "VIS-1",
                "block_type": "INITIAL",
                "starts_at": starts_at.isoformat(),
                "ends_at": ends_at.isoformat(),
                "rental_type": "STANDARD",
                "resource_type": "room",
                "resource_id": "room-101",
                "resource_number": "101",
                "created_at": starts_at.isoformat(),
            },
        )
        return customer

    def _renew(
        self, lanes: Any, selection: Any, payments: Any, customer: dict[str, Any], hours: int,
        now: dt.datetime,
    ) -> None:
        lanes.start(
            "lane-1",
            "STF-1",
            customer_id=customer["customer_id"],
            visit_id="VIS-1",
            renewal_hours=hours,
            now=now,
        )
        selection.propose("lane-1", RentalType.STANDARD, Actor.EMPLOYEE, now=now)
        selection.confirm("lane-1", Actor.EMPLOYEE, now=now)
        intent = payments.create_payment_intent("lane-1", now=now)
        payments.mark_paid(intent["paymentIntentId"], now=now)

    def test_final_two_hours_extends_in_same_room(
        self,
        completion: CompletionService,
        lanes: Any,
        selection: Any,
        payments: Any,
        store: Any,
        visiting: dict[str, Any],
        signature_png: str,
        now: dt.datetime,
    ) -> None:
        self._renew(lanes, selection, payments, visiting, 2, now)

        result = completion.sign_agreement("lane-1", signature_png, now=now)

        assert result["blockType"] == "FINAL2H"
        assert result["visitId"] == "VIS-1"
        assert result["resourceNumber"] == "101"
        ends = now + dt.timedelta(minutes=30)
        assert result["startsAt"] == ends.isoformat()
        assert result["endsAt"] == (ends + dt.timedelta(hours=2)).isoformat()
        assert len(store.blocks_for_visit("VIS-1")) == 2

    def test_six_hour_renewal_starts_at_checkout(
        self,
        completion: CompletionService,
        lanes: Any,
        selection: Any,
        payments: Any,
        visiting: dict[str, Any],
        signature_png: str,
    ) -> None:
        moment = dt.datetime(2024, 6, 8, 20, 10, tzinfo=dt.UTC)
        self._renew(lanes, selection, payments, visiting, 6, moment)

        result = completion.sign_agreement("lane-1", signature_png, now=moment)

        assert result["blockType"] == "RENEWAL"
        assert result["startsAt"] == dt.datetime(2024, 6, 8, 20, 30, tzinfo=dt.UTC).isoformat()
        assert result["endsAt"] == dt.datetime(2024, 6, 9, 2, 30, tzinfo=dt.UTC).isoformat()

    def test_renewal_past_fourteen_hours(
        self,
        completion: CompletionService,
        lanes: Any,
        db: Any,
        visiting: dict[str, Any],
        now: dt.datetime,
    ) -> None:
        db.put_item(
            "checkin-blocks",
            {
                "block_id": "BLK-0",
                "visit_id": "VIS-1",
                "block_type": "INITIAL",
                "starts_at": (now - dt.timedelta(hours=11, minutes=30)).isoformat(),
                "ends_at": (now - dt.timedelta(hours=5, minutes=30)).isoformat(),
                "rental_type": "STANDARD",
                "created_at": (now - dt.timedelta(hours=11, minutes=30)).isoformat(),
            },
        )

        with pytest.raises(ValidationError) as exc_info:
            lanes.start(
                "lane-1",
                None,
                customer_id=visiting["customer_id"],
                visit_id="VIS-1",
                renewal_hours=6,
                now=now,
            )
        assert exc_info.value.code == ErrorCode.RENEWAL_NOT_ALLOWED


class TestVerifyOccupied:
    def test_clean_resource_is_an_invariant_violation(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        store: Any,
        inventory: None,
    ) -> None:
        ready = checkout_ready(RentalType.STANDARD)
        session = store.get_session(ready["sessionId"])
        customer = store.get_customer(ready["customerId"])

        with pytest.raises(InvariantViolation) as exc_info:
            completion.verify_occupied(session, customer, ResourceType.ROOM, "room-101")

        error = exc_info.value
        assert error.status_code == 500
        assert error.details["observedStatus"] == "CLEAN"
        assert error.details["resourceNumber"] == "101"
        assert error.details["sessionId"] == ready["sessionId"]

    def test_occupied_by_customer_passes(
        self,
        completion: CompletionService,
        checkout_ready: Callable[..., dict[str, Any]],
        store: Any,
        make_room: Callable[..., Any],
    ) -> None:
        ready = checkout_ready(RentalType.STANDARD)
        make_room("500", status="OCCUPIED", assigned_to_customer_id=ready["customerId"])

        completion.verify_occupied(
            store.get_session(ready["sessionId"]),
            store.get_customer(ready["customerId"]),
            ResourceType.ROOM,
            "room-500",
        )
