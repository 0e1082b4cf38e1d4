"""Pytest configuration and fixtures for the lane check-in backend tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (all check-in tables and their GSIs)
- A recording event bus that captures published lane events
- Seed data factories (customers, rooms, lockers, staff)
- Service instances and an API test client
"""

import datetime as dt
import os
from collections.abc import Callable, Generator
from typing import Any

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-clubops")
os.environ.setdefault("KIOSK_TOKEN", "test-kiosk-token")

# Only set fake credentials for moto if no real credentials are present
if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from checkin_core.models import EventType, StaffRole  # noqa: E402
from checkin_core.services.events import EventBus, LaneEvent  # noqa: E402

TABLE_PREFIX = os.environ["DYNAMODB_TABLE_PREFIX"]

# Saturday 2024-06-08 20:00 UTC: regular (non-discount) pricing
NOW = dt.datetime(2024, 6, 8, 20, 0, tzinfo=dt.UTC)

LANE = "lane-1"

# 1x1 transparent PNG
SIGNATURE_PNG = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

AAMVA_SCAN = (
    "@\n\x1e\rANSI 636014080102DL00410288ZC03290024DLDAQD1234567\n"
    "DCSDOE\nDACJOHN\nDBB19800115\nDBA20300115\nDAJCA\n"
)

# (table, hash key, [(index name, hash key, range key or None)])
TABLES: list[tuple[str, str, list[tuple[str, str, str | None]]]] = [
    (
        "customers",
        "customer_id",
        [
            ("membership_number-index", "membership_number", None),
            ("dob-index", "dob", None),
            ("id_scan_hash-index", "id_scan_hash", None),
            ("id_scan_value-index", "id_scan_value", None),
        ],
    ),
    ("lanes", "lane_id", []),
    ("lane-sessions", "session_id", [("lane_id-index", "lane_id", "created_at")]),
    ("rooms", "room_id", [("tier-index", "tier", None)]),
    ("lockers", "locker_id", []),
    (
        "payment-intents",
        "payment_intent_id",
        [("lane_session_id-index", "lane_session_id", None)],
    ),
    ("visits", "visit_id", [("customer_id-index", "customer_id", None)]),
    (
        "checkin-blocks",
        "block_id",
        [("visit_id-index", "visit_id", None), ("session_id-index", "session_id", None)],
    ),
    (
        "waitlist",
        "waitlist_id",
        [
            ("desired_tier-index", "desired_tier", None),
            ("status-index", "status", None),
            ("visit_id-index", "visit_id", None),
        ],
    ),
    ("agreement-signatures", "signature_id", []),
    ("staff", "staff_id", []),
    ("staff-sessions", "token", []),
    ("audit-log", "audit_id", []),
]


class RecordingEventBus(EventBus):
    """EventBus that keeps every published event instead of dispatching."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[LaneEvent] = []

    def publish(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        lane_id: str | None = None,
    ) -> None:
        self.events.append(LaneEvent(type=event_type, payload=payload, lane_id=lane_id))

    def of_type(self, event_type: EventType) -> list[LaneEvent]:
        return [event for event in self.events if event.type == event_type]

    def types(self) -> list[EventType]:
        return [event.type for event in self.events]


def _create_table(client: Any, table: str, key: str, indexes: list[tuple[str, str, str | None]]) -> None:
    attributes = {key}
    gsis = []
    for index_name, hash_key, range_key in indexes:
        key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
        attributes.add(hash_key)
        if range_key:
            key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
            attributes.add(range_key)
        gsis.append(
            {
                "IndexName": index_name,
                "KeySchema": key_schema,
                "Projection": {"ProjectionType": "ALL"},
            }
        )
    params: dict[str, Any] = {
        "TableName": f"{TABLE_PREFIX}-{table}",
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": name, "AttributeType": "S"} for name in sorted(attributes)
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if gsis:
        params["GlobalSecondaryIndexes"] = gsis
    client.create_table(**params)


# === DynamoDB Fixtures ===


@pytest.fixture(autouse=True)
def reset_service_singletons() -> Generator[None, None, None]:
    """Reset cached services and the DynamoDB singleton around each test.

    Tests using mock_aws get a fresh service instance inside the mock
    context rather than reusing one from a previous test.
    """
    from checkin_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb(aws_credentials: None) -> Generator[Any, None, None]:
    """Mocked DynamoDB with every check-in table created."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        for table, key, indexes in TABLES:
            _create_table(client, table, key, indexes)
        yield client


@pytest.fixture
def db(dynamodb: Any) -> Any:
    from checkin_core.services.dynamodb import get_dynamodb_service

    return get_dynamodb_service()


@pytest.fixture
def store(db: Any) -> Any:
    from checkin_core.services.store import CheckinStore

    return CheckinStore(db)


@pytest.fixture
def bus() -> RecordingEventBus:
    return RecordingEventBus()


# === Seed Data ===


@pytest.fixture
def make_customer(db: Any) -> Callable[..., dict[str, Any]]:
    """Insert a customer item and return it."""
    counter = iter(range(1, 10_000))

    def _make(**overrides: Any) -> dict[str, Any]:
        n = next(counter)
        item: dict[str, Any] = {
            "customer_id": f"CUS-{n:04d}",
            "name": f"Customer {n}",
            "past_due_balance": 0,
            "created_at": (NOW - dt.timedelta(days=30, minutes=n)).isoformat(),
        }
        item.update(overrides)
        item = {key: value for key, value in item.items() if value is not None}
        db.put_item("customers", item)
        return item

    return _make


@pytest.fixture
def make_room(db: Any) -> Callable[..., dict[str, Any]]:
    def _make(number: str, tier: str = "STANDARD", status: str = "CLEAN", **extra: Any) -> dict[str, Any]:
        item = {"room_id": f"room-{number}", "number": number, "tier": tier, "status": status}
        item.update(extra)
        db.put_item("rooms", item)
        return item

    return _make


@pytest.fixture
def make_locker(db: Any) -> Callable[..., dict[str, Any]]:
    def _make(number: str, status: str = "CLEAN", **extra: Any) -> dict[str, Any]:
        item = {"locker_id": f"locker-{number}", "number": number, "status": status}
        item.update(extra)
        db.put_item("lockers", item)
        return item

    return _make


@pytest.fixture
def inventory(make_room: Callable[..., Any], make_locker: Callable[..., Any]) -> None:
    """Three standard rooms, one double, one special and two lockers."""
    make_room("101")
    make_room("102")
    make_room("103")
    make_room("201", tier="DOUBLE")
    make_room("301", tier="SPECIAL")
    make_locker("1")
    make_locker("2")


# === Services ===


@pytest.fixture
def staff_service(db: Any) -> Any:
    from checkin_core.services.staff import StaffService

    return StaffService(db)


@pytest.fixture
def staff_member(staff_service: Any) -> Any:
    return staff_service.create_staff("STF-1", "Alex Register", "1234", StaffRole.STAFF)


@pytest.fixture
def manager(staff_service: Any) -> Any:
    return staff_service.create_staff("MGR-1", "Sam Manager", "654321", StaffRole.ADMIN)


@pytest.fixture
def lanes(store: Any, bus: RecordingEventBus, staff_service: Any) -> Any:
    from checkin_core.services.lane_sessions import LaneSessionService

    return LaneSessionService(store, bus, staff=staff_service)


@pytest.fixture
def selection(store: Any, bus: RecordingEventBus) -> Any:
    from checkin_core.services.selection import SelectionService

    return SelectionService(store, bus)


@pytest.fixture
def reservations(store: Any) -> Any:
    from checkin_core.services.reservation import ReservationEngine

    return ReservationEngine(store)


@pytest.fixture
def assignment(store: Any, bus: RecordingEventBus, reservations: Any) -> Any:
    from checkin_core.services.assignment import AssignmentService

    return AssignmentService(store, bus, reservations)


@pytest.fixture
def payments(store: Any, bus: RecordingEventBus) -> Any:
    from checkin_core.services.payment_service import PaymentService

    return PaymentService(store, bus)


@pytest.fixture
def completion(store: Any, bus: RecordingEventBus, reservations: Any) -> Any:
    from checkin_core.services.completion import CompletionService

    return CompletionService(store, bus, reservations)


@pytest.fixture
def checkout_ready(
    lanes: Any, selection: Any, payments: Any, make_customer: Callable[..., Any]
) -> Callable[..., dict[str, Any]]:
    """Drive a lane to AWAITING_SIGNATURE for a fresh customer.

    Returns the start payload plus the payment intent id.
    """
    from checkin_core.models import Actor, RentalType

    def _ready(
        rental_type: RentalType = RentalType.STANDARD,
        lane_id: str = LANE,
        customer: dict[str, Any] | None = None,
        **propose: Any,
    ) -> dict[str, Any]:
        customer = customer or make_customer()
        started = lanes.start(lane_id, "STF-1", customer_id=customer["customer_id"], now=NOW)
        selection.propose(lane_id, rental_type, Actor.CUSTOMER, now=NOW, **propose)
        selection.confirm(lane_id, Actor.CUSTOMER, now=NOW)
        intent = payments.create_payment_intent(lane_id, now=NOW)
        payments.mark_paid(intent["paymentIntentId"], now=NOW)
        return {**started, "paymentIntentId": intent["paymentIntentId"]}

    return _ready


# === API ===


@pytest.fixture
def api_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def client(dynamodb: Any, api_bus: RecordingEventBus) -> Generator[Any, None, None]:
    """TestClient with the event bus swapped for a recording one."""
    from fastapi.testclient import TestClient

    from checkin_api.dependencies import get_event_bus
    from checkin_api.main import app

    app.dependency_overrides[get_event_bus] = lambda: api_bus
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def staff_headers(client: Any, staff_member: Any) -> dict[str, str]:
    """Authorization header for a signed-in register."""
    response = client.post(
        "/api/auth/staff/sign-in", json={"staffId": "STF-1", "pin": "1234"}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def kiosk_headers() -> dict[str, str]:
    return {"X-Kiosk-Token": os.environ["KIOSK_TOKEN"]}


@pytest.fixture
def now() -> dt.datetime:
    return NOW


@pytest.fixture
def aamva_scan() -> str:
    return AAMVA_SCAN


@pytest.fixture
def signature_png() -> str:
    return SIGNATURE_PNG
