"""Unit tests for the check-in HTTP surface.

Covers authentication, the error envelope and the thin route-to-service
wiring. Service behaviour itself is tested in the core unit tests.
"""

from collections.abc import Callable
from typing import Any

import pytest
from fastapi.testclient import TestClient

from checkin_api.security import Principal
from checkin_core.models import AuthError, ErrorCode, EventType

FAR_FUTURE = "2099-01-01T00:00:00+00:00"


class TestHealthCheck:
    def test_ping_returns_ok(self, client: TestClient) -> None:
        response = client.get("/api/ping")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "checkin-api"
        assert "timestamp" in data

    def test_correlation_id_is_echoed(self, client: TestClient) -> None:
        response = client.get("/api/ping", headers={"X-Correlation-ID": "req-123"})
        assert response.headers["X-Correlation-ID"] == "req-123"

    def test_correlation_id_is_generated(self, client: TestClient) -> None:
        assert client.get("/api/ping").headers["X-Correlation-ID"]


class TestAuthentication:
    def test_missing_credentials(self, client: TestClient) -> None:
        response = client.post("/api/checkin/lane/lane-1/start", json={"customerId": "CUS-1"})

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTH_REQUIRED"
        assert response.json()["success"] is False

    def test_kiosk_cannot_use_staff_endpoints(
        self, client: TestClient, kiosk_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/checkin/lane/lane-1/start", json={"customerId": "CUS-1"}, headers=kiosk_headers
        )
        assert response.status_code == 401

    def test_wrong_kiosk_token(self, client: TestClient) -> None:
        response = client.get(
            "/api/checkin/lane/lane-1/session-snapshot", headers={"X-Kiosk-Token": "nope"}
        )
        assert response.status_code == 401

    def test_kiosk_can_read_snapshot(
        self, client: TestClient, kiosk_headers: dict[str, str]
    ) -> None:
        response = client.get("/api/checkin/lane/lane-1/session-snapshot", headers=kiosk_headers)

        assert response.status_code == 200
        assert response.json() is None

    def test_kiosk_cannot_act_as_employee(
        self, client: TestClient, kiosk_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/checkin/lane/lane-1/propose-selection",
            json={"rentalType": "STANDARD", "proposedBy": "EMPLOYEE"},
            headers=kiosk_headers,
        )

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTH_REQUIRED"

    def test_kiosk_cannot_override_signature(
        self, client: TestClient, kiosk_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/checkin/lane/lane-1/manual-signature-override", headers=kiosk_headers
        )
        assert response.status_code == 401

    def test_kiosk_principal_has_no_staff_id(self) -> None:
        with pytest.raises(AuthError) as exc_info:
            Principal(kiosk=True).require_staff_id()

        assert exc_info.value.code == ErrorCode.AUTH_REQUIRED
        assert exc_info.value.status_code == 401


class TestStaffSignIn:
    def test_sign_in(self, client: TestClient, staff_member: Any) -> None:
        response = client.post("/api/auth/staff/sign-in", json={"staffId": "STF-1", "pin": "1234"})

        assert response.status_code == 200
        data = response.json()
        assert data["staffId"] == "STF-1"
        assert data["role"] == "STAFF"
        assert data["token"]

    def test_wrong_pin(self, client: TestClient, staff_member: Any) -> None:
        response = client.post("/api/auth/staff/sign-in", json={"staffId": "STF-1", "pin": "0000"})

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_CREDENTIALS"

    def test_sign_out_revokes_token(
        self, client: TestClient, staff_headers: dict[str, str]
    ) -> None:
        assert client.post("/api/auth/staff/sign-out", headers=staff_headers).status_code == 200

        response = client.get("/api/checkin/lane/lane-1/session-snapshot", headers=staff_headers)
        assert response.status_code == 401


class TestErrorEnvelope:
    def test_request_validation_uses_envelope(
        self, client: TestClient, staff_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/checkin/lane/lane-1/assign",
            json={"resourceType": "room"},
            headers=staff_headers,
        )

        assert response.status_code == 422
        data = response.json()
        assert data["error_code"] == "ERR_VALIDATION"
        assert ["body", "resourceId"] in [detail["loc"] for detail in data["details"]]

    def test_domain_error_carries_status_and_code(
        self, client: TestClient, staff_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/checkin/lane/lane-1/start", json={"customerId": "CUS-404"}, headers=staff_headers
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "CUSTOMER_NOT_FOUND"

    def test_identity_is_required(self, client: TestClient, staff_headers: dict[str, str]) -> None:
        response = client.post("/api/checkin/lane/lane-1/start", json={}, headers=staff_headers)

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_REQUEST"


class TestScan:
    def test_unknown_id_is_no_match(
        self, client: TestClient, staff_headers: dict[str, str], aamva_scan: str
    ) -> None:
        response = client.post(
            "/api/checkin/scan",
            json={"laneId": "lane-1", "rawScanText": aamva_scan},
            headers=staff_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["result"] == "NO_MATCH"
        assert data["scanType"] == "STATE_ID"
        assert data["extracted"]["firstName"] == "John"

    def test_banned_customer_is_403(
        self,
        client: TestClient,
        staff_headers: dict[str, str],
        make_customer: Callable[..., Any],
        aamva_scan: str,
    ) -> None:
        make_customer(name="John Doe", dob="1980-01-15", banned_until=FAR_FUTURE)

        response = client.post(
            "/api/checkin/scan",
            json={"laneId": "lane-1", "rawScanText": aamva_scan},
            headers=staff_headers,
        )

        assert response.status_code == 403
        data = response.json()
        assert data["result"] == "ERROR"
        assert data["error"]["code"] == "BANNED"

    def test_underage_id_is_an_error_result(
        self, client: TestClient, staff_headers: dict[str, str], aamva_scan: str
    ) -> None:
        response = client.post(
            "/api/checkin/scan",
            json={
                "laneId": "lane-1",
                "rawScanText": aamva_scan.replace("DBB19800115", "DBB20100115"),
            },
            headers=staff_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["result"] == "ERROR"
        assert data["error"]["code"] == "UNDERAGE"
        assert data["idScanIssue"] == "UNDERAGE"

    def test_scan_id_refuses_expired_id(
        self, client: TestClient, staff_headers: dict[str, str], aamva_scan: str
    ) -> None:
        response = client.post(
            "/api/checkin/lane/lane-1/scan-id",
            json={"rawScanText": aamva_scan.replace("DBA20300115", "DBA20200101")},
            headers=staff_headers,
        )

        assert response.status_code == 403
        assert response.json()["error_code"] == "ID_EXPIRED"


class TestLaneRoutes:
    def test_start_broadcasts_session(
        self,
        client: TestClient,
        staff_headers: dict[str, str],
        make_customer: Callable[..., Any],
        api_bus: Any,
    ) -> None:
        customer = make_customer(name="Sam Lane", membership_number="150")

        response = client.post(
            "/api/checkin/lane/lane-1/start",
            json={"customerId": customer["customer_id"]},
            headers=staff_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ACTIVE"
        assert data["customerName"] == "Sam Lane"
        assert api_bus.of_type(EventType.SESSION_UPDATED)[-1].lane_id == "lane-1"

    def test_reset_is_repeatable(
        self,
        client: TestClient,
        staff_headers: dict[str, str],
        kiosk_headers: dict[str, str],
        make_customer: Callable[..., Any],
    ) -> None:
        customer = make_customer()
        client.post(
            "/api/checkin/lane/lane-1/start",
            json={"customerId": customer["customer_id"]},
            headers=staff_headers,
        )

        first = client.post("/api/checkin/lane/lane-1/reset", headers=kiosk_headers)
        second = client.post("/api/checkin/lane/lane-1/reset", headers=kiosk_headers)

        assert first.json() == {"success": True, "reset": True}
        assert second.json() == {"success": True, "reset": False}

    def test_inventory_counts(
        self, client: TestClient, kiosk_headers: dict[str, str], inventory: Any
    ) -> None:
        response = client.get("/api/inventory/available", headers=kiosk_headers)

        assert response.status_code == 200
        assert response.json()["rooms"] == {
            "STANDARD": 3,
            "DOUBLE": 1,
            "SPECIAL": 1,
            "LOCKER": 2,
        }

    def test_waitlist_info(self, client: TestClient, kiosk_headers: dict[str, str]) -> None:
        response = client.get(
            "/api/checkin/waitlist-info", params={"tier": "DOUBLE"}, headers=kiosk_headers
        )

        assert response.status_code == 200
        assert response.json()["position"] == 1

    def test_waitlist_info_rejects_lockers(
        self, client: TestClient, kiosk_headers: dict[str, str]
    ) -> None:
        response = client.get(
            "/api/checkin/waitlist-info", params={"tier": "LOCKER"}, headers=kiosk_headers
        )
        assert response.status_code == 400

    def test_manager_pin_must_be_six_digits(
        self, client: TestClient, staff_headers: dict[str, str]
    ) -> None:
        response = client.post(
            "/api/checkin/lane/lane-1/past-due/bypass",
            json={"managerId": "MGR-1", "managerPin": "12"},
            headers=staff_headers,
        )
        assert response.status_code == 422
