"""Request authentication for lane clients.

Two credentials are recognised:

- Staff: `Authorization: Bearer <token>` issued by POST /api/auth/staff/sign-in
  and stored in the `staff-sessions` table.
- Kiosk: `X-Kiosk-Token` compared with the KIOSK_TOKEN environment variable.
  When KIOSK_TOKEN is unset, kiosk credentials are never accepted.

Usage in routes:
    @router.post("/...")
    async def handler(auth: Principal = Depends(require_auth(AuthScope.STAFF))):
        ...
"""

import hmac
import os
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, Request

from checkin_api.dependencies import get_staff_service
from checkin_core.models import Actor, AuthError, ErrorCode, Staff
from checkin_core.services.staff import StaffService

KIOSK_TOKEN_HEADER = "X-Kiosk-Token"


class AuthScope(str, Enum):
    """Which credentials an endpoint accepts."""

    STAFF = "staff"
    LANE = "lane"  # kiosk or staff


@dataclass
class Principal:
    """The authenticated caller."""

    staff: Staff | None = None
    kiosk: bool = False

    @property
    def staff_id(self) -> str | None:
        return self.staff.staff_id if self.staff else None

    def require_staff_id(self) -> str:
        """The signed-in staff member's id; kiosk callers are refused."""
        if self.staff is None:
            raise AuthError(ErrorCode.AUTH_REQUIRED, "Staff sign-in required")
        return self.staff.staff_id

    def require_actor(self, actor: Actor) -> None:
        """EMPLOYEE actions need a staff token; CUSTOMER actions any lane credential."""
        if actor == Actor.EMPLOYEE and self.staff is None:
            raise AuthError(ErrorCode.AUTH_REQUIRED, "Employee actions require staff sign-in")


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def kiosk_token_valid(token: str | None) -> bool:
    expected = os.getenv("KIOSK_TOKEN")
    if not expected or not token:
        return False
    return hmac.compare_digest(token.encode(), expected.encode())


def authenticate(
    staff_service: StaffService,
    authorization: str | None,
    kiosk_token: str | None,
    scope: AuthScope,
) -> Principal:
    """Resolve the caller for `scope`.

    Raises:
        AuthError: 401 when no acceptable credential is present
    """
    token = bearer_token(authorization)
    if token:
        staff = staff_service.authenticate_token(token)
        if staff is not None:
            return Principal(staff=staff)
    if scope == AuthScope.LANE and kiosk_token_valid(kiosk_token):
        return Principal(kiosk=True)
    raise AuthError(ErrorCode.AUTH_REQUIRED)


def require_auth(scope: AuthScope) -> Callable[..., Principal]:
    """Dependency factory enforcing `scope` on a route."""

    def dependency(
        request: Request,
        staff_service: StaffService = Depends(get_staff_service),
    ) -> Principal:
        return authenticate(
            staff_service,
            request.headers.get("Authorization"),
            request.headers.get(KIOSK_TOKEN_HEADER),
            scope,
        )

    return dependency
