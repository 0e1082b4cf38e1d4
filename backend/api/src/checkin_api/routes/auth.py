"""Staff sign-in endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Request

from checkin_api.dependencies import get_staff_service
from checkin_api.models.checkin import StaffSignInRequest
from checkin_api.security import AuthScope, Principal, bearer_token, require_auth
from checkin_core.models.items import iso
from checkin_core.services.staff import StaffService

router = APIRouter(prefix="/auth/staff", tags=["auth"])


@router.post(
    "/sign-in",
    summary="Staff sign-in",
    description="Verify a staff PIN and issue a bearer token. Wrong credentials give 401.",
)
def sign_in(
    body: StaffSignInRequest,
    service: StaffService = Depends(get_staff_service),
) -> dict[str, Any]:
    token, staff, expires_at = service.sign_in(body.staff_id, body.pin)
    return {
        "token": token,
        "staffId": staff.staff_id,
        "name": staff.name,
        "role": staff.role.value,
        "expiresAt": iso(expires_at),
    }


@router.post("/sign-out", summary="Staff sign-out")
def sign_out(
    request: Request,
    auth: Principal = Depends(require_auth(AuthScope.STAFF)),
    service: StaffService = Depends(get_staff_service),
) -> dict[str, Any]:
    token = bearer_token(request.headers.get("Authorization"))
    if token:
        service.sign_out(token)
    return {"success": True}
