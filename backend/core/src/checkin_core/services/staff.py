"""Staff sign-in, bearer tokens and manager PIN verification."""

import datetime as dt
import hashlib
import hmac
import os
import secrets
from typing import TYPE_CHECKING

from checkin_core.models import (
    AuthError,
    ErrorCode,
    NotFoundError,
    Staff,
    StaffRole,
    item_to_staff,
    item_to_staff_session,
)
from checkin_core.models.items import iso, utcnow
from checkin_core.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

PIN_HASH_ITERATIONS = 120_000


def hash_pin(pin: str, salt: str) -> str:
    """PBKDF2-SHA256 of a PIN, hex encoded."""
    digest = hashlib.pbkdf2_hmac("sha256", pin.encode(), bytes.fromhex(salt), PIN_HASH_ITERATIONS)
    return digest.hex()


def new_pin_credentials(pin: str) -> tuple[str, str]:
    """Fresh (salt, hash) pair for storing a PIN."""
    salt = secrets.token_hex(16)
    return salt, hash_pin(pin, salt)


def session_ttl() -> dt.timedelta:
    return dt.timedelta(hours=float(os.getenv("STAFF_SESSION_TTL_HOURS", "12")))


class StaffService:
    """Service for staff credentials and register sessions."""

    STAFF_TABLE = "staff"
    SESSIONS_TABLE = "staff-sessions"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def get_staff(self, staff_id: str) -> Staff | None:
        item = self.db.get_item(self.STAFF_TABLE, {"staff_id": staff_id})
        return item_to_staff(item) if item else None

    def create_staff(self, staff_id: str, name: str, pin: str, role: StaffRole) -> Staff:
        """Store a staff member with a hashed PIN (used by seeding and tests)."""
        salt, pin_hash = new_pin_credentials(pin)
        staff = Staff(
            staff_id=staff_id, name=name, role=role, pin_salt=salt, pin_hash=pin_hash
        )
        self.db.put_item(
            self.STAFF_TABLE,
            {
                "staff_id": staff_id,
                "name": name,
                "role": role.value,
                "active": True,
                "pin_salt": salt,
                "pin_hash": pin_hash,
            },
        )
        return staff

    @staticmethod
    def pin_matches(staff: Staff, pin: str) -> bool:
        if not staff.pin_salt or not staff.pin_hash:
            return False
        return hmac.compare_digest(hash_pin(pin, staff.pin_salt), staff.pin_hash)

    def sign_in(self, staff_id: str, pin: str) -> tuple[str, Staff, dt.datetime]:
        """Verify a PIN and issue a bearer token.

        Raises:
            AuthError: Unknown staff, inactive, or wrong PIN (401)
        """
        staff = self.get_staff(staff_id)
        if staff is None or not staff.active or not self.pin_matches(staff, pin):
            logger.info("Staff sign-in rejected for %s", staff_id)
            raise AuthError(ErrorCode.INVALID_CREDENTIALS)

        token = secrets.token_urlsafe(32)
        expires_at = utcnow() + session_ttl()
        self.db.put_item(
            self.SESSIONS_TABLE,
            {"token": token, "staff_id": staff.staff_id, "expires_at": iso(expires_at)},
        )
        logger.info("Staff %s signed in", staff.staff_id)
        return token, staff, expires_at

    def authenticate_token(self, token: str) -> Staff | None:
        """Staff for a live bearer token, or None."""
        item = self.db.get_item(self.SESSIONS_TABLE, {"token": token})
        if not item:
            return None
        session = item_to_staff_session(item)
        if session.expires_at <= utcnow():
            return None
        staff = self.get_staff(session.staff_id)
        if staff is None or not staff.active:
            return None
        return staff

    def sign_out(self, token: str) -> None:
        self.db.delete_item(self.SESSIONS_TABLE, {"token": token})

    def verify_manager_pin(self, manager_id: str, pin: str) -> Staff:
        """Check a manager override.

        Raises:
            NotFoundError: Manager does not exist (404)
            AuthError: Not an ADMIN (403) or wrong PIN (401)
        """
        manager = self.get_staff(manager_id)
        if manager is None or not manager.active:
            raise NotFoundError(ErrorCode.STAFF_NOT_FOUND, "Manager not found")
        if manager.role != StaffRole.ADMIN:
            raise AuthError(ErrorCode.FORBIDDEN, "Manager approval requires an ADMIN")
        if not self.pin_matches(manager, pin):
            raise AuthError(ErrorCode.INVALID_CREDENTIALS, "Invalid manager PIN")
        return manager
