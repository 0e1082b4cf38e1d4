"""Conversion helpers shared by the item <-> model mapping functions.

DynamoDB hands back numbers as Decimal and timestamps as ISO strings; the
mapping functions in each model module use these helpers so that loosely
typed items are validated into domain models at the persistence boundary.
"""

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any


def parse_datetime(value: Any) -> dt.datetime | None:
    """Parse an ISO-8601 timestamp stored on an item.

    Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def parse_date(value: Any) -> dt.date | None:
    """Parse a YYYY-MM-DD date stored on an item."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value)[:10])


def to_int(value: Any, default: int = 0) -> int:
    """Coerce a DynamoDB number (Decimal) to int."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return int(value)
    return int(value)


def iso(value: dt.datetime | dt.date | None) -> str | None:
    """Serialize a datetime/date for storage."""
    return value.isoformat() if value is not None else None


def compact(item: dict[str, Any]) -> dict[str, Any]:
    """Drop None values so optional attributes are absent on the item.

    GSI key attributes must be absent rather than null.
    """
    return {key: value for key, value in item.items() if value is not None}


def plain(value: Any) -> Any:
    """Recursively convert Decimals in a stored map/list to int or float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [plain(v) for v in value]
    return value


def utcnow() -> dt.datetime:
    """Current time as an aware UTC datetime."""
    return dt.datetime.now(dt.timezone.utc)


def new_id(prefix: str) -> str:
    """Generate a unique ID like SES-3F9A0C1B2D4E."""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"
