"""DynamoDB update/condition expression builder.

Collects `SET`/`REMOVE` parts and `AND`-ed conditions with generated
attribute name and value placeholders, so reserved words (status, number,
name) never leak into expressions:

    update = (
        Update()
        .set("status", LaneSessionStatus.COMPLETED)
        .set("updated_at", now)
        .where_in("status", {LaneSessionStatus.AWAITING_SIGNATURE})
    )
    db.update_item("lane-sessions", key, **update.kwargs())
"""

import datetime as dt
from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from checkin_core.services.dynamodb import DynamoDBService


def storable(value: Any) -> Any:
    """Convert enums and datetimes to their stored representation."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, float):
        raise TypeError("Store money and counts as int, not float")
    return value


class Update:
    """One item update: SET/REMOVE actions plus a condition."""

    def __init__(self) -> None:
        self._set: list[str] = []
        self._remove: list[str] = []
        self._conditions: list[str] = []
        self.names: dict[str, str] = {}
        self.values: dict[str, Any] = {}
        self._counter = 0

    def _name(self, attr: str) -> str:
        placeholder = f"#{attr}"
        self.names[placeholder] = attr
        return placeholder

    def _value(self, value: Any, hint: str) -> str:
        self._counter += 1
        placeholder = f":{hint}{self._counter}"
        self.values[placeholder] = storable(value)
        return placeholder

    @property
    def is_empty(self) -> bool:
        return not (self._set or self._remove)

    def set(self, attr: str, value: Any) -> "Update":
        """SET attr = value; None removes the attribute instead."""
        if value is None:
            return self.remove(attr)
        self._set.append(f"{self._name(attr)} = {self._value(value, 'v')}")
        return self

    def set_all(self, values: dict[str, Any]) -> "Update":
        for attr, value in values.items():
            self.set(attr, value)
        return self

    def remove(self, *attrs: str) -> "Update":
        for attr in attrs:
            self._remove.append(self._name(attr))
        return self

    # Conditions

    def where(self, expression: str) -> "Update":
        """Raw condition using placeholders already registered."""
        self._conditions.append(expression)
        return self

    def where_absent(self, attr: str) -> "Update":
        return self.where(f"attribute_not_exists({self._name(attr)})")

    def where_equals(self, attr: str, value: Any) -> "Update":
        return self.where(f"{self._name(attr)} = {self._value(value, 'c')}")

    def where_not_equals(self, attr: str, value: Any) -> "Update":
        return self.where(f"{self._name(attr)} <> {self._value(value, 'c')}")

    def where_absent_or_equals(self, attr: str, value: Any) -> "Update":
        if value is None:
            return self.where_absent(attr)
        name = self._name(attr)
        return self.where(
            f"(attribute_not_exists({name}) OR {name} = {self._value(value, 'c')})"
        )

    def where_in(self, attr: str, values: Iterable[Any]) -> "Update":
        options = sorted(storable(v) for v in values)
        if not options:
            raise ValueError("where_in needs at least one value")
        placeholders = ", ".join(self._value(v, "c") for v in options)
        return self.where(f"{self._name(attr)} IN ({placeholders})")

    # Rendering

    @property
    def update_expression(self) -> str:
        parts = []
        if self._set:
            parts.append("SET " + ", ".join(self._set))
        if self._remove:
            parts.append("REMOVE " + ", ".join(dict.fromkeys(self._remove)))
        return " ".join(parts)

    @property
    def condition_expression(self) -> str | None:
        return " AND ".join(self._conditions) if self._conditions else None

    def kwargs(self) -> dict[str, Any]:
        """Keyword arguments for DynamoDBService.update_item / tx_update."""
        return {
            "update_expression": self.update_expression,
            "expression_attribute_values": self.values or None,
            "expression_attribute_names": self.names or None,
            "condition_expression": self.condition_expression,
        }

    def apply(self, db: "DynamoDBService", table: str, key: dict[str, Any]) -> dict[str, Any] | None:
        """Run as a single conditional update. None when the condition failed."""
        return db.update_item(table, key, **self.kwargs())

    def transact(self, db: "DynamoDBService", table: str, key: dict[str, Any]) -> dict[str, Any]:
        """Build the TransactWriteItem for this update."""
        return db.tx_update(table, key, **self.kwargs())


class Condition:
    """A standalone condition for conditional Put items."""

    def __init__(self) -> None:
        self._update = Update()

    def absent(self, attr: str) -> "Condition":
        self._update.where_absent(attr)
        return self

    def absent_or_equals(self, attr: str, value: Any) -> "Condition":
        self._update.where_absent_or_equals(attr, value)
        return self

    def kwargs(self) -> dict[str, Any]:
        """Keyword arguments for DynamoDBService.put_item / tx_put."""
        return {
            "condition_expression": self._update.condition_expression,
            "expression_attribute_names": self._update.names or None,
            "expression_attribute_values": self._update.values or None,
        }
