"""Unit tests for the update/condition expression builder."""

import datetime as dt
from typing import Any

import pytest

from checkin_core.models import LaneSessionStatus
from checkin_core.utils.expressions import Condition, Update, storable


class TestStorable:
    def test_enums_and_datetimes(self) -> None:
        when = dt.datetime(2024, 6, 8, 20, 0, tzinfo=dt.UTC)
        assert storable(LaneSessionStatus.ACTIVE) == "ACTIVE"
        assert storable(when) == "2024-06-08T20:00:00+00:00"
        assert storable(dt.date(2024, 6, 8)) == "2024-06-08"
        assert storable(42) == 42

    def test_floats_rejected(self) -> None:
        with pytest.raises(TypeError):
            storable(1.5)


class TestUpdate:
    def test_set_and_remove_render(self) -> None:
        update = Update().set("status", LaneSessionStatus.COMPLETED).set("customer_id", None)

        assert update.update_expression == "SET #status = :v1 REMOVE #customer_id"
        assert update.values == {":v1": "COMPLETED"}
        assert update.names == {"#status": "status", "#customer_id": "customer_id"}
        assert update.condition_expression is None

    def test_conditions_are_anded(self) -> None:
        update = (
            Update()
            .set("number", 3)
            .where_equals("status", "CLEAN")
            .where_absent("assigned_to_customer_id")
            .where_in("status", {LaneSessionStatus.ACTIVE, LaneSessionStatus.IDLE})
        )

        assert update.condition_expression == (
            "#status = :c2 AND attribute_not_exists(#assigned_to_customer_id) "
            "AND #status IN (:c3, :c4)"
        )
        assert update.values[":c3"] == "ACTIVE"
        assert update.values[":c4"] == "IDLE"

    def test_absent_or_equals_with_none(self) -> None:
        update = Update().where_absent_or_equals("assigned_resource_id", None)
        assert update.condition_expression == "attribute_not_exists(#assigned_resource_id)"

    def test_absent_or_equals_with_value(self) -> None:
        update = Update().where_absent_or_equals("active_session_id", "SES-1")
        assert update.condition_expression == (
            "(attribute_not_exists(#active_session_id) OR #active_session_id = :c1)"
        )

    def test_duplicate_removes_collapse(self) -> None:
        update = Update().remove("a", "b").set("a", None)
        assert update.update_expression == "REMOVE #a, #b"

    def test_empty_where_in_rejected(self) -> None:
        with pytest.raises(ValueError):
            Update().where_in("status", [])

    def test_apply_returns_none_on_failed_condition(self, db: Any) -> None:
        db.put_item("lanes", {"lane_id": "lane-1", "active_session_id": "SES-1"})

        missed = (
            Update()
            .remove("active_session_id")
            .where_equals("active_session_id", "SES-2")
            .apply(db, "lanes", {"lane_id": "lane-1"})
        )
        hit = (
            Update()
            .remove("active_session_id")
            .where_equals("active_session_id", "SES-1")
            .apply(db, "lanes", {"lane_id": "lane-1"})
        )

        assert missed is None
        assert hit is not None
        assert "active_session_id" not in db.get_item("lanes", {"lane_id": "lane-1"})

    def test_transaction_is_all_or_nothing(self, db: Any) -> None:
        db.put_item("lanes", {"lane_id": "lane-1", "active_session_id": "SES-1"})
        db.put_item("lanes", {"lane_id": "lane-2", "active_session_id": "SES-2"})

        committed = db.transact_write(
            [
                Update().set("note", "x").transact(db, "lanes", {"lane_id": "lane-1"}),
                Update()
                .set("note", "y")
                .where_equals("active_session_id", "SES-9")
                .transact(db, "lanes", {"lane_id": "lane-2"}),
            ]
        )

        assert committed is False
        assert "note" not in db.get_item("lanes", {"lane_id": "lane-1"})


class TestCondition:
    def test_put_condition_kwargs(self) -> None:
        kwargs = Condition().absent("session_id").kwargs()
        assert kwargs == {
            "condition_expression": "attribute_not_exists(#session_id)",
            "expression_attribute_names": {"#session_id": "session_id"},
            "expression_attribute_values": None,
        }

    def test_conditional_put(self, db: Any) -> None:
        db.put_item("lanes", {"lane_id": "lane-1", "active_session_id": "SES-1"})

        claimed = db.transact_write(
            [
                db.tx_put(
                    "lanes",
                    {"lane_id": "lane-1", "active_session_id": "SES-2"},
                    **Condition().absent_or_equals("active_session_id", "SES-0").kwargs(),
                )
            ]
        )

        assert claimed is False
        assert db.get_item("lanes", {"lane_id": "lane-1"})["active_session_id"] == "SES-1"
