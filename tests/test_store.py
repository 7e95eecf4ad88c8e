"""
tests/test_store.py — SqlStore Adapter Tests
=============================================

Runs against in-memory SQLite:
- dict queries and operators
- ``$inc`` and ``$max`` patches
- upsert in update / ignore modes
- error translation into the engine taxonomy
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from statrank.errors import ConflictError

NOW = datetime(2026, 3, 10, 12, 30, tzinfo=UTC)


class TestReads:
    def test_get_by_equality(self, store, make_counter):
        make_counter(user_id="u1")
        make_counter(user_id="u2")
        rows = store.get("counters", {"user_id": "u2"})
        assert len(rows) == 1
        assert rows[0]["user_id"] == "u2"

    def test_operators(self, store, make_counter):
        for i, user in enumerate(["a", "b", "c", "d"], start=1):
            make_counter(user_id=user, count=i * 10)
        assert {r["user_id"] for r in store.get("counters", {"count": {"$gte": 30}})} == {"c", "d"}
        assert {r["user_id"] for r in store.get("counters", {"count": {"$lt": 20}})} == {"a"}
        assert {r["user_id"] for r in store.get("counters", {"user_id": {"$in": ["a", "d"]}})} == {"a", "d"}
        assert {r["user_id"] for r in store.get("counters", {"user_id": {"$nin": ["a", "d"]}})} == {"b", "c"}
        assert len(store.get("counters", {"user_id": {"$neq": "a"}})) == 3

    def test_fields_sort_limit(self, store, make_counter):
        make_counter(user_id="a", count=5)
        make_counter(user_id="b", count=9)
        make_counter(user_id="c", count=1)
        rows = store.get("counters", fields=["user_id"], sort={"count": "desc"}, limit=2)
        assert rows == [{"user_id": "b"}, {"user_id": "a"}]

    def test_datetimes_come_back_utc(self, store, make_counter):
        make_counter()
        ts = store.get("counters")[0]["last_activity_time"]
        assert ts.tzinfo is not None
        assert ts == NOW

    def test_datetime_range_query(self, store, make_counter):
        make_counter(user_id="old", last_activity_time=NOW - timedelta(days=10))
        make_counter(user_id="new", last_activity_time=NOW)
        cutoff = NOW - timedelta(days=5)
        rows = store.get("counters", {"last_activity_time": {"$lt": cutoff}})
        assert [r["user_id"] for r in rows] == ["old"]

    def test_count(self, store, make_counter):
        make_counter(user_id="a")
        make_counter(user_id="b", activity="help")
        assert store.count("counters") == 2
        assert store.count("counters", {"activity": "help"}) == 1

    def test_has_table(self, store):
        assert store.has_table("counters") is True
        assert store.has_table("legacy_commands") is True

    def test_unknown_table_field_and_operator(self, store):
        with pytest.raises(ValueError):
            store.get("nope")
        with pytest.raises(ValueError):
            store.get("counters", {"colour": "red"})
        with pytest.raises(ValueError):
            store.get("counters", {"count": {"$regex": "x"}})


class TestWrites:
    def test_create_returns_id(self, store, make_counter):
        row = make_counter(count=3)
        assert isinstance(row["id"], int)
        assert row["count"] == 3

    def test_duplicate_key_is_conflict(self, store, make_counter):
        make_counter()
        with pytest.raises(ConflictError):
            make_counter()

    def test_set_with_increment(self, store, make_counter):
        row = make_counter(count=3)
        touched = store.set("counters", {"id": row["id"]}, {"count": {"$inc": 4}, "user_name": "Al"})
        assert touched == 1
        updated = store.get("counters", {"id": row["id"]})[0]
        assert updated["count"] == 7
        assert updated["user_name"] == "Al"

    def test_set_with_max_never_moves_backwards(self, store, make_counter):
        row = make_counter(last_activity_time=NOW)
        store.set("counters", {"id": row["id"]}, {"last_activity_time": {"$max": NOW - timedelta(hours=1)}})
        assert store.get("counters", {"id": row["id"]})[0]["last_activity_time"] == NOW

        later = NOW + timedelta(minutes=5)
        store.set("counters", {"id": row["id"]}, {"last_activity_time": {"$max": later}})
        assert store.get("counters", {"id": row["id"]})[0]["last_activity_time"] == later

    def test_remove(self, store, make_counter):
        make_counter(user_id="a")
        make_counter(user_id="b")
        assert store.remove("counters", {"user_id": "a"}) == 1
        assert store.count("counters") == 1

    def test_drop_recreates_empty(self, store, make_counter):
        make_counter()
        store.drop("counters")
        assert store.has_table("counters") is True
        assert store.count("counters") == 0


class TestUpsert:
    BUCKET = datetime(2026, 3, 10, tzinfo=UTC)

    def test_insert_then_ignore(self, store):
        rows = [{"counter_id": 1, "bucket": self.BUCKET, "count": 5, "rank": 1}]
        assert store.upsert("snapshots", rows, ("counter_id", "bucket"), on_conflict="ignore") == 1
        again = [{"counter_id": 1, "bucket": self.BUCKET, "count": 99, "rank": 3}]
        assert store.upsert("snapshots", again, ("counter_id", "bucket"), on_conflict="ignore") == 0
        stored = store.get("snapshots")
        assert len(stored) == 1
        assert stored[0]["count"] == 5

    def test_update_overwrites(self, store):
        key = ("counter_id", "bucket")
        store.upsert("snapshots", [{"counter_id": 1, "bucket": self.BUCKET, "count": 5, "rank": 1}], key)
        store.upsert("snapshots", [{"counter_id": 1, "bucket": self.BUCKET, "count": 8, "rank": 2}], key)
        stored = store.get("snapshots")
        assert [(r["count"], r["rank"]) for r in stored] == [(8, 2)]

    def test_empty_rows(self, store):
        assert store.upsert("snapshots", [], ("counter_id", "bucket")) == 0

    def test_unknown_mode(self, store):
        with pytest.raises(ValueError):
            store.upsert("snapshots", [], ("counter_id", "bucket"), on_conflict="merge")
