"""
tests/test_merger.py — Event Merging & Import Tests
====================================================

Tests for:
- Live merge: keying, count summing, latest time, name precedence
- Lost create race retried as an update
- Interleaved merges never move the latest time or name backwards
- Batch merge: pre-summing, per-key failure isolation, result accounting
- Export record import (camelCase aliases, coercion, invalid records)
- Legacy command table import (bindings, skips, repeated runs)
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from statrank.engine.clock import FixedClock
from statrank.engine.merger import (
    ActivityEvent,
    BatchResult,
    EventMerger,
    legacy_timestamp,
)
from statrank.engine.deltas import DeltaEngine
from statrank.engine.snapshots import SnapshotEngine
from statrank.errors import BatchAbortedError, ConflictError, FatalError, ValidationError

NOW = datetime(2026, 3, 10, 12, 30, tzinfo=UTC)
T1 = NOW - timedelta(hours=2)
T2 = NOW - timedelta(hours=1)


def _event(**overrides) -> ActivityEvent:
    fields = {"platform": "discord", "scope": "g1", "user_id": "u1"}
    fields.update(overrides)
    return ActivityEvent(**fields)


def _stored(store, **key) -> dict:
    query = {"platform": "discord", "scope": "g1", "user_id": "u1", "activity": "_message"}
    query.update(key)
    rows = store.get("counters", query)
    assert len(rows) == 1
    return rows[0]


@pytest.fixture
def merger(store, clock):
    return EventMerger(store, clock)


# ---------------------------------------------------------------------------
# Live merge
# ---------------------------------------------------------------------------
class TestMerge:
    def test_first_event_creates_counter(self, merger, store):
        row = merger.merge(_event(user_name="Alice", scope_name="Guild"))
        assert row["count"] == 1
        assert row["last_activity_time"] == NOW
        assert row["user_name"] == "Alice"
        assert row["scope_name"] == "Guild"
        assert store.count("counters") == 1

    def test_same_key_sums_and_keeps_latest_time(self, merger, store):
        merger.merge(_event(increment=2, timestamp=T2))
        merger.merge(_event(increment=3, timestamp=T1))
        counter = _stored(store)
        assert counter["count"] == 5
        assert counter["last_activity_time"] == T2

    def test_distinct_keys_stay_separate(self, merger, store):
        merger.merge(_event())
        merger.merge(_event(activity="stat"))
        merger.merge(_event(scope="g2"))
        assert store.count("counters") == 3

    def test_newer_name_wins(self, merger, store):
        merger.merge(_event(user_name="Alice", timestamp=T1))
        merger.merge(_event(user_name="Bob", timestamp=T2))
        assert _stored(store)["user_name"] == "Bob"

    def test_older_name_loses(self, merger, store):
        merger.merge(_event(user_name="Bob", timestamp=T2))
        merger.merge(_event(user_name="Carol", timestamp=T1))
        assert _stored(store)["user_name"] == "Bob"

    def test_name_equal_to_id_keeps_existing(self, merger, store):
        merger.merge(_event(user_name="Alice", timestamp=T1))
        merger.merge(_event(user_name="u1", timestamp=T2))
        assert _stored(store)["user_name"] == "Alice"

    def test_id_never_stored_as_name(self, merger, store):
        merger.merge(_event(user_name="u1", scope_name="g1"))
        counter = _stored(store)
        assert counter["user_name"] is None
        assert counter["scope_name"] is None

    @pytest.mark.parametrize("overrides", [{"user_id": ""}, {"scope": "  "}, {"increment": 0}])
    def test_invalid_event_rejected(self, merger, overrides):
        with pytest.raises(ValidationError):
            merger.merge(_event(**overrides))


class TestLostCreateRace:
    def test_conflict_on_create_becomes_update(self):
        existing = {
            "id": 7, "platform": "discord", "scope": "g1", "user_id": "u1",
            "activity": "_message", "count": 4,
            "last_activity_time": T1, "user_name": None, "scope_name": None,
        }
        store = MagicMock()
        store.get.side_effect = [[], [existing]]
        store.create.side_effect = ConflictError("duplicate key")
        store.set.return_value = 1

        row = EventMerger(store, FixedClock(NOW)).merge(_event())

        assert row["count"] == 5
        assert row["last_activity_time"] == NOW
        table, query, patch = store.set.call_args.args
        assert table == "counters"
        assert query == {"id": 7}
        assert patch["count"] == {"$inc": 1}

    def test_conflict_without_row_propagates(self):
        store = MagicMock()
        store.get.return_value = []
        store.create.side_effect = ConflictError("duplicate key")
        with pytest.raises(ConflictError):
            EventMerger(store, FixedClock(NOW)).merge(_event())


class _InterleavingStore:
    """Runs *before_write* once, just before the first ``set`` reaches the store."""

    def __init__(self, store, before_write):
        self._store = store
        self._before_write = before_write

    def __getattr__(self, name):
        return getattr(self._store, name)

    def set(self, *args, **kwargs):
        hook, self._before_write = self._before_write, None
        if hook is not None:
            hook()
        return self._store.set(*args, **kwargs)


class TestConcurrentMerge:
    def test_interleaved_merge_keeps_latest_time_and_name(self, store, clock):
        EventMerger(store, clock).merge(_event(timestamp=NOW))
        rival = EventMerger(store, clock)
        racing = EventMerger(
            _InterleavingStore(
                store,
                lambda: rival.merge(_event(timestamp=NOW + timedelta(minutes=5), user_name="Newer")),
            ),
            clock,
        )

        racing.merge(_event(timestamp=NOW + timedelta(minutes=2), user_name="Older"))

        counter = _stored(store)
        assert counter["count"] == 3
        assert counter["last_activity_time"] == NOW + timedelta(minutes=5)
        assert counter["user_name"] == "Newer"

    def test_older_event_still_fills_missing_name(self, merger, store):
        merger.merge(_event(timestamp=NOW))
        merger.merge(_event(timestamp=T1, user_name="Alice"))
        counter = _stored(store)
        assert counter["last_activity_time"] == NOW
        assert counter["user_name"] == "Alice"


# ---------------------------------------------------------------------------
# Batch merge
# ---------------------------------------------------------------------------
class TestMergeBatch:
    def test_pre_sums_per_key(self, merger, store):
        events = [_event(user_id="a")] * 3 + [_event(user_id="b")] * 2 + [_event(user_id="")]
        result = merger.merge_batch(events)
        assert result.attempted == 2
        assert result.imported == 2
        assert result.invalid == 1
        assert result.errors == 0
        assert _stored(store, user_id="a")["count"] == 3
        assert _stored(store, user_id="b")["count"] == 2

    def test_one_read_and_write_per_key(self, store, clock):
        spy = MagicMock(wraps=store)
        EventMerger(spy, clock).merge_batch([_event(timestamp=T1)] * 10)
        assert spy.get.call_count == 1
        assert spy.create.call_count + spy.set.call_count == 1
        assert _stored(store)["count"] == 10

    def test_grouped_name_is_most_recent(self, merger, store):
        merger.merge_batch([
            _event(user_name="Newest", timestamp=T2),
            _event(user_name="Older", timestamp=T1),
        ])
        assert _stored(store)["user_name"] == "Newest"

    def test_failed_key_does_not_abort(self, clock):
        store = MagicMock()
        store.get.return_value = []

        def _create(table, row):
            if row["user_id"] == "bad":
                raise ConflictError("boom")
            return {"id": 1, **row}

        store.create.side_effect = _create
        events = [_event(user_id="a"), _event(user_id="bad"), _event(user_id="c")]
        result = EventMerger(store, clock).merge_batch(events, chunk_size=1)

        assert result.attempted == 3
        assert result.imported == 2
        assert result.errors == 1
        assert result.imported + result.errors == result.attempted
        assert result.failed_keys == [("discord", "g1", "bad", "_message")]

    def test_fatal_error_aborts_with_partial_result(self, clock):
        store = MagicMock()
        store.get.return_value = []

        def _create(table, row):
            if row["user_id"] == "u2":
                raise FatalError("store unreachable")
            return {"id": 1, **row}

        store.create.side_effect = _create
        events = [_event(user_id=f"u{i}") for i in range(5)]

        with pytest.raises(BatchAbortedError) as excinfo:
            EventMerger(store, clock).merge_batch(events, chunk_size=2)

        result = excinfo.value.result
        assert result.attempted == 5
        assert result.imported == 2
        assert result.errors == 3
        assert result.failed_keys == [("discord", "g1", f"u{i}", "_message") for i in (2, 3, 4)]
        assert isinstance(excinfo.value, FatalError)

    def test_chunks_cover_every_key(self, merger, store):
        events = [_event(user_id=f"u{i}") for i in range(5)]
        result = merger.merge_batch(events, chunk_size=2)
        assert result.imported == 5
        assert store.count("counters") == 5

    def test_summary(self):
        result = BatchResult(attempted=5, imported=4, errors=1, skipped=2)
        assert result.summary() == "Imported 4 of 5 counters (1 failed, 2 records skipped)"
        assert BatchResult(attempted=1, imported=1).summary() == "Imported 1 of 1 counters"


# ---------------------------------------------------------------------------
# Record import
# ---------------------------------------------------------------------------
class TestImportRecords:
    def test_aliases_coercion_and_invalid(self, merger, store):
        records = [
            {
                "platform": "discord", "guildId": 123, "userId": 456, "command": "stat",
                "count": "3", "lastTime": "2026-03-01T10:00:00Z", "userName": "Alice",
            },
            {"platform": "discord", "scope": "123", "user_id": "456", "activity": "stat", "count": 0},
            {"scope": "123", "user_id": "456", "activity": "stat"},
        ]
        result = merger.import_records(records)

        assert result.invalid == 1
        assert result.attempted == 1
        assert result.imported == 1
        counter = _stored(store, scope="123", user_id="456", activity="stat")
        assert counter["count"] == 4
        assert counter["user_name"] == "Alice"

    def test_overwrite_clears_existing(self, merger, store, make_counter):
        make_counter(user_id="stale", count=99)
        merger.import_records(
            [{"platform": "discord", "scope": "g1", "user_id": "u1", "activity": "_message"}],
            overwrite=True,
        )
        assert [r["user_id"] for r in store.get("counters")] == ["u1"]

    def test_overwrite_removes_snapshots(self, merger, store, clock, make_counter):
        make_counter(user_id="old", count=100)
        SnapshotEngine(store, clock).capture()

        merger.import_records(
            [{"platform": "discord", "scope": "g1", "user_id": "u2", "activity": "_message", "count": 5}],
            overwrite=True,
        )
        assert store.get("snapshots") == []

        assert SnapshotEngine(store, clock).capture().written == 1
        [delta] = DeltaEngine(store, clock).compute("g1", 24)
        assert delta.user_id == "u2"
        assert delta.current_count == 5
        assert delta.is_new is True


# ---------------------------------------------------------------------------
# Legacy import
# ---------------------------------------------------------------------------
class TestLegacyTimestamp:
    EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

    def test_days_and_hours(self):
        assert legacy_timestamp(20000, 5) == self.EPOCH + timedelta(days=20000, hours=5)
        assert legacy_timestamp("20000", None) == self.EPOCH + timedelta(days=20000)

    @pytest.mark.parametrize("date, hour", [(None, 1), ("x", 1), (float("inf"), 0), (1e12, 0)])
    def test_unusable(self, date, hour):
        assert legacy_timestamp(date, hour) is None


class TestImportLegacy:
    def _seed_bindings(self, store, accounts=range(1, 6)):
        for aid in accounts:
            store.create("bindings", {"platform": "discord", "pid": f"p{aid}", "aid": aid})

    def _seed_rows(self, store, n=50):
        for i in range(n):
            store.create("legacy_commands", {
                "name": "stat",
                "user_id": (i % 5) + 1,
                "channel_id": "c1",
                "platform": "discord",
                "date": 20000,
                "hour": i % 24,
                "count": 1,
            })

    def test_missing_table_is_fatal(self, clock):
        store = MagicMock()
        store.has_table.return_value = False
        with pytest.raises(FatalError):
            EventMerger(store, clock).import_legacy()

    def test_empty_table_is_fatal(self, merger):
        with pytest.raises(FatalError):
            merger.import_legacy()

    def test_fifty_records_one_write_per_key(self, store, clock):
        self._seed_bindings(store)
        self._seed_rows(store)
        spy = MagicMock(wraps=store)

        result = EventMerger(spy, clock).import_legacy()

        assert result.attempted == 5
        assert result.imported == 5
        assert result.skipped == 0
        assert spy.create.call_count == 5
        assert spy.set.call_count == 0
        for aid in range(1, 6):
            counter = _stored(store, scope="c1", user_id=f"p{aid}", activity="stat")
            assert counter["count"] == 10

    def test_second_run_adds_again(self, merger, store):
        self._seed_bindings(store)
        self._seed_rows(store)
        merger.import_legacy()
        merger.import_legacy()
        assert _stored(store, scope="c1", user_id="p1", activity="stat")["count"] == 20

    def test_overwrite_rerun_restores_counts(self, merger, store):
        self._seed_bindings(store)
        self._seed_rows(store)
        merger.import_legacy()
        merger.import_legacy(overwrite=True)
        assert _stored(store, scope="c1", user_id="p1", activity="stat")["count"] == 10

    def test_unusable_rows_are_skipped(self, merger, store):
        self._seed_bindings(store, accounts=[1])
        base = {"name": None, "channel_id": "c1", "date": 20000, "hour": 3, "count": 0}
        store.create("legacy_commands", {**base, "user_id": 1})
        store.create("legacy_commands", {**base, "user_id": 99})
        store.create("legacy_commands", {**base, "user_id": 1, "channel_id": None})
        store.create("legacy_commands", {**base, "user_id": 1, "date": None})

        result = merger.import_legacy()

        assert result.skipped == 3
        assert result.imported == 1
        counter = _stored(store, scope="c1", user_id="p1")
        assert counter["count"] == 1
        assert counter["last_activity_time"] == datetime(1970, 1, 1, tzinfo=UTC) + timedelta(
            days=20000, hours=3,
        )
