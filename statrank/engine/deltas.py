"""
statrank.engine.deltas — Rank & Count Change Reports
=====================================================

Compares each counter's snapshot at the current bucket with its snapshot
at ``current − window``.  "At" always means *the latest snapshot whose
bucket does not exceed the bound*; future snapshots are never used.

A counter with no snapshot at or before the baseline is a new entrant:
``previous_rank is None`` and ``previous_count == 0``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from statrank.constants import MESSAGE_ACTIVITY
from statrank.engine.clock import Clock, SystemClock, truncate_to_bucket
from statrank.engine.text import pad_right, truncate_to_width

logger = logging.getLogger(__name__)

# Bound on ``$in`` list length per snapshot query (SQLite variable limit).
_ID_BATCH = 500

_RANGE_PATTERN = re.compile(r"^(\d+)([hdwmy])$")
_UNIT_HOURS = {"h": 1, "d": 24, "w": 24 * 7, "m": 24 * 30, "y": 24 * 365}
_SHORTCUTS = {"d": 24, "w": 24 * 7, "m": 24 * 30}
DEFAULT_RANGE_HOURS = 24


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RankDelta:
    counter_id: int
    user_id: str
    user_name: str
    current_count: int
    previous_count: int
    count_delta: int
    current_rank: int
    previous_rank: int | None
    rank_delta: int | None

    @property
    def is_new(self) -> bool:
        return self.previous_rank is None

    @property
    def display_name(self) -> str:
        return self.user_name or self.user_id


@dataclass(frozen=True, slots=True)
class TimeRange:
    hours: int
    start: datetime
    end: datetime


def parse_time_range(text: str | None, now: datetime) -> TimeRange:
    """Parse ``d``/``w``/``m`` or ``<n><h|d|w|m|y>`` into a window ending now.

    Anything unparseable (or zero) falls back to one day.
    """
    value = (text or "").strip().lower()
    hours = DEFAULT_RANGE_HOURS
    if value in _SHORTCUTS:
        hours = _SHORTCUTS[value]
    else:
        match = _RANGE_PATTERN.match(value)
        if match and int(match.group(1)) > 0:
            hours = int(match.group(1)) * _UNIT_HOURS[match.group(2)]
        elif value:
            logger.debug("Unrecognised time range %r; using %dh", text, hours)
    return TimeRange(hours=hours, start=now - timedelta(hours=hours), end=now)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class DeltaEngine:
    """Builds :class:`RankDelta` reports from stored snapshots."""

    def __init__(self, store, clock: Clock | None = None, *, bucket_hours: int = 24) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.bucket_hours = bucket_hours

    def _latest_at_or_before(self, counter_ids: list[int], bound: datetime) -> dict[int, dict]:
        """Each counter's newest snapshot whose bucket does not exceed *bound*.

        Walks back one bucket at a time over the counters still unmatched,
        so the number of queries follows the number of distinct latest
        buckets, not the length of the snapshot history.
        """
        found: dict[int, dict] = {}
        remaining = list(counter_ids)
        bucket_cond: dict = {"$lte": bound}
        while remaining:
            newest = None
            for i in range(0, len(remaining), _ID_BATCH):
                hit = self.store.get(
                    "snapshots",
                    {"counter_id": {"$in": remaining[i:i + _ID_BATCH]}, "bucket": bucket_cond},
                    fields=["bucket"],
                    sort={"bucket": "desc"},
                    limit=1,
                )
                if hit and (newest is None or hit[0]["bucket"] > newest):
                    newest = hit[0]["bucket"]
            if newest is None:
                break
            for i in range(0, len(remaining), _ID_BATCH):
                for snap in self.store.get(
                    "snapshots",
                    {"counter_id": {"$in": remaining[i:i + _ID_BATCH]}, "bucket": newest},
                ):
                    found[snap["counter_id"]] = snap
            remaining = [cid for cid in remaining if cid not in found]
            bucket_cond = {"$lt": newest}
        return found

    def compute(
        self,
        scope: str,
        window_hours: int,
        limit: int = 10,
        *,
        platform: str | None = None,
    ) -> list[RankDelta]:
        """Rank changes in *scope* over the last *window_hours*.

        Returns at most *limit* entries ordered by current rank; an empty
        list when the scope has no ranked counters.
        """
        query: dict = {"scope": scope, "activity": MESSAGE_ACTIVITY}
        if platform:
            query["platform"] = platform
        counters = {c["id"]: c for c in self.store.get("counters", query)}
        if not counters:
            return []

        current_bucket = truncate_to_bucket(self.clock.now(), self.bucket_hours)
        baseline_bucket = current_bucket - timedelta(hours=window_hours)

        current = self._latest_at_or_before(sorted(counters), current_bucket)
        previous = self._latest_at_or_before(sorted(current), baseline_bucket)

        ranked = sorted(current.items(), key=lambda kv: (kv[1]["rank"], kv[0]))
        deltas: list[RankDelta] = []
        for cid, cur in ranked[:max(0, limit)]:
            prev = previous.get(cid)
            counter = counters[cid]
            previous_count = prev["count"] if prev else 0
            previous_rank = prev["rank"] if prev else None
            deltas.append(RankDelta(
                counter_id=cid,
                user_id=counter["user_id"],
                user_name=counter.get("user_name") or "",
                current_count=cur["count"],
                previous_count=previous_count,
                count_delta=cur["count"] - previous_count,
                current_rank=cur["rank"],
                previous_rank=previous_rank,
                rank_delta=None if previous_rank is None else previous_rank - cur["rank"],
            ))
        return deltas


# ---------------------------------------------------------------------------
# Text rendering
# ---------------------------------------------------------------------------
def format_rank_change(delta: RankDelta) -> str:
    if delta.rank_delta is None:
        return "new"
    if delta.rank_delta > 0:
        return f"↑{delta.rank_delta}"
    if delta.rank_delta < 0:
        return f"↓{-delta.rank_delta}"
    return "-"


def format_ranking_text(deltas: list[RankDelta], title: str, name_width: int = 15) -> str:
    """Plain-text ranking block::

        Title
         1. alice           +12 ↑2
         2. bob             +3 new
    """
    if not deltas:
        return f"{title}\nNo data"
    lines = []
    for d in deltas:
        name = pad_right(truncate_to_width(d.display_name, name_width), name_width)
        sign = "+" if d.count_delta >= 0 else ""
        lines.append(
            f"{d.current_rank:>2}. {name} {sign}{d.count_delta} {format_rank_change(d)}"
        )
    return title + "\n" + "\n".join(lines)
