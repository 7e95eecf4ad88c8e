"""
statrank.engine.snapshots — Periodic Rank Snapshots
====================================================

Each capture writes one immutable :class:`RankSnapshot` row per message
counter for the current time bucket:

1. ``bucket = truncate_to_bucket(now, bucket_hours)``
2. read every ``_message`` counter outside the private scope
3. group by ``(platform, scope)``, apply the rank allow/deny lists
4. rank by count descending; equal counts go to the lower counter id
5. drop counters that already have a row for ``bucket``
6. write the rest in chunks with ``ON CONFLICT DO NOTHING``

Running twice for one bucket is a no-op the second time.  A failed write
chunk is counted and the run moves on; a failed read aborts the run and
the next scheduled tick starts over.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from statrank.constants import DEFAULT_CHUNK_SIZE, MESSAGE_ACTIVITY, PRIVATE_SCOPE
from statrank.engine.aggregator import FilterRules, identity_of
from statrank.engine.clock import Clock, SystemClock, truncate_to_bucket
from statrank.errors import ConflictError, FatalError

logger = logging.getLogger(__name__)

SNAPSHOT_KEYS = ("counter_id", "bucket")


@dataclass(slots=True)
class SnapshotResult:
    bucket: datetime
    candidates: int = 0
    written: int = 0
    skipped: int = 0
    failed: int = 0
    aborted: bool = False


def rank_scopes(counters: list[dict]) -> list[dict]:
    """Candidate snapshot rows with 1-based in-scope ranks.

    Ties on count are broken by counter id ascending.
    """
    scopes: dict[tuple[str, str], list[dict]] = defaultdict(list)
    for c in counters:
        scopes[(c["platform"], c["scope"])].append(c)

    rows: list[dict] = []
    for members in scopes.values():
        members.sort(key=lambda c: (-c["count"], c["id"]))
        for rank, c in enumerate(members, start=1):
            rows.append({"counter_id": c["id"], "count": c["count"], "rank": rank})
    return rows


class SnapshotEngine:
    """Captures per-scope message rankings into ``rank_snapshots``."""

    def __init__(
        self,
        store,
        clock: Clock | None = None,
        *,
        bucket_hours: int = 24,
        filters: FilterRules | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.bucket_hours = bucket_hours
        self.filters = filters or FilterRules()
        self.chunk_size = max(1, chunk_size)

    def capture(self) -> SnapshotResult:
        bucket = truncate_to_bucket(self.clock.now(), self.bucket_hours)
        result = SnapshotResult(bucket=bucket)

        try:
            counters = self.store.get("counters", {
                "activity": MESSAGE_ACTIVITY,
                "scope": {"$neq": PRIVATE_SCOPE},
            })
            covered = {
                r["counter_id"]
                for r in self.store.get("snapshots", {"bucket": bucket}, fields=["counter_id"])
            }
        except (FatalError, ConflictError) as exc:
            logger.error("Snapshot for %s aborted while reading: %s", bucket, exc)
            result.aborted = True
            return result

        counters = [c for c in counters if self.filters.keeps(identity_of(c, "user"))]
        candidates = rank_scopes(counters)
        result.candidates = len(candidates)

        pending = [
            {**row, "bucket": bucket}
            for row in candidates
            if row["counter_id"] not in covered
        ]
        result.skipped = result.candidates - len(pending)
        if not pending:
            logger.info("Snapshot bucket %s already covered (%d counters)", bucket, result.skipped)
            return result

        for start in range(0, len(pending), self.chunk_size):
            chunk = pending[start:start + self.chunk_size]
            try:
                written = self.store.upsert(
                    "snapshots", chunk, SNAPSHOT_KEYS, on_conflict="ignore",
                )
            except ConflictError as exc:
                result.failed += len(chunk)
                logger.warning(
                    "Snapshot chunk of %d rows for %s failed: %s", len(chunk), bucket, exc,
                )
                continue
            except FatalError as exc:
                result.failed += len(pending) - start
                result.aborted = True
                logger.error("Snapshot for %s aborted while writing: %s", bucket, exc)
                break
            result.written += written
            # Rows another run wrote first are ignored by the store.
            result.skipped += len(chunk) - written

        logger.info(
            "Snapshot %s: %d candidates, %d written, %d skipped, %d failed",
            bucket, result.candidates, result.written, result.skipped, result.failed,
        )
        return result
