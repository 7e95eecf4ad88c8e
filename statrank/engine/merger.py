"""
statrank.engine.merger — Event → Counter Merging
=================================================

Folds raw activity events into :class:`ActivityCounter` rows.

Three entry points share one per-key merge routine:

- :meth:`EventMerger.merge` — live path, one event per inbound message or
  command.  One read and one write per call.
- :meth:`EventMerger.merge_batch` — bulk path.  Events are grouped by key
  and pre-summed first, so each key costs exactly one read-modify-write no
  matter how many source records map onto it.
- :meth:`EventMerger.import_legacy` / :meth:`EventMerger.import_records` —
  translate historical rows into events and hand them to ``merge_batch``.

Batch paths never abort on a single bad key: every attempted key ends up
either ``imported`` or ``errors``.  Only :class:`FatalError` (store gone,
source table missing) escapes; when it interrupts a batch it arrives as
:class:`BatchAbortedError` carrying the partial :class:`BatchResult`, with
every key not yet written counted in ``errors``.

All methods are synchronous — call via ``await run_db(merger.merge, ev)``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from statrank.constants import DEFAULT_CHUNK_SIZE, MESSAGE_ACTIVITY
from statrank.engine.clock import Clock, SystemClock
from statrank.engine.names import clean_name, reconcile
from statrank.errors import BatchAbortedError, ConflictError, FatalError, ValidationError

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts


# ---------------------------------------------------------------------------
# Event & result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """One unit of activity to fold into a counter."""
    platform: str
    scope: str
    user_id: str
    activity: str = MESSAGE_ACTIVITY
    increment: int = 1
    timestamp: datetime | None = None
    user_name: str | None = None
    scope_name: str | None = None

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.platform, self.scope, self.user_id, self.activity)

    def query(self) -> dict[str, str]:
        return {
            "platform": self.platform,
            "scope": self.scope,
            "user_id": self.user_id,
            "activity": self.activity,
        }


@dataclass(slots=True)
class BatchResult:
    """Outcome counters for a batch merge.

    ``attempted`` counts distinct keys after pre-summing, so
    ``imported + errors == attempted`` always holds.  ``skipped`` and
    ``invalid`` count *source records* dropped before grouping.
    """
    attempted: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    invalid: int = 0
    failed_keys: list[tuple[str, str, str, str]] = field(default_factory=list)

    def summary(self) -> str:
        text = f"Imported {self.imported} of {self.attempted} counters"
        extras = []
        if self.errors:
            extras.append(f"{self.errors} failed")
        if self.skipped:
            extras.append(f"{self.skipped} records skipped")
        if self.invalid:
            extras.append(f"{self.invalid} records invalid")
        if extras:
            text += " (" + ", ".join(extras) + ")"
        return text


def validate_event(event: ActivityEvent) -> None:
    """Raise :class:`ValidationError` if *event* cannot be keyed."""
    for name in ("platform", "scope", "user_id", "activity"):
        value = getattr(event, name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"Event is missing {name}: {event!r}")
    if not isinstance(event.increment, int) or event.increment < 1:
        raise ValidationError(f"Event increment must be >= 1, got {event.increment!r}")


# ---------------------------------------------------------------------------
# Import record schema
# ---------------------------------------------------------------------------
class ImportRecord(BaseModel):
    """One decoded export record.  Accepts both snake_case and the
    camelCase keys written by older exports (``guildId``, ``command`` …).
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    platform: str = Field(min_length=1)
    scope: str = Field(min_length=1, validation_alias=AliasChoices("scope", "guildId"))
    user_id: str = Field(min_length=1, validation_alias=AliasChoices("user_id", "userId"))
    activity: str = Field(
        min_length=1, validation_alias=AliasChoices("activity", "command"),
    )
    count: int = 1
    last_time: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("last_activity_time", "last_time", "lastTime"),
    )
    user_name: str | None = Field(
        default=None, validation_alias=AliasChoices("user_name", "userName"),
    )
    scope_name: str | None = Field(
        default=None, validation_alias=AliasChoices("scope_name", "guildName"),
    )

    @field_validator("platform", "scope", "user_id", "activity", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("count", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> int:
        try:
            count = int(value)
        except (TypeError, ValueError):
            return 1
        return count if count >= 1 else 1

    @field_validator("last_time", mode="before")
    @classmethod
    def _empty_time(cls, value: Any) -> Any:
        return value or None

    def to_event(self) -> ActivityEvent:
        ts = self.last_time
        if ts is not None and ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        return ActivityEvent(
            platform=self.platform,
            scope=self.scope,
            user_id=self.user_id,
            activity=self.activity,
            increment=self.count,
            timestamp=ts,
            user_name=self.user_name,
            scope_name=self.scope_name,
        )


def legacy_timestamp(date: Any, hour: Any) -> datetime | None:
    """``date`` days + ``hour`` hours after the Unix epoch, or ``None``."""
    try:
        days = float(date)
        hours = float(hour or 0)
        if not (math.isfinite(days) and math.isfinite(hours)):
            return None
        return _EPOCH + timedelta(days=days, hours=hours)
    except (TypeError, ValueError, OverflowError):
        return None


# ---------------------------------------------------------------------------
# EventMerger
# ---------------------------------------------------------------------------
class EventMerger:
    """Merges events into counters through a :class:`SqlStore`-like store."""

    def __init__(self, store, clock: Clock | None = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()

    # -- single key ----------------------------------------------------------
    def merge(self, event: ActivityEvent) -> dict[str, Any]:
        """Fold one live event into its counter and return the stored row."""
        validate_event(event)
        return self._merge_key(event)

    def _merge_key(self, event: ActivityEvent) -> dict[str, Any]:
        ts = _utc(event.timestamp or self.clock.now())
        query = event.query()

        existing = self.store.get("counters", query, limit=1)
        if not existing:
            row = {
                **query,
                "count": event.increment,
                "last_activity_time": ts,
                "user_name": clean_name(event.user_name, event.user_id) or None,
                "scope_name": clean_name(event.scope_name, event.scope) or None,
            }
            try:
                return self.store.create("counters", row)
            except ConflictError:
                # Another writer created the key between our read and write.
                logger.debug("Create lost race for %s; retrying as update", event.key)
                existing = self.store.get("counters", query, limit=1)
                if not existing:
                    raise
        return self._update(existing[0], event, ts)

    def _update(
        self, current: dict[str, Any], event: ActivityEvent, ts: datetime,
    ) -> dict[str, Any]:
        last_time = current["last_activity_time"]
        user_name = reconcile(
            current.get("user_name"), event.user_name, last_time, ts, event.user_id,
        ) or None
        scope_name = reconcile(
            current.get("scope_name"), event.scope_name, last_time, ts, event.scope,
        ) or None
        newest = max(last_time, ts) if last_time is not None else ts

        self.store.set(
            "counters",
            {"id": current["id"]},
            {"count": {"$inc": event.increment}, "last_activity_time": {"$max": ts}},
        )
        names = {}
        if user_name != current.get("user_name"):
            names["user_name"] = user_name
        if scope_name != current.get("scope_name"):
            names["scope_name"] = scope_name
        if names:
            # Skipped when a concurrent merge has moved the time past our read.
            self.store.set(
                "counters",
                {"id": current["id"], "last_activity_time": {"$lte": newest}},
                names,
            )
        return {
            **current,
            "count": current["count"] + event.increment,
            "last_activity_time": newest,
            "user_name": user_name,
            "scope_name": scope_name,
        }

    # -- batches -------------------------------------------------------------
    def group_events(self, events: Iterable[ActivityEvent]) -> dict[tuple, ActivityEvent]:
        """Collapse events sharing a key into one pre-summed event.

        The grouped event carries the summed increment, the latest
        timestamp and, per name field, the most recent valid name.
        """
        grouped: dict[tuple, ActivityEvent] = {}
        now = self.clock.now()
        for ev in events:
            ts = _utc(ev.timestamp or now)
            prev = grouped.get(ev.key)
            if prev is None:
                grouped[ev.key] = replace(
                    ev,
                    timestamp=ts,
                    user_name=clean_name(ev.user_name, ev.user_id) or None,
                    scope_name=clean_name(ev.scope_name, ev.scope) or None,
                )
                continue
            grouped[ev.key] = replace(
                prev,
                increment=prev.increment + ev.increment,
                timestamp=max(prev.timestamp, ts),
                user_name=reconcile(
                    prev.user_name, ev.user_name, prev.timestamp, ts, ev.user_id,
                ) or None,
                scope_name=reconcile(
                    prev.scope_name, ev.scope_name, prev.timestamp, ts, ev.scope,
                ) or None,
            )
        return grouped

    def merge_batch(
        self,
        events: Iterable[ActivityEvent],
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        result: BatchResult | None = None,
    ) -> BatchResult:
        """Merge many events; one store round-trip per distinct key."""
        result = result or BatchResult()
        valid: list[ActivityEvent] = []
        for ev in events:
            try:
                validate_event(ev)
            except ValidationError as exc:
                result.invalid += 1
                logger.debug("Skipping invalid event: %s", exc)
                continue
            valid.append(ev)

        grouped = list(self.group_events(valid).values())
        result.attempted += len(grouped)
        if not grouped:
            return result

        chunk_size = max(1, chunk_size)
        total_chunks = math.ceil(len(grouped) / chunk_size)
        for index in range(total_chunks):
            chunk = grouped[index * chunk_size:(index + 1) * chunk_size]
            logger.info(
                "Merging chunk %d/%d (%d keys)", index + 1, total_chunks, len(chunk),
            )
            for offset, ev in enumerate(chunk):
                try:
                    self._merge_key(ev)
                    result.imported += 1
                except (ConflictError, ValidationError) as exc:
                    result.errors += 1
                    result.failed_keys.append(ev.key)
                    logger.warning("Failed to merge %s: %s", ev.key, exc)
                except FatalError as exc:
                    unwritten = grouped[index * chunk_size + offset:]
                    result.errors += len(unwritten)
                    result.failed_keys.extend(e.key for e in unwritten)
                    logger.error(
                        "Batch merge aborted at %s: %s (%s)", ev.key, exc, result.summary(),
                    )
                    raise BatchAbortedError(str(exc), result) from exc

        logger.info("Batch merge finished: %s", result.summary())
        return result

    # -- imports -------------------------------------------------------------
    def clear_all(self) -> int:
        """Remove every counter and every rank snapshot; returns counters removed."""
        snapshots = self.store.remove("snapshots", {})
        removed = self.store.remove("counters", {})
        logger.info(
            "Overwrite requested: removed %d counters and %d snapshots", removed, snapshots,
        )
        return removed

    def import_records(
        self,
        raw_records: Iterable[Mapping[str, Any]],
        *,
        overwrite: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> BatchResult:
        """Import decoded export records (dicts).

        Records missing platform, scope, user or activity are counted as
        ``invalid``.  With *overwrite* every existing counter and snapshot is removed
        first.
        """
        result = BatchResult()
        events: list[ActivityEvent] = []
        for raw in raw_records:
            try:
                events.append(ImportRecord.model_validate(raw).to_event())
            except PydanticValidationError as exc:
                result.invalid += 1
                logger.debug("Invalid import record %r: %s", raw, exc.errors())

        if overwrite:
            self.clear_all()

        return self.merge_batch(events, chunk_size=chunk_size, result=result)

    def import_legacy(
        self,
        *,
        overwrite: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> BatchResult:
        """Import the hour-bucketed legacy command table.

        Account ids are translated to platform user ids through
        ``account_bindings``.  Rows without a binding, without a channel or
        with an unusable date/hour are ``skipped``.

        Raises
        ------
        FatalError
            If the legacy table does not exist or holds no rows.
        """
        if not self.store.has_table("legacy_commands"):
            raise FatalError("Legacy command table not found")
        rows = self.store.get("legacy_commands")
        if not rows:
            raise FatalError("Legacy command table is empty")

        bindings: dict[str, tuple[str, str]] = {}
        if self.store.has_table("bindings"):
            for b in self.store.get("bindings"):
                if b.get("aid") and b.get("pid"):
                    bindings[str(b["aid"])] = (b["platform"], b["pid"])
        logger.info(
            "Legacy import: %d source rows, %d account bindings", len(rows), len(bindings),
        )

        if overwrite:
            self.clear_all()

        result = BatchResult()
        events: list[ActivityEvent] = []
        for row in rows:
            binding = bindings.get(str(row.get("user_id")))
            ts = legacy_timestamp(row.get("date"), row.get("hour"))
            if binding is None or not row.get("channel_id") or ts is None:
                result.skipped += 1
                continue
            platform, pid = binding
            events.append(ActivityEvent(
                platform=platform,
                scope=str(row["channel_id"]),
                user_id=pid,
                activity=row.get("name") or MESSAGE_ACTIVITY,
                increment=max(1, int(row.get("count") or 1)),
                timestamp=ts,
            ))

        return self.merge_batch(events, chunk_size=chunk_size, result=result)
