"""
statrank.services.stats_service — Query, List, Clear & Export
==============================================================

Operations the chat surface and the API share.  Each takes a store and
plain keyword filters and returns plain data; presentation is left to the
caller.

Views
-----
- ``activity`` — command usage grouped by command (``_message`` excluded)
- ``user``     — message counts grouped by user
- ``scope``    — all activity grouped by scope

All functions are synchronous — call via ``await run_db(...)`` from async
code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from statrank.config import StatRankConfig
from statrank.constants import MESSAGE_ACTIVITY
from statrank.engine.aggregator import (
    AggregateOptions,
    AggregateResult,
    FilterRules,
    aggregate,
    format_list,
)
from statrank.engine.clock import Clock, SystemClock
from statrank.errors import NotFoundError

logger = logging.getLogger(__name__)

VIEW_GROUPING: dict[str, str] = {
    "activity": "activity",
    "user": "user",
    "scope": "scope",
}

_VIEW_LABELS = {"activity": "command", "user": "message", "scope": "scope"}

# Ids per delete statement in a filtered clear.
_REMOVE_BATCH = 500


@dataclass(slots=True)
class StatQuery:
    view: str
    records: list[dict[str, Any]]
    title: str


@dataclass(slots=True)
class ClearResult:
    removed: int
    dropped: bool = False
    description: str = ""
    conditions: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _conditions(
    user: str | None, scope: str | None, platform: str | None, activity: str | None,
) -> list[str]:
    labelled = (("user", user), ("scope", scope), ("platform", platform), ("command", activity))
    return [f"{label} {value}" for label, value in labelled if value]


def build_stat_query(
    view: str,
    *,
    user: str | None = None,
    scope: str | None = None,
    platform: str | None = None,
    activity: str | None = None,
) -> dict[str, Any]:
    """Store query for *view* narrowed by the optional filters."""
    if view not in VIEW_GROUPING:
        raise ValueError(f"Unknown view {view!r}; expected one of {', '.join(VIEW_GROUPING)}")
    query: dict[str, Any] = {}
    if user:
        query["user_id"] = user
    if scope:
        query["scope"] = scope
    if platform:
        query["platform"] = platform

    if view == "user":
        query["activity"] = MESSAGE_ACTIVITY
    elif view == "activity":
        query["activity"] = activity or {"$neq": MESSAGE_ACTIVITY}
    elif activity:
        query["activity"] = activity
    return query


def query_stats(
    store,
    view: str,
    *,
    user: str | None = None,
    scope: str | None = None,
    platform: str | None = None,
    activity: str | None = None,
) -> StatQuery | None:
    """Fetch the counters behind *view*; ``None`` when nothing matches."""
    query = build_stat_query(view, user=user, scope=scope, platform=platform, activity=activity)
    records = store.get("counters", query)
    if not records:
        return None

    conditions = _conditions(user, scope, platform, activity)
    label = _VIEW_LABELS[view]
    if conditions:
        title = f"{label.capitalize()} stats for {', '.join(conditions)}"
    else:
        title = f"Global {label} stats"
    return StatQuery(view=view, records=records, title=title)


def stats_view(
    store,
    view: str,
    config: StatRankConfig,
    *,
    page: int = 1,
    sort: str = "count",
    skip_paging: bool = False,
    now: datetime | None = None,
    **filters: str | None,
) -> AggregateResult | None:
    """:func:`query_stats` followed by :func:`aggregate` with config defaults."""
    stat = query_stats(store, view, **filters)
    if stat is None:
        return None
    options = AggregateOptions(
        group_by=VIEW_GROUPING[view],
        filters=FilterRules(config.display_allowlist, config.display_denylist),
        merge_activities=config.merge_activities,
        sort=sort,
        page=page,
        page_size=config.page_size,
        skip_paging=skip_paging,
        truncate_id=True,
        title=stat.title,
    )
    return aggregate(stat.records, options, now=now)


def list_values(store, *, users: bool = False, scopes: bool = False) -> str:
    """Distinct platforms and commands, or users / scopes on request.

    Raises
    ------
    NotFoundError
        If there are no counters at all.
    """
    records = store.get("counters")
    if not records:
        raise NotFoundError("No records found")

    parts: list[str | None] = []
    if not (users or scopes):
        parts.append(format_list(records, "platform", "Platforms"))
        parts.append(format_list(records, "activity", "Commands"))
    if users:
        parts.append(format_list(records, "user_id", "Users"))
    if scopes:
        parts.append(format_list(records, "scope", "Scopes"))
    return "\n".join(p for p in parts if p)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
def clear_counters(
    store,
    *,
    user: str | None = None,
    platform: str | None = None,
    scope: str | None = None,
    activity: str | None = None,
    below: int = 0,
    older_than_days: int = 0,
    clock: Clock | None = None,
) -> ClearResult:
    """Delete counters, or everything when no filter is given.

    A full clear drops and recreates both the counter and snapshot tables.
    A filtered clear removes the matching counters and their snapshots.
    """
    key_filters = {"user_id": user, "platform": platform, "scope": scope, "activity": activity}
    query: dict[str, Any] = {k: v for k, v in key_filters.items() if v}
    conditions = _conditions(user, scope, platform, activity)

    if not query and below <= 0 and older_than_days <= 0:
        total = store.count("counters")
        logger.info("Dropping all counters (%d rows) and snapshots", total)
        store.drop("counters")
        store.drop("snapshots")
        return ClearResult(removed=total, dropped=True, description="Removed all counters")

    thresholds: list[str] = []
    if below > 0:
        query["count"] = {"$lt": below}
        thresholds.append(f"fewer than {below}")
    if older_than_days > 0:
        now = (clock or SystemClock()).now()
        query["last_activity_time"] = {"$lt": now - timedelta(days=older_than_days)}
        thresholds.append(f"idle for {older_than_days} days")

    ids = [r["id"] for r in store.get("counters", query, fields=["id"])]
    removed = 0
    for i in range(0, len(ids), _REMOVE_BATCH):
        batch = ids[i:i + _REMOVE_BATCH]
        removed += store.remove("counters", {"id": {"$in": batch}})
        store.remove("snapshots", {"counter_id": {"$in": batch}})

    if conditions:
        description = f"Removed counters for {', '.join(conditions)}"
        if thresholds:
            description += f" with {' and '.join(thresholds)}"
    else:
        description = f"Removed all counters with {' and '.join(thresholds)}"
    description += f" ({removed} total)"
    logger.info("%s", description)
    return ClearResult(removed=removed, description=description, conditions=conditions)


def export_counters(
    store,
    *,
    user: str | None = None,
    platform: str | None = None,
    scope: str | None = None,
    activity: str | None = None,
) -> list[dict[str, Any]]:
    """Matching counters as JSON-ready dicts (no internal id, ISO times).

    Raises
    ------
    NotFoundError
        If no counter matches.
    """
    key_filters = {"user_id": user, "platform": platform, "scope": scope, "activity": activity}
    records = store.get(
        "counters",
        {k: v for k, v in key_filters.items() if v},
        sort={"platform": "asc", "scope": "asc", "user_id": "asc", "activity": "asc"},
    )
    if not records:
        raise NotFoundError("No counters match the export filters")

    exported = []
    for r in records:
        row = {k: v for k, v in r.items() if k != "id"}
        ts = row.get("last_activity_time")
        row["last_activity_time"] = ts.isoformat() if ts else None
        exported.append(row)
    return exported
