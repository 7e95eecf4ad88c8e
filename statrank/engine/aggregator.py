"""
statrank.engine.aggregator — Grouped, Filtered, Paged Rankings
===============================================================

Turns a flat list of counter rows into a display-ready ranking:

1. **Filter** each counter against :class:`FilterRules`.  The haystack is
   ``"platform:scope:user"``, or the activity name when grouping by
   activity.  A non-empty allow-list is exclusive; otherwise the deny-list
   removes matches.  Both use substring matching.
2. **Group** by ``platform``, ``scope``, ``user`` or ``activity``, summing
   counts and keeping the latest time.  Activity views drop the
   ``_message`` sentinel and, with ``merge_activities``, fold
   ``foo.bar`` into ``foo``.
3. **Sort** by count (desc), time (desc) or key (asc).  Python's sort is
   stable, so equal items keep their input order.
4. **Page**: 1-based, clamped, at least one page; ``limit`` caps the list
   before page maths.

Usage::

    result = aggregate(counters, AggregateOptions(group_by="user", page=2))
    print(result.title)
    print("\\n".join(result.rows))
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from statrank.constants import ACTIVITY_SEPARATOR, MESSAGE_ACTIVITY
from statrank.engine.text import NAME_WIDTH, format_row, format_time_ago

GROUP_FIELDS: dict[str, str] = {
    "platform": "platform",
    "scope": "scope",
    "user": "user_id",
    "activity": "activity",
}

SORT_MODES = ("count", "time", "key")


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class FilterRules:
    """Substring allow/deny lists."""
    allow: tuple[str, ...] = ()
    deny: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.allow or self.deny)

    def keeps(self, haystack: str) -> bool:
        if self.allow:
            return any(p in haystack for p in self.allow)
        if self.deny:
            return not any(p in haystack for p in self.deny)
        return True


@dataclass(frozen=True, slots=True)
class AggregateOptions:
    group_by: str = "user"
    filters: FilterRules = field(default_factory=FilterRules)
    merge_activities: bool = True
    sort: str = "count"
    page: int = 1
    page_size: int = 15
    limit: int | None = None
    skip_paging: bool = False
    truncate_id: bool = False
    title: str = ""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class AggregateItem:
    key: str
    count: int = 0
    last_time: datetime | None = None
    name: str = ""
    _name_time: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.key


@dataclass(slots=True)
class AggregateResult:
    items: list[AggregateItem]
    rows: list[str]
    page: int
    total_pages: int
    total_items: int
    title: str


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------
def identity_of(counter: Mapping[str, Any], group_by: str) -> str:
    """String the allow/deny lists are matched against."""
    if group_by == "activity":
        return counter["activity"]
    return f"{counter['platform']}:{counter['scope']}:{counter['user_id']}"


def filter_counters(
    counters: Iterable[Mapping[str, Any]],
    rules: FilterRules,
    group_by: str = "user",
) -> list[Mapping[str, Any]]:
    if not rules:
        return list(counters)
    return [c for c in counters if rules.keeps(identity_of(c, group_by))]


def group_key(counter: Mapping[str, Any], group_by: str, merge_activities: bool) -> str:
    key = counter[GROUP_FIELDS[group_by]]
    if group_by == "activity" and merge_activities:
        key = key.split(ACTIVITY_SEPARATOR, 1)[0]
    return key


def group_counters(
    counters: Iterable[Mapping[str, Any]],
    group_by: str,
    merge_activities: bool = True,
) -> list[AggregateItem]:
    """Collapse counters into one :class:`AggregateItem` per group key.

    Output order is first-seen order of each key.
    """
    if group_by not in GROUP_FIELDS:
        raise ValueError(f"Unknown group_by {group_by!r}")

    name_field = {"user": "user_name", "scope": "scope_name"}.get(group_by)
    groups: dict[str, AggregateItem] = {}
    for c in counters:
        if group_by == "activity" and c["activity"] == MESSAGE_ACTIVITY:
            continue
        key = group_key(c, group_by, merge_activities)
        item = groups.get(key)
        if item is None:
            item = groups[key] = AggregateItem(key=key)
        item.count += c["count"]
        ts = c.get("last_activity_time")
        if ts is not None and (item.last_time is None or ts > item.last_time):
            item.last_time = ts
        if name_field and c.get(name_field):
            if not item.name or (ts is not None and (item._name_time is None or ts > item._name_time)):
                item.name = c[name_field]
                item._name_time = ts
    return list(groups.values())


def sort_items(items: list[AggregateItem], mode: str = "count") -> list[AggregateItem]:
    if mode == "count":
        return sorted(items, key=lambda i: i.count, reverse=True)
    if mode == "time":
        floor = datetime.min.replace(tzinfo=UTC)
        return sorted(items, key=lambda i: i.last_time or floor, reverse=True)
    if mode == "key":
        return sorted(items, key=lambda i: i.key)
    raise ValueError(f"Unknown sort mode {mode!r}; expected one of {SORT_MODES}")


def paginate(
    items: Sequence[AggregateItem],
    page: int,
    page_size: int,
    limit: int | None = None,
) -> tuple[list[AggregateItem], int, int]:
    """Return ``(page_items, clamped_page, total_pages)``."""
    page_size = max(1, page_size)
    total = len(items)
    effective = min(total, limit) if limit else total
    total_pages = math.ceil(effective / page_size) or 1
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    end = min(start + page_size, effective)
    return list(items[start:end]), page, total_pages


def _shorten_id(key: str) -> str:
    if len(key) <= NAME_WIDTH:
        return key
    return "…" + key[-(NAME_WIDTH - 1):]


def format_items(
    items: Iterable[AggregateItem],
    now: datetime,
    truncate_id: bool = False,
) -> list[str]:
    rows = []
    for item in items:
        name = item.name or (_shorten_id(item.key) if truncate_id else item.key)
        rows.append(format_row(name, item.count, format_time_ago(item.last_time, now)))
    return rows


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def aggregate(
    counters: Iterable[Mapping[str, Any]],
    options: AggregateOptions | None = None,
    *,
    now: datetime | None = None,
) -> AggregateResult:
    """Filter, group, sort and page *counters* according to *options*."""
    opts = options or AggregateOptions()
    now = now or datetime.now(UTC)

    kept = filter_counters(counters, opts.filters, opts.group_by)
    items = sort_items(group_counters(kept, opts.group_by, opts.merge_activities), opts.sort)
    total_items = len(items)

    if opts.skip_paging:
        page_items = items[:opts.limit] if opts.limit else items
        page, total_pages = 1, 1
    else:
        page_items, page, total_pages = paginate(items, opts.page, opts.page_size, opts.limit)

    title = opts.title
    if not opts.skip_paging and total_pages > 1:
        title = f"{title} ({page}/{total_pages})".strip()

    return AggregateResult(
        items=page_items,
        rows=format_items(page_items, now, opts.truncate_id),
        page=page,
        total_pages=total_pages,
        total_items=total_items,
        title=title,
    )


def unique_values(counters: Iterable[Mapping[str, Any]], field_name: str) -> list[str]:
    """Distinct non-empty values of *field_name*, in first-seen order."""
    seen: dict[str, None] = {}
    for c in counters:
        value = c.get(field_name)
        if value:
            seen.setdefault(value, None)
    return list(seen)


def format_list(
    counters: Sequence[Mapping[str, Any]],
    field_name: str,
    title: str,
) -> str | None:
    """``title`` followed by the comma-joined distinct values, or ``None``.

    Users and scopes render as ``name (id)`` when a name is known; the
    ``_message`` sentinel never appears in an activity list.
    """
    values = unique_values(counters, field_name)
    if field_name == "activity":
        values = [v for v in values if v != MESSAGE_ACTIVITY]
    elif field_name in ("user_id", "scope"):
        name_field = "user_name" if field_name == "user_id" else "scope_name"
        names: dict[str, str] = {}
        for c in counters:
            if c.get(name_field):
                names.setdefault(c[field_name], c[name_field])
        values = [f"{names[v]} ({v})" if v in names else v for v in values]
    if not values:
        return None
    return f"{title}\n{', '.join(values)}"
