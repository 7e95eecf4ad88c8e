"""
statrank.api.routes.stats — Read-only Ranking Endpoints
========================================================

- ``GET /stats/{view}``             — paged aggregate rankings
- ``GET /rank/{platform}/{scope}``  — message rank changes over a window
- ``GET /lists``                    — distinct platforms / commands / users / scopes
- ``GET /export``                   — raw counters as JSON records
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from statrank.api.deps import get_clock, get_config, get_store
from statrank.config import StatRankConfig
from statrank.database.store import SqlStore
from statrank.engine.clock import Clock
from statrank.engine.deltas import DeltaEngine, format_rank_change, parse_time_range
from statrank.errors import NotFoundError
from statrank.services.stats_service import export_counters, list_values, stats_view

router = APIRouter(tags=["stats"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class StatItem(BaseModel):
    key: str
    name: str
    count: int
    last_time: str | None


class StatsResponse(BaseModel):
    title: str
    page: int
    total_pages: int
    total_items: int
    items: list[StatItem]
    rows: list[str]


class RankEntry(BaseModel):
    counter_id: int
    user_id: str
    name: str
    current_count: int
    previous_count: int
    count_delta: int
    current_rank: int
    previous_rank: int | None
    rank_delta: int | None
    change: str


class RankResponse(BaseModel):
    platform: str
    scope: str
    hours: int
    start: str
    end: str
    entries: list[RankEntry]


class ListResponse(BaseModel):
    text: str


class CounterRecord(BaseModel):
    platform: str
    scope: str
    user_id: str
    activity: str
    count: int
    last_activity_time: str | None
    user_name: str | None
    scope_name: str | None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.get("/stats/{view}", response_model=StatsResponse)
def get_stats(
    view: Literal["activity", "user", "scope"],
    store: SqlStore = Depends(get_store),
    cfg: StatRankConfig = Depends(get_config),
    clock: Clock = Depends(get_clock),
    page: int = Query(1, ge=1),
    sort: Literal["count", "time", "key"] = Query("count"),
    user: str | None = Query(None),
    scope: str | None = Query(None),
    platform: str | None = Query(None),
    activity: str | None = Query(None),
):
    """Aggregated ranking for one view."""
    result = stats_view(
        store, view, cfg,
        page=page, sort=sort, now=clock.now(),
        user=user, scope=scope, platform=platform, activity=activity,
    )
    if result is None:
        raise HTTPException(404, "No records found")
    return StatsResponse(
        title=result.title,
        page=result.page,
        total_pages=result.total_pages,
        total_items=result.total_items,
        items=[
            StatItem(
                key=i.key,
                name=i.display_name,
                count=i.count,
                last_time=i.last_time.isoformat() if i.last_time else None,
            )
            for i in result.items
        ],
        rows=result.rows,
    )


@router.get("/rank/{platform}/{scope}", response_model=RankResponse)
def get_rank(
    platform: str,
    scope: str,
    store: SqlStore = Depends(get_store),
    cfg: StatRankConfig = Depends(get_config),
    clock: Clock = Depends(get_clock),
    timerange: str = Query("d", alias="range"),
    limit: int = Query(10, ge=1, le=100),
):
    """Message rank changes in one scope; malformed ranges mean one day."""
    window = parse_time_range(timerange, clock.now())
    engine = DeltaEngine(store, clock, bucket_hours=cfg.bucket_hours)
    deltas = engine.compute(scope, window.hours, limit, platform=platform)
    return RankResponse(
        platform=platform,
        scope=scope,
        hours=window.hours,
        start=window.start.isoformat(),
        end=window.end.isoformat(),
        entries=[
            RankEntry(
                counter_id=d.counter_id,
                user_id=d.user_id,
                name=d.display_name,
                current_count=d.current_count,
                previous_count=d.previous_count,
                count_delta=d.count_delta,
                current_rank=d.current_rank,
                previous_rank=d.previous_rank,
                rank_delta=d.rank_delta,
                change=format_rank_change(d),
            )
            for d in deltas
        ],
    )


@router.get("/lists", response_model=ListResponse)
def get_lists(
    store: SqlStore = Depends(get_store),
    users: bool = Query(False),
    scopes: bool = Query(False),
):
    try:
        return ListResponse(text=list_values(store, users=users, scopes=scopes))
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))


@router.get("/export", response_model=list[CounterRecord])
def get_export(
    store: SqlStore = Depends(get_store),
    user: str | None = Query(None),
    scope: str | None = Query(None),
    platform: str | None = Query(None),
    activity: str | None = Query(None),
):
    """Counters as records that ``EventMerger.import_records`` accepts."""
    try:
        rows = export_counters(
            store, user=user, scope=scope, platform=platform, activity=activity,
        )
    except NotFoundError as exc:
        raise HTTPException(404, str(exc))
    return [CounterRecord(**r) for r in rows]
