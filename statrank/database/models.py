"""
statrank.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables owned by the engine:
- activity_counters      — one row per (platform, scope, user, activity)
- rank_snapshots         — immutable per-bucket rank captures of message counters

Tables read by the legacy importer (owned by the host, never written here):
- legacy_command_stats   — hour-bucketed command history keyed by account id
- account_bindings       — account id → platform user id mapping
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all statrank ORM models."""


# ---------------------------------------------------------------------------
# ActivityCounter — the canonical aggregate
# ---------------------------------------------------------------------------
class ActivityCounter(Base):
    """Accumulated count for one (platform, scope, user, activity) key.

    ``activity`` is a command name or the ``_message`` sentinel.
    ``count`` and ``last_activity_time`` only ever move forward.
    """
    __tablename__ = "activity_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[str] = mapped_column(String(60), nullable=False)
    scope: Mapped[str] = mapped_column(String(150), nullable=False)
    user_id: Mapped[str] = mapped_column(String(150), nullable=False)
    activity: Mapped[str] = mapped_column(String(150), nullable=False)
    count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_activity_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scope_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "platform", "scope", "user_id", "activity",
            name="uq_activity_counters_key",
        ),
        Index("ix_activity_counters_activity", "activity"),
        Index("ix_activity_counters_scope", "platform", "scope"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityCounter id={self.id} {self.platform}:{self.scope}:"
            f"{self.user_id} activity={self.activity!r} count={self.count}>"
        )


# ---------------------------------------------------------------------------
# RankSnapshot — immutable point-in-time rank capture
# ---------------------------------------------------------------------------
class RankSnapshot(Base):
    """Count and in-scope rank of one counter at one time bucket.

    Written once by the snapshot engine, never updated.
    """
    __tablename__ = "rank_snapshots"

    counter_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bucket: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_rank_snapshots_bucket", "bucket"),
    )

    def __repr__(self) -> str:
        return (
            f"<RankSnapshot counter={self.counter_id} bucket={self.bucket} "
            f"count={self.count} rank={self.rank}>"
        )


# ---------------------------------------------------------------------------
# Legacy sources (read-only)
# ---------------------------------------------------------------------------
class LegacyCommandRecord(Base):
    """One row of the old hour-bucketed command table.

    ``date`` is days since the Unix epoch, ``hour`` the hour of that day.
    ``user_id`` is an account id, translated through ``account_bindings``.
    """
    __tablename__ = "legacy_command_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(String(150), nullable=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(150), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(60), nullable=True)
    date: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    count: Mapped[int | None] = mapped_column(Integer, nullable=True)


class AccountBinding(Base):
    """Maps a cross-platform account id (``aid``) to a platform user id."""
    __tablename__ = "account_bindings"

    platform: Mapped[str] = mapped_column(String(60), primary_key=True)
    pid: Mapped[str] = mapped_column(String(150), primary_key=True)
    aid: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    bid: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
