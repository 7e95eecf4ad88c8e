"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Keep config and database lookups away from the developer's real files.
# Must happen before any import of statrank.api.
# ---------------------------------------------------------------------------
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STATRANK_CONFIG", "tests-config-does-not-exist.yaml")

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from statrank.database.engine import init_db  # noqa: E402
from statrank.database.store import SqlStore  # noqa: E402
from statrank.engine.clock import FixedClock  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 30, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all statrank tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def store(db_engine: Engine) -> SqlStore:
    return SqlStore(db_engine)


@pytest.fixture
def clock() -> FixedClock:
    """A clock frozen at 2026-03-10 12:30 UTC."""
    return FixedClock(NOW)


@pytest.fixture
def make_counter(store: SqlStore):
    """Factory inserting one counter row with sensible defaults."""

    def _make(**overrides) -> dict:
        row = {
            "platform": "discord",
            "scope": "g1",
            "user_id": "u1",
            "activity": "_message",
            "count": 1,
            "last_activity_time": NOW,
            "user_name": None,
            "scope_name": None,
        }
        row.update(overrides)
        return store.create("counters", row)

    return _make
