"""
statrank.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy import Engine

from statrank.config import StatRankConfig, load_config
from statrank.database.engine import create_db_engine
from statrank.database.store import SqlStore
from statrank.engine.clock import Clock, SystemClock


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> StatRankConfig:
    path = os.getenv("STATRANK_CONFIG", "config.yaml")
    if not os.path.exists(path):
        return StatRankConfig()
    return load_config(path)


def get_store(engine: Annotated[Engine, Depends(get_engine)]) -> SqlStore:
    return SqlStore(engine)


def get_clock() -> Clock:
    return SystemClock()
