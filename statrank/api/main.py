"""
statrank.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn statrank.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from statrank import __version__  # noqa: E402
from statrank.api.deps import get_engine  # noqa: E402
from statrank.api.routes.stats import router as stats_router  # noqa: E402
from statrank.database.engine import init_db  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    init_db(engine)
    logger.info("statrank API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("statrank API shutting down")


app = FastAPI(
    title="statrank API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(stats_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
