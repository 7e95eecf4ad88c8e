"""
statrank.engine.identity — Display Name Lookup
===============================================

Name lookup is an external capability that may be slow or unavailable.
The engine only relies on :func:`resolve_name`, which never raises and
falls back to the raw identifier.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from statrank.engine.names import clean_name

logger = logging.getLogger(__name__)


class IdentityResolver(Protocol):
    """Anything that can turn platform IDs into human-readable names."""

    async def user_name(self, platform: str, scope: str, user_id: str) -> str | None: ...

    async def scope_name(self, platform: str, scope: str) -> str | None: ...


async def resolve_name(
    lookup: Callable[[], Awaitable[str | None]],
    fallback: str,
    timeout: float = 3.0,
) -> str:
    """Await *lookup* with a *timeout*; return *fallback* on any failure.

    Empty answers and answers that merely echo the identifier also fall
    back.
    """
    try:
        name = await asyncio.wait_for(lookup(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.debug("Name lookup for %s timed out after %.1fs", fallback, timeout)
        return fallback
    except Exception as exc:  # lookups are best-effort
        logger.debug("Name lookup for %s failed: %s", fallback, exc)
        return fallback
    return clean_name(name, fallback) or fallback
