"""
statrank.bot.cogs.tasks — Periodic Background Tasks
====================================================

- **Rank snapshot** — hourly tick.  Each tick captures the current bucket
  of width ``rank_update_interval``; ticks landing in an already captured
  bucket write nothing, so the tick rate only bounds how late a bucket
  can be recorded.

Runs via ``run_db()`` to avoid blocking the event loop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from statrank.database.engine import run_db

if TYPE_CHECKING:
    from statrank.bot.core import StatRankBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled snapshot capture."""

    def __init__(self, bot: StatRankBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.snapshot_loop.start()

    async def cog_unload(self) -> None:
        self.snapshot_loop.cancel()

    @tasks.loop(hours=1)
    async def snapshot_loop(self):
        """Capture per-scope message rankings for the current bucket."""
        try:
            result = await run_db(self.bot.snapshots.capture)
            if result.aborted:
                logger.warning("Snapshot for %s aborted; retrying next tick", result.bucket)
            elif result.written:
                logger.info(
                    "Snapshot task complete: %d rows written for %s",
                    result.written, result.bucket,
                )
        except Exception:
            logger.exception("Snapshot task failed", extra={"task": "snapshot"})

    @snapshot_loop.before_loop
    async def _wait_snapshot(self):
        await self.bot.wait_until_ready()


async def setup(bot: StatRankBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
