"""
statrank.bot.core — Bot Instance & Cog Loader
==============================================

:class:`StatRankBot` is a ``commands.Bot`` subclass that carries the
shared engine objects so every cog reaches them through ``self.bot``:

- ``bot.cfg``        — :class:`StatRankConfig`
- ``bot.store``      — :class:`SqlStore` on the shared SQLAlchemy engine
- ``bot.merger``     — :class:`EventMerger` for live capture and imports
- ``bot.snapshots``  — :class:`SnapshotEngine` driven by the tasks cog
- ``bot.deltas``     — :class:`DeltaEngine` behind the rank command
- ``bot.identity``   — :class:`DiscordIdentityResolver` for name lookup
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from statrank.bot.identity import DiscordIdentityResolver
from statrank.config import StatRankConfig
from statrank.database.store import SqlStore
from statrank.engine.aggregator import FilterRules
from statrank.engine.clock import Clock, SystemClock
from statrank.engine.deltas import DeltaEngine
from statrank.engine.merger import EventMerger
from statrank.engine.snapshots import SnapshotEngine

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "statrank.bot.cogs.capture",
    "statrank.bot.cogs.stats",
    "statrank.bot.cogs.tasks",
]


class StatRankBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`StatRankConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` for the counter and snapshot tables.
    """

    def __init__(self, cfg: StatRankConfig, engine: Engine, clock: Clock | None = None) -> None:
        intents = discord.Intents.default()
        intents.message_content = True    # Privileged: prefix commands
        intents.members = True            # Privileged: member cache for names
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description="Activity counters and rankings",
        )

        self.cfg = cfg
        self.engine = engine
        self.clock = clock or SystemClock()
        self.store = SqlStore(engine)
        self.merger = EventMerger(self.store, self.clock)
        self.snapshots = SnapshotEngine(
            self.store,
            self.clock,
            bucket_hours=cfg.bucket_hours,
            filters=FilterRules(cfg.rank_allowlist, cfg.rank_denylist),
            chunk_size=cfg.import_chunk_size,
        )
        self.deltas = DeltaEngine(self.store, self.clock, bucket_hours=cfg.bucket_hours)
        self.identity = DiscordIdentityResolver(self)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all cog extensions; a broken cog is logged, not fatal."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        await super().close()
