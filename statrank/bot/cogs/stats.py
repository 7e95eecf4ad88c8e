"""
statrank.bot.cogs.stats — Ranking & Maintenance Commands
=========================================================

Hybrid commands:
- /stat       — paged activity, message or scope rankings
- /rank       — message rank changes over a time window in this server
- /statlist   — distinct platforms / commands / users / scopes (manage server)
- /statclear  — delete counters by filter (manage server)
- /statimport — import the legacy command table (manage server)
- /statrestore — import a JSON export file (manage server)

Rendering stays plain text in a code block so the fixed-width rows line up.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from statrank.bot.cogs.capture import PLATFORM
from statrank.database.engine import run_db
from statrank.engine.deltas import RankDelta, format_ranking_text, parse_time_range
from statrank.engine.identity import resolve_name
from statrank.errors import BatchAbortedError, FatalError, NotFoundError
from statrank.services.stats_service import clear_counters, list_values, stats_view

if TYPE_CHECKING:
    from statrank.bot.core import StatRankBot

logger = logging.getLogger(__name__)

# Discord message limit minus code fence overhead.
_MAX_BLOCK = 1990


def code_block(text: str) -> str:
    if len(text) > _MAX_BLOCK:
        text = text[:_MAX_BLOCK - 1] + "…"
    return f"```\n{text}\n```"


def parse_export(data: bytes) -> list[dict]:
    """Decode an export file into the record dicts ``import_records`` takes.

    Raises
    ------
    ValueError
        If the payload is not UTF-8 JSON holding a list of objects.
    """
    records = json.loads(data.decode("utf-8"))
    if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
        raise ValueError("Export file must hold a JSON list of counter records")
    return records


class Stats(commands.Cog, name="Stats"):
    """Read-side commands over counters and snapshots."""

    def __init__(self, bot: StatRankBot) -> None:
        self.bot = bot

    async def _with_names(self, deltas: list[RankDelta], scope: str) -> list[RankDelta]:
        """Fill in missing user names through the identity resolver."""
        resolver = self.bot.identity
        timeout = self.bot.cfg.name_lookup_timeout
        named = []
        for d in deltas:
            if not d.user_name:
                name = await resolve_name(
                    lambda d=d: resolver.user_name(PLATFORM, scope, d.user_id),
                    d.user_id,
                    timeout,
                )
                d = replace(d, user_name=name)
            named.append(d)
        return named

    # -------------------------------------------------------------------
    # /stat
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="stat",
        description="Show command, message or server activity rankings.",
    )
    @app_commands.describe(
        view="What to rank",
        page="Page number",
        member="Only count this member",
        everywhere="Include every server, not just this one",
    )
    @app_commands.choices(view=[
        app_commands.Choice(name="Commands", value="activity"),
        app_commands.Choice(name="Messages", value="user"),
        app_commands.Choice(name="Servers", value="scope"),
    ])
    async def stat(
        self,
        ctx: commands.Context,
        view: str = "activity",
        page: int = 1,
        member: discord.Member | None = None,
        everywhere: bool = False,
    ) -> None:
        if view not in ("activity", "user", "scope"):
            await ctx.send("❌ View must be one of: activity, user, scope.", ephemeral=True)
            return
        scope = None
        if ctx.guild is not None and not everywhere and view != "scope":
            scope = str(ctx.guild.id)

        result = await run_db(
            stats_view,
            self.bot.store,
            view,
            self.bot.cfg,
            page=page,
            now=self.bot.clock.now(),
            scope=scope,
            user=str(member.id) if member else None,
            platform=PLATFORM,
        )
        if result is None or not result.rows:
            await ctx.send("No records found.", ephemeral=True)
            return
        await ctx.send(code_block(result.title + "\n" + "\n".join(result.rows)))

    # -------------------------------------------------------------------
    # /rank
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="rank",
        description="Message ranking with rank changes over a time window.",
    )
    @app_commands.describe(
        timerange="d, w, m or e.g. 12h, 3d, 2w (default: one day)",
        page="Page number",
    )
    async def rank(self, ctx: commands.Context, timerange: str = "d", page: int = 1) -> None:
        if ctx.guild is None:
            await ctx.send("Rankings are only available in servers.", ephemeral=True)
            return
        scope = str(ctx.guild.id)
        page = max(1, page)
        page_size = self.bot.cfg.rank_page_size
        window = parse_time_range(timerange, self.bot.clock.now())

        deltas = await run_db(
            self.bot.deltas.compute, scope, window.hours, page * page_size,
            platform=PLATFORM,
        )
        shown = deltas[(page - 1) * page_size:]
        if not shown:
            await ctx.send(f"{ctx.guild.name}: no data yet.", ephemeral=True)
            return
        shown = await self._with_names(shown, scope)

        title = (
            f"{ctx.guild.name} message ranking "
            f"({window.start:%Y-%m-%d} → {window.end:%Y-%m-%d})"
        )
        if page > 1:
            title += f" page {page}"
        await ctx.send(code_block(format_ranking_text(shown, title)))

    # -------------------------------------------------------------------
    # Maintenance (manage server)
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="statlist",
        description="List known platforms and commands, or users / servers.",
    )
    @commands.has_guild_permissions(manage_guild=True)
    async def statlist(
        self, ctx: commands.Context, users: bool = False, scopes: bool = False,
    ) -> None:
        try:
            text = await run_db(list_values, self.bot.store, users=users, scopes=scopes)
        except NotFoundError:
            await ctx.send("No records found.", ephemeral=True)
            return
        await ctx.send(code_block(text), ephemeral=True)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="statclear",
        description="Delete counters matching the given filters (all if none).",
    )
    @app_commands.describe(
        user="User ID",
        scope="Server ID",
        command="Command name",
        below="Only counters with fewer than this many events",
        days="Only counters idle for this many days",
    )
    @commands.has_guild_permissions(manage_guild=True)
    async def statclear(
        self,
        ctx: commands.Context,
        user: str | None = None,
        scope: str | None = None,
        command: str | None = None,
        below: int = 0,
        days: int = 0,
    ) -> None:
        result = await run_db(
            clear_counters,
            self.bot.store,
            user=user,
            scope=scope,
            activity=command,
            below=below,
            older_than_days=days,
            clock=self.bot.clock,
        )
        logger.info("Clear by %s: %s", ctx.author.id, result.description)
        await ctx.send(f"✅ {result.description}", ephemeral=True)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="statimport",
        description="Import counters from the legacy command table.",
    )
    @app_commands.describe(overwrite="Remove all existing counters first")
    @commands.has_guild_permissions(manage_guild=True)
    async def statimport(self, ctx: commands.Context, overwrite: bool = False) -> None:
        if not self.bot.cfg.enable_legacy_import:
            await ctx.send("❌ Legacy import is disabled in config.", ephemeral=True)
            return
        await ctx.defer(ephemeral=True)
        await self._run_import(ctx, self.bot.merger.import_legacy, overwrite=overwrite)

    @commands.hybrid_command(  # type: ignore[arg-type]
        name="statrestore",
        description="Import counters from a JSON export file.",
    )
    @app_commands.describe(
        file="JSON list of counter records, as written by the export endpoint",
        overwrite="Remove all existing counters and snapshots first",
    )
    @commands.has_guild_permissions(manage_guild=True)
    async def statrestore(
        self, ctx: commands.Context, file: discord.Attachment, overwrite: bool = False,
    ) -> None:
        await ctx.defer(ephemeral=True)
        try:
            records = parse_export(await file.read())
        except ValueError as exc:
            await ctx.send(f"❌ Unreadable export file: {exc}", ephemeral=True)
            return
        await self._run_import(
            ctx, self.bot.merger.import_records, records, overwrite=overwrite,
        )

    async def _run_import(self, ctx: commands.Context, func, *args, overwrite: bool) -> None:
        try:
            result = await run_db(
                func, *args,
                overwrite=overwrite,
                chunk_size=self.bot.cfg.import_chunk_size,
            )
        except BatchAbortedError as exc:
            await ctx.send(f"❌ Import aborted: {exc} ({exc.result.summary()})", ephemeral=True)
            return
        except FatalError as exc:
            await ctx.send(f"❌ Import failed: {exc}", ephemeral=True)
            return
        logger.info("Import by %s: %s", ctx.author.id, result.summary())
        await ctx.send(f"✅ {result.summary()}", ephemeral=True)


async def setup(bot: StatRankBot) -> None:
    await bot.add_cog(Stats(bot))
