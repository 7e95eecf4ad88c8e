"""
statrank.bot.cogs.capture — Live Activity Capture
==================================================

Turns gateway events into :class:`ActivityEvent` merges:

- ``on_message``                → ``_message`` counter for the author
- ``on_command``                → prefix / hybrid command counter
- ``on_app_command_completion`` → slash command counter

Gates, in order: bot authors, private messages (unless
``record_private``), then ``ignore_rules``.  Subcommands are recorded as
``parent.child`` so the aggregator can fold them into ``parent``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from statrank.constants import ACTIVITY_SEPARATOR, MESSAGE_ACTIVITY, PRIVATE_SCOPE
from statrank.database.engine import run_db
from statrank.engine.merger import ActivityEvent
from statrank.engine.rules import match_rule_list

if TYPE_CHECKING:
    from statrank.bot.core import StatRankBot

logger = logging.getLogger(__name__)

PLATFORM = "discord"


def command_activity(qualified_name: str) -> str:
    """``"stat user"`` → ``"stat.user"``."""
    return ACTIVITY_SEPARATOR.join(qualified_name.split())


def build_event(
    author: discord.abc.User,
    guild: discord.Guild | None,
    activity: str = MESSAGE_ACTIVITY,
) -> ActivityEvent:
    return ActivityEvent(
        platform=PLATFORM,
        scope=str(guild.id) if guild is not None else PRIVATE_SCOPE,
        user_id=str(author.id),
        activity=activity,
        user_name=getattr(author, "display_name", None),
        scope_name=guild.name if guild is not None else None,
    )


class Capture(commands.Cog, name="Capture"):
    """Records messages and command invocations as counters."""

    def __init__(self, bot: StatRankBot) -> None:
        self.bot = bot

    def should_record(self, event: ActivityEvent, *, is_bot: bool = False) -> bool:
        if is_bot:
            return False
        if event.scope == PRIVATE_SCOPE and not self.bot.cfg.record_private:
            return False
        if self.bot.cfg.ignore_rules and match_rule_list(
            self.bot.cfg.ignore_rules,
            event.platform, event.scope, event.user_id, event.activity,
        ):
            logger.debug("Ignoring %s by rule", event.key)
            return False
        return True

    async def record(self, event: ActivityEvent, *, is_bot: bool = False) -> bool:
        """Merge *event* unless a gate rejects it; returns whether it was stored."""
        if not self.should_record(event, is_bot=is_bot):
            return False
        await run_db(self.bot.merger.merge, event)
        return True

    # -------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        try:
            await self.record(
                build_event(message.author, message.guild),
                is_bot=message.author.bot,
            )
        except Exception:
            logger.exception(
                "Error recording message %s from user %s",
                message.id, message.author.id,
            )

    @commands.Cog.listener()
    async def on_command(self, ctx: commands.Context) -> None:
        if ctx.command is None:
            return
        try:
            await self.record(
                build_event(ctx.author, ctx.guild, command_activity(ctx.command.qualified_name)),
                is_bot=ctx.author.bot,
            )
        except Exception:
            logger.exception("Error recording command %s", ctx.command.qualified_name)

    @commands.Cog.listener()
    async def on_app_command_completion(
        self,
        interaction: discord.Interaction,
        command: app_commands.Command | app_commands.ContextMenu,
    ) -> None:
        try:
            await self.record(
                build_event(
                    interaction.user, interaction.guild,
                    command_activity(command.qualified_name),
                ),
                is_bot=interaction.user.bot,
            )
        except Exception:
            logger.exception("Error recording app command %s", command.qualified_name)


async def setup(bot: StatRankBot) -> None:
    await bot.add_cog(Capture(bot))
