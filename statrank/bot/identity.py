"""
statrank.bot.identity — Discord Name Lookup
============================================

Implements the :class:`IdentityResolver` protocol over the gateway cache,
falling back to REST fetches.  Every miss returns ``None``; callers wrap
lookups in :func:`resolve_name` to get the raw-ID fallback and timeout.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from statrank.constants import PRIVATE_SCOPE

if TYPE_CHECKING:
    from discord.ext import commands

logger = logging.getLogger(__name__)


def _as_snowflake(value: str) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class DiscordIdentityResolver:
    """Resolves Discord user and guild IDs to display names."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def user_name(self, platform: str, scope: str, user_id: str) -> str | None:
        uid = _as_snowflake(user_id)
        if uid is None:
            return None

        gid = _as_snowflake(scope) if scope != PRIVATE_SCOPE else None
        guild = self.bot.get_guild(gid) if gid else None
        if guild is not None:
            member = guild.get_member(uid)
            if member is None:
                try:
                    member = await guild.fetch_member(uid)
                except discord.HTTPException:
                    member = None
            if member is not None:
                return member.display_name

        user = self.bot.get_user(uid)
        if user is None:
            try:
                user = await self.bot.fetch_user(uid)
            except discord.HTTPException as exc:
                logger.debug("fetch_user(%s) failed: %s", uid, exc)
                return None
        return user.display_name

    async def scope_name(self, platform: str, scope: str) -> str | None:
        gid = _as_snowflake(scope)
        if gid is None:
            return None
        guild = self.bot.get_guild(gid)
        if guild is None:
            try:
                guild = await self.bot.fetch_guild(gid)
            except discord.HTTPException as exc:
                logger.debug("fetch_guild(%s) failed: %s", gid, exc)
                return None
        return guild.name
