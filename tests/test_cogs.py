"""
tests/test_cogs.py — Capture & Stats Cog Tests
===============================================

Cogs are instantiated with a MagicMock bot carrying a real config; the
merger is either a mock or a real :class:`EventMerger` on SQLite.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from statrank.bot.cogs.capture import Capture, build_event, command_activity
from statrank.bot.cogs.stats import Stats, code_block, parse_export
from statrank.bot.identity import DiscordIdentityResolver
from statrank.config import StatRankConfig
from statrank.engine.deltas import RankDelta
from statrank.engine.merger import ActivityEvent, BatchResult, EventMerger
from statrank.errors import BatchAbortedError


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run a coroutine synchronously."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _bot(**cfg) -> MagicMock:
    bot = MagicMock()
    bot.cfg = StatRankConfig(**cfg)
    return bot


def _author(user_id=42, name="Alice", is_bot=False) -> MagicMock:
    author = MagicMock()
    author.id = user_id
    author.display_name = name
    author.bot = is_bot
    return author


def _guild(guild_id=1, name="Guild") -> MagicMock:
    guild = MagicMock()
    guild.id = guild_id
    guild.name = name
    return guild


def _message(author=None, guild=None) -> MagicMock:
    message = MagicMock()
    message.author = author or _author()
    message.guild = guild
    return message


# ---------------------------------------------------------------------------
# Event construction
# ---------------------------------------------------------------------------
class TestBuildEvent:
    def test_guild_message(self):
        event = build_event(_author(), _guild())
        assert event == ActivityEvent(
            platform="discord", scope="1", user_id="42", activity="_message",
            user_name="Alice", scope_name="Guild",
        )

    def test_direct_message_is_private(self):
        event = build_event(_author(), None, "help")
        assert event.scope == "private"
        assert event.scope_name is None
        assert event.activity == "help"

    def test_subcommands_joined(self):
        assert command_activity("stat user") == "stat.user"
        assert command_activity("rank") == "rank"


# ---------------------------------------------------------------------------
# Capture gates
# ---------------------------------------------------------------------------
class TestShouldRecord:
    def test_bots_ignored(self):
        cog = Capture(_bot())
        assert cog.should_record(build_event(_author(), _guild()), is_bot=True) is False

    def test_private_needs_opt_in(self):
        event = build_event(_author(), None)
        assert Capture(_bot()).should_record(event) is False
        assert Capture(_bot(record_private=True)).should_record(event) is True

    def test_ignore_rules(self):
        cog = Capture(_bot(ignore_rules=("help", "::7")))
        assert cog.should_record(build_event(_author(), _guild(), "help")) is False
        assert cog.should_record(build_event(_author(user_id=7), _guild())) is False
        assert cog.should_record(build_event(_author(), _guild(), "stat")) is True


class TestListeners:
    def test_on_message_merges(self):
        bot = _bot()
        cog = Capture(bot)
        run_async(cog.on_message(_message(guild=_guild())))

        bot.merger.merge.assert_called_once()
        event = bot.merger.merge.call_args.args[0]
        assert event.key == ("discord", "1", "42", "_message")

    def test_bot_message_not_merged(self):
        bot = _bot()
        run_async(Capture(bot).on_message(_message(author=_author(is_bot=True), guild=_guild())))
        bot.merger.merge.assert_not_called()

    def test_merge_failure_is_logged_not_raised(self, caplog):
        bot = _bot()
        bot.merger.merge.side_effect = RuntimeError("store down")
        run_async(Capture(bot).on_message(_message(guild=_guild())))
        assert "Error recording message" in caplog.text

    def test_on_command(self):
        bot = _bot()
        ctx = MagicMock()
        ctx.author = _author()
        ctx.guild = _guild()
        ctx.command.qualified_name = "stat user"
        run_async(Capture(bot).on_command(ctx))
        assert bot.merger.merge.call_args.args[0].activity == "stat.user"

    def test_end_to_end_counts(self, store, clock):
        bot = _bot()
        bot.merger = EventMerger(store, clock)
        cog = Capture(bot)
        for _ in range(3):
            run_async(cog.on_message(_message(guild=_guild())))
        [counter] = store.get("counters")
        assert counter["count"] == 3
        assert counter["user_name"] == "Alice"
        assert counter["scope_name"] == "Guild"


# ---------------------------------------------------------------------------
# Stats cog helpers
# ---------------------------------------------------------------------------
class TestStatsHelpers:
    def test_code_block_truncates(self):
        block = code_block("x" * 5000)
        assert block.startswith("```\n")
        assert block.endswith("…\n```")
        assert len(block) <= 2000

    def test_missing_names_resolved(self):
        class Resolver:
            async def user_name(self, platform, scope, user_id):
                return "Bob"

        bot = _bot()
        bot.identity = Resolver()
        deltas = [
            RankDelta(1, "u1", "Alice", 5, 0, 5, 1, None, None),
            RankDelta(2, "u2", "", 3, 0, 3, 2, None, None),
        ]
        named = run_async(Stats(bot)._with_names(deltas, "g1"))
        assert [d.display_name for d in named] == ["Alice", "Bob"]


# ---------------------------------------------------------------------------
# Export file import
# ---------------------------------------------------------------------------
def _ctx() -> MagicMock:
    ctx = MagicMock()
    ctx.author = _author()
    ctx.defer = AsyncMock()
    ctx.send = AsyncMock()
    return ctx


def _attachment(payload: bytes) -> MagicMock:
    attachment = MagicMock(spec=discord.Attachment)
    attachment.read = AsyncMock(return_value=payload)
    return attachment


class TestParseExport:
    def test_list_of_records(self):
        assert parse_export(b'[{"platform": "discord"}]') == [{"platform": "discord"}]

    @pytest.mark.parametrize("payload", [b"not json", b'{"platform": "discord"}', b"[1, 2]", b"\xff"])
    def test_rejects_other_payloads(self, payload):
        with pytest.raises(ValueError):
            parse_export(payload)


class TestStatRestore:
    RECORDS = [
        {"platform": "discord", "scope": "g1", "user_id": "u1", "activity": "stat", "count": 4},
        {"platform": "discord", "scope": "g1", "user_id": "u2", "activity": "stat", "count": 2},
    ]

    def _bot(self, store, clock):
        bot = _bot()
        bot.merger = EventMerger(store, clock)
        return bot

    def test_imports_export_file(self, store, clock):
        cog = Stats(self._bot(store, clock))
        ctx = _ctx()
        payload = json.dumps(self.RECORDS).encode()

        run_async(Stats.statrestore.callback(cog, ctx, _attachment(payload), False))

        assert {r["user_id"]: r["count"] for r in store.get("counters")} == {"u1": 4, "u2": 2}
        assert ctx.send.call_args.args[0] == "✅ Imported 2 of 2 counters"

    def test_unreadable_file_reported(self, store, clock):
        ctx = _ctx()
        run_async(Stats.statrestore.callback(Stats(self._bot(store, clock)), ctx, _attachment(b"{"), False))
        assert ctx.send.call_args.args[0].startswith("❌ Unreadable export file")
        assert store.count("counters") == 0

    def test_aborted_import_reports_partial_result(self):
        bot = _bot()
        bot.merger.import_records.side_effect = BatchAbortedError(
            "store unreachable", BatchResult(attempted=3, imported=1, errors=2),
        )
        ctx = _ctx()
        payload = json.dumps(self.RECORDS).encode()

        run_async(Stats.statrestore.callback(Stats(bot), ctx, _attachment(payload), True))

        assert bot.merger.import_records.call_args.kwargs["overwrite"] is True
        assert ctx.send.call_args.args[0] == (
            "❌ Import aborted: store unreachable (Imported 1 of 3 counters (2 failed))"
        )


# ---------------------------------------------------------------------------
# Discord identity resolver
# ---------------------------------------------------------------------------
class TestDiscordIdentityResolver:
    def test_member_from_guild_cache(self):
        bot = MagicMock()
        member = MagicMock()
        member.display_name = "Alice"
        bot.get_guild.return_value.get_member.return_value = member
        name = run_async(DiscordIdentityResolver(bot).user_name("discord", "1", "42"))
        assert name == "Alice"

    def test_private_scope_uses_user_cache(self):
        bot = MagicMock()
        bot.get_user.return_value.display_name = "Bob"
        name = run_async(DiscordIdentityResolver(bot).user_name("discord", "private", "42"))
        assert name == "Bob"
        bot.get_guild.assert_not_called()

    def test_non_numeric_id(self):
        resolver = DiscordIdentityResolver(MagicMock())
        assert run_async(resolver.user_name("discord", "1", "someone")) is None
        assert run_async(resolver.scope_name("discord", "private")) is None

    def test_scope_name(self):
        bot = MagicMock()
        bot.get_guild.return_value.name = "Guild"
        assert run_async(DiscordIdentityResolver(bot).scope_name("discord", "1")) == "Guild"

    def test_fetch_failure_returns_none(self):
        bot = MagicMock()
        bot.get_guild.return_value = None

        async def _fail(guild_id):
            raise discord.HTTPException(MagicMock(status=500, reason="Server Error"), "boom")

        bot.fetch_guild = _fail
        assert run_async(DiscordIdentityResolver(bot).scope_name("discord", "1")) is None
