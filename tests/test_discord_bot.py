"""Tests for the Discord bot integration.

All Discord objects are mocked; no real Discord connection required.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from murahdahla.config import Settings
from murahdahla.core.commands import CommandHandler, Invocation
from murahdahla.core.effects import Outcome
from murahdahla.core.errors import (
    ExternalSideEffectFailure,
    MessageGone,
    PermissionDenied,
    PersistenceFailure,
    ValidationError,
)
from murahdahla.discord.bot import (
    APPROVE,
    REJECT,
    MurahdahlaBot,
    is_discord_enabled,
    start_discord_bot,
)
from murahdahla.discord.gateway import DiscordGateway
from murahdahla.discord.helpers import (
    directory_from_guild,
    invocation_from_message,
    read_manifest,
    split_runner,
    strip_code_fence,
)
from murahdahla.models.race import ChannelGroup

from conftest import FakeGateway, Guild


def make_message(
    channel_id: int,
    content: str = "",
    author_id: int = 10,
    display_name: str = "Owner",
    role_ids: tuple[int, ...] = (),
) -> MagicMock:
    """Build a guild message mock from the fake server."""
    message = MagicMock(spec=discord.Message)
    message.content = content
    message.guild = MagicMock(spec=discord.Guild)
    message.guild.id = 1
    message.guild.owner_id = 10
    message.channel = MagicMock()
    message.channel.id = channel_id
    message.author = MagicMock(spec=discord.Member)
    message.author.id = author_id
    message.author.bot = False
    message.author.display_name = display_name
    message.author.roles = [_named(str(r), r) for r in role_ids]
    message.author.send = AsyncMock()
    message.attachments = []
    message.add_reaction = AsyncMock()
    message.delete = AsyncMock()
    return message


def make_ctx(message: MagicMock) -> MagicMock:
    ctx = MagicMock()
    ctx.message = message
    return ctx


def _named(name: str, item_id: int) -> MagicMock:
    item = MagicMock()
    item.name = name
    item.id = item_id
    return item


def _http_error(cls: type[discord.HTTPException], status: int) -> discord.HTTPException:
    response = MagicMock()
    response.status = status
    response.reason = "error"
    return cls(response, "error")


@pytest.fixture
def bot(settings: Settings, handler: CommandHandler) -> MurahdahlaBot:
    return MurahdahlaBot(settings=settings, handler=handler)


# ---------------------------------------------------------------------------
# is_discord_enabled / construction
# ---------------------------------------------------------------------------


class TestIsDiscordEnabled:
    def test_enabled_with_token(self) -> None:
        settings = Settings(
            murahdahla_env="production", discord_bot_token="t", discord_enabled=True
        )
        assert is_discord_enabled(settings) is True

    def test_disabled_in_development(self) -> None:
        settings = Settings(
            murahdahla_env="development", discord_bot_token="t", discord_enabled=True
        )
        assert is_discord_enabled(settings) is False

    def test_disabled_without_token(self) -> None:
        settings = Settings(
            murahdahla_env="production", discord_bot_token="", discord_enabled=True
        )
        assert is_discord_enabled(settings) is False

    def test_disabled_when_flag_false(self) -> None:
        settings = Settings(
            murahdahla_env="production", discord_bot_token="t", discord_enabled=False
        )
        assert is_discord_enabled(settings) is False


class TestBotConstruction:
    async def test_registers_every_command(self, bot: MurahdahlaBot) -> None:
        assert {c.name for c in bot.commands} == {
            "addgroup",
            "removegroup",
            "listgroups",
            "setadminrole",
            "setmodrole",
            "removeadminrole",
            "removemodrole",
            "rtastart",
            "igtstart",
            "stop",
            "refresh",
            "removetime",
            "settime",
            "setcollection",
        }

    async def test_prefix_from_settings(self, bot: MurahdahlaBot) -> None:
        assert bot.command_prefix == "!"
        assert bot.help_command is None

    def test_needs_engine_or_handler(self, settings: Settings) -> None:
        with pytest.raises(ValueError):
            MurahdahlaBot(settings=settings)

    async def test_setup_hook_loads_groups(
        self, bot: MurahdahlaBot, group: ChannelGroup, guild: Guild
    ) -> None:
        bot.handler.registry.forget(group)
        await bot.setup_hook()
        assert bot.handler.registry.resolve(guild.submission) == group


class TestStartDiscordBot:
    async def test_start_creates_task(self, engine: AsyncEngine) -> None:
        settings = Settings(
            murahdahla_env="production",
            database_url="sqlite+aiosqlite:///:memory:",
            discord_bot_token="test-token-not-real",
            discord_enabled=True,
        )
        with patch.object(MurahdahlaBot, "start", new_callable=AsyncMock) as mock_start:
            bot = await start_discord_bot(settings, engine)
            assert isinstance(bot, MurahdahlaBot)
            await asyncio.sleep(0.05)
            mock_start.assert_called_once_with("test-token-not-real")
            await bot.close()


# ---------------------------------------------------------------------------
# Command dispatch
# ---------------------------------------------------------------------------


class TestRun:
    async def test_success_reacts_approve(self, bot: MurahdahlaBot, guild: Guild) -> None:
        message = make_message(guild.general)
        call = AsyncMock(return_value=Outcome("done"))
        await bot._run(make_ctx(message), "stop", call)
        call.assert_awaited_once()
        inv = call.await_args.args[0]
        assert isinstance(inv, Invocation)
        assert (inv.server_id, inv.owner_id, inv.author_id) == (1, 10, 10)
        message.add_reaction.assert_awaited_once_with(APPROVE)
        message.author.send.assert_not_awaited()
        message.delete.assert_not_awaited()

    async def test_reply_is_sent_by_dm(self, bot: MurahdahlaBot, guild: Guild) -> None:
        message = make_message(guild.general)
        await bot._run(
            make_ctx(message), "listgroups", AsyncMock(return_value=Outcome("- weekly")), reply=True
        )
        message.author.send.assert_awaited_once_with("- weekly")

    async def test_error_reacts_reject_and_explains(
        self, bot: MurahdahlaBot, guild: Guild
    ) -> None:
        message = make_message(guild.general)
        call = AsyncMock(side_effect=PermissionDenied("you may not"))
        await bot._run(make_ctx(message), "stop", call)
        message.add_reaction.assert_awaited_once_with(REJECT)
        message.author.send.assert_awaited_once_with("`stop` failed: you may not")

    async def test_warnings_are_reported(self, bot: MurahdahlaBot, guild: Guild) -> None:
        message = make_message(guild.general)
        outcome = Outcome("ok", ["post leaderboard in <#102>: timed out"])
        await bot._run(make_ctx(message), "rtastart", AsyncMock(return_value=outcome))
        (text,) = message.author.send.await_args.args
        assert "- post leaderboard in <#102>: timed out" in text
        assert "`!refresh`" in text

    async def test_persistence_failure_notifies_maintainer(
        self, handler: CommandHandler, guild: Guild
    ) -> None:
        settings = Settings(
            murahdahla_env="development",
            database_url="sqlite+aiosqlite:///:memory:",
            maintenance_user_id="999",
        )
        bot = MurahdahlaBot(settings=settings, handler=handler)
        maintainer = MagicMock()
        maintainer.send = AsyncMock()
        bot.get_user = MagicMock(return_value=maintainer)

        message = make_message(guild.general)
        await bot._run(make_ctx(message), "stop", AsyncMock(side_effect=PersistenceFailure()))
        bot.get_user.assert_called_once_with(999)
        (text,) = maintainer.send.await_args.args
        assert "database error on server 1" in text

    async def test_submission_channel_command_is_deleted(
        self, bot: MurahdahlaBot, group: ChannelGroup, guild: Guild
    ) -> None:
        message = make_message(guild.submission, "!stop")
        await bot._run(make_ctx(message), "stop", AsyncMock(return_value=Outcome("ok")))
        message.delete.assert_awaited_once()
        message.add_reaction.assert_not_awaited()

    async def test_delete_even_when_command_fails(
        self, bot: MurahdahlaBot, group: ChannelGroup, guild: Guild
    ) -> None:
        message = make_message(guild.submission, "!settime x")
        call = AsyncMock(side_effect=ValidationError("bad"))
        await bot._run(make_ctx(message), "settime", call)
        message.delete.assert_awaited_once()
        message.author.send.assert_awaited_once_with("`settime` failed: bad")


class TestSubmissionMessages:
    async def test_submission_recorded_and_deleted(
        self,
        bot: MurahdahlaBot,
        handler: CommandHandler,
        gateway: FakeGateway,
        group: ChannelGroup,
        guild: Guild,
        invoke,
    ) -> None:
        await handler.rtastart(invoke(), "gameA")
        message = make_message(guild.submission, "01:23:45", author_id=77, display_name="U")
        await bot._handle_submission(message, invocation_from_message(message))
        message.delete.assert_awaited_once()
        message.author.send.assert_not_awaited()
        (board,) = gateway.in_channel(guild.leaderboard)
        assert "U — 01:23:45" in board

    async def test_rejected_submission_explained(
        self,
        bot: MurahdahlaBot,
        handler: CommandHandler,
        group: ChannelGroup,
        guild: Guild,
        invoke,
    ) -> None:
        await handler.rtastart(invoke(), "gameA")
        message = make_message(guild.submission, "fast", author_id=77)
        await bot._handle_submission(message, invocation_from_message(message))
        message.delete.assert_awaited_once()
        (text,) = message.author.send.await_args.args
        assert text.startswith("Your submission was not recorded:")

    async def test_other_channels_untouched(
        self, bot: MurahdahlaBot, group: ChannelGroup, guild: Guild
    ) -> None:
        message = make_message(guild.leaderboard, "01:23:45", author_id=77)
        await bot._handle_submission(message, invocation_from_message(message))
        message.delete.assert_not_awaited()

    async def test_bots_are_ignored(self, bot: MurahdahlaBot, guild: Guild) -> None:
        message = make_message(guild.submission, "01:23:45")
        message.author.bot = True
        bot.get_context = AsyncMock()
        await bot.on_message(message)
        bot.get_context.assert_not_awaited()


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class TestDiscordGateway:
    async def test_post_returns_message_id(self) -> None:
        client = MagicMock()
        channel = client.get_partial_messageable.return_value
        channel.send = AsyncMock(return_value=MagicMock(id=55))
        assert await DiscordGateway(client).post_message(101, "hi") == 55
        client.get_partial_messageable.assert_called_once_with(101)

    @pytest.mark.parametrize(
        ("cls", "status", "expected"),
        [
            (discord.Forbidden, 403, "missing permission"),
            (discord.NotFound, 404, "not found"),
            (discord.HTTPException, 500, "HTTP 500"),
        ],
    )
    async def test_errors_are_translated(
        self, cls: type[discord.HTTPException], status: int, expected: str
    ) -> None:
        client = MagicMock()
        message = client.get_partial_messageable.return_value.get_partial_message.return_value
        message.edit = AsyncMock(side_effect=_http_error(cls, status))
        with pytest.raises(ExternalSideEffectFailure, match=expected):
            await DiscordGateway(client).edit_message(101, 1, "x")

    async def test_edit_of_deleted_message_is_gone(self) -> None:
        client = MagicMock()
        message = client.get_partial_messageable.return_value.get_partial_message.return_value
        message.edit = AsyncMock(side_effect=_http_error(discord.NotFound, 404))
        with pytest.raises(MessageGone):
            await DiscordGateway(client).edit_message(101, 1, "x")

    async def test_forbidden_edit_is_not_gone(self) -> None:
        client = MagicMock()
        message = client.get_partial_messageable.return_value.get_partial_message.return_value
        message.edit = AsyncMock(side_effect=_http_error(discord.Forbidden, 403))
        with pytest.raises(ExternalSideEffectFailure) as info:
            await DiscordGateway(client).edit_message(101, 1, "x")
        assert not isinstance(info.value, MessageGone)

    async def test_delete_of_missing_message_is_fine(self) -> None:
        client = MagicMock()
        message = client.get_partial_messageable.return_value.get_partial_message.return_value
        message.delete = AsyncMock(side_effect=_http_error(discord.NotFound, 404))
        await DiscordGateway(client).delete_message(101, 1)

    async def test_grant_role(self) -> None:
        client = MagicMock()
        member = client.get_guild.return_value.get_member.return_value
        member.add_roles = AsyncMock()
        await DiscordGateway(client).grant_role(1, 77, 501)
        role = member.add_roles.await_args.args[0]
        assert role.id == 501

    async def test_grant_without_guild_fails(self) -> None:
        client = MagicMock()
        client.get_guild.return_value = None
        with pytest.raises(ExternalSideEffectFailure, match="not connected"):
            await DiscordGateway(client).grant_role(1, 77, 501)

    async def test_revoke_for_departed_member_is_skipped(self) -> None:
        client = MagicMock()
        guild = client.get_guild.return_value
        guild.get_member.return_value = None
        guild.fetch_member = AsyncMock(side_effect=_http_error(discord.NotFound, 404))
        await DiscordGateway(client).revoke_role(1, 77, 501)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_invocation_from_message(self) -> None:
        message = make_message(101, author_id=20, display_name="Runner", role_ids=(601, 602))
        inv = invocation_from_message(message)
        assert inv == Invocation(1, 10, 101, 20, "Runner", frozenset({601, 602}))

    def test_no_invocation_for_dm(self) -> None:
        message = make_message(101)
        message.guild = None
        assert invocation_from_message(message) is None

    def test_directory_from_guild(self) -> None:
        guild = MagicMock()
        guild.text_channels = [_named("weekly-submit", 101)]
        guild.roles = [_named("weekly-done", 501)]
        directory = directory_from_guild(guild)
        assert directory.channel("weekly-submit") == 101
        assert directory.role("weekly-done") == 501

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("```yaml\ngroup_name: g\n```", "group_name: g\n"),
            ("```\ngroup_name: g\n```", "group_name: g\n"),
            ("  group_name: g  ", "group_name: g"),
        ],
    )
    def test_strip_code_fence(self, text: str, expected: str) -> None:
        assert strip_code_fence(text) == expected

    def test_split_runner(self) -> None:
        assert split_runner("Some Runner 01:00:00") == ("Some Runner", "01:00:00")
        with pytest.raises(ValidationError):
            split_runner("01:00:00")

    async def test_read_manifest_from_attachment(self) -> None:
        message = make_message(300)
        attachment = MagicMock()
        attachment.size = 20
        attachment.read = AsyncMock(return_value=b"group_name: g\n")
        message.attachments = [attachment]
        assert await read_manifest(message, "ignored") == "group_name: g\n"

    async def test_read_manifest_rejects_large_or_binary(self) -> None:
        message = make_message(300)
        attachment = MagicMock()
        attachment.size = 100_000
        message.attachments = [attachment]
        with pytest.raises(ValidationError, match="too large"):
            await read_manifest(message, "")

        attachment.size = 2
        attachment.read = AsyncMock(return_value=b"\xff\xfe")
        with pytest.raises(ValidationError, match="UTF-8"):
            await read_manifest(message, "")

    async def test_read_manifest_inline(self) -> None:
        message = make_message(300)
        assert await read_manifest(message, "```yaml\na: 1\n```") == "a: 1\n"
