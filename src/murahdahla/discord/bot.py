"""Discord bot for Murahdahla.

Runs alongside FastAPI using the same event loop. Prefix commands map to
the core command surface; plain messages in a submission channel are
submissions. Every message in a submission channel is deleted once it has
been handled so the channel never shows a time.

The bot is optional: if DISCORD_BOT_TOKEN is not set, nothing starts.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import discord
from discord import Intents
from discord.ext import commands
from sqlalchemy.ext.asyncio import AsyncEngine

from murahdahla.core.commands import CommandHandler, Invocation
from murahdahla.core.effects import Outcome
from murahdahla.core.errors import MurahdahlaError, PersistenceFailure
from murahdahla.discord.gateway import DiscordGateway
from murahdahla.discord.helpers import (
    directory_from_guild,
    invocation_from_message,
    read_manifest,
    split_runner,
)

if TYPE_CHECKING:
    from murahdahla.config import Settings

logger = logging.getLogger(__name__)

APPROVE = "👍"
REJECT = "👎"

Handler = Callable[[Invocation], Awaitable[Outcome]]


class MurahdahlaBot(commands.Bot):
    """The race bot.

    Commands are tiered (see ``murahdahla.core.permissions``); results are
    acknowledged with a reaction and explained by direct message.
    """

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine | None = None,
        handler: CommandHandler | None = None,
    ) -> None:
        intents = Intents.default()
        intents.message_content = True
        intents.members = True  # Role grants need member lookups

        super().__init__(
            command_prefix=settings.command_prefix,
            intents=intents,
            description="Murahdahla -- asynchronous race coordinator.",
            help_command=None,
        )
        self.settings = settings
        self.engine = engine
        if handler is None:
            if engine is None:
                raise ValueError("MurahdahlaBot needs an engine or a CommandHandler")
            handler = CommandHandler(engine, DiscordGateway(self), settings)
        self.handler = handler
        self._setup_commands()

    def _setup_commands(self) -> None:
        """Register prefix commands."""

        @self.command(name="addgroup")
        async def addgroup_command(ctx: commands.Context, *, manifest: str = "") -> None:
            async def run(inv: Invocation) -> Outcome:
                text = await read_manifest(ctx.message, manifest)
                return await self.handler.addgroup(inv, text, directory_from_guild(ctx.guild))

            await self._run(ctx, "addgroup", run)

        @self.command(name="removegroup")
        async def removegroup_command(ctx: commands.Context, *, name: str = "") -> None:
            await self._run(ctx, "removegroup", lambda inv: self.handler.removegroup(inv, name))

        @self.command(name="listgroups")
        async def listgroups_command(ctx: commands.Context) -> None:
            await self._run(ctx, "listgroups", self.handler.listgroups, reply=True)

        @self.command(name="setadminrole")
        async def setadminrole_command(ctx: commands.Context, *, role: str = "") -> None:
            await self._run(
                ctx,
                "setadminrole",
                lambda inv: self.handler.setadminrole(inv, role, directory_from_guild(ctx.guild)),
            )

        @self.command(name="setmodrole")
        async def setmodrole_command(ctx: commands.Context, *, role: str = "") -> None:
            await self._run(
                ctx,
                "setmodrole",
                lambda inv: self.handler.setmodrole(inv, role, directory_from_guild(ctx.guild)),
            )

        @self.command(name="removeadminrole")
        async def removeadminrole_command(ctx: commands.Context) -> None:
            await self._run(ctx, "removeadminrole", self.handler.removeadminrole)

        @self.command(name="removemodrole")
        async def removemodrole_command(ctx: commands.Context) -> None:
            await self._run(ctx, "removemodrole", self.handler.removemodrole)

        @self.command(name="rtastart")
        async def rtastart_command(ctx: commands.Context, *, payload: str = "") -> None:
            await self._run(ctx, "rtastart", lambda inv: self.handler.rtastart(inv, payload))

        @self.command(name="igtstart")
        async def igtstart_command(ctx: commands.Context, *, payload: str = "") -> None:
            await self._run(ctx, "igtstart", lambda inv: self.handler.igtstart(inv, payload))

        @self.command(name="stop")
        async def stop_command(ctx: commands.Context) -> None:
            await self._run(ctx, "stop", self.handler.stop)

        @self.command(name="refresh")
        async def refresh_command(ctx: commands.Context) -> None:
            await self._run(ctx, "refresh", self.handler.refresh)

        @self.command(name="removetime")
        async def removetime_command(ctx: commands.Context, *, runner: str = "") -> None:
            await self._run(ctx, "removetime", lambda inv: self.handler.removetime(inv, runner))

        @self.command(name="settime")
        async def settime_command(ctx: commands.Context, *, args: str = "") -> None:
            async def run(inv: Invocation) -> Outcome:
                runner, value = split_runner(args)
                return await self.handler.settime(inv, runner, value)

            await self._run(ctx, "settime", run)

        @self.command(name="setcollection")
        async def setcollection_command(ctx: commands.Context, *, args: str = "") -> None:
            async def run(inv: Invocation) -> Outcome:
                runner, value = split_runner(args)
                return await self.handler.setcollection(inv, runner, value)

            await self._run(ctx, "setcollection", run)

    async def setup_hook(self) -> None:
        """Load the channel-group map before the gateway connects."""
        count = await self.handler.load()
        logger.info("discord_groups_loaded count=%d", count)

    async def on_ready(self) -> None:
        user = self.user
        name = user.name if user else "unknown"
        logger.info("discord_bot_ready user=%s guilds=%d", name, len(self.guilds))

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        ctx = await self.get_context(message)
        if ctx.valid:
            await self.invoke(ctx)
            return
        inv = invocation_from_message(message)
        if inv is None:
            return
        await self._handle_submission(message, inv)

    async def on_command_error(
        self, ctx: commands.Context, error: commands.CommandError
    ) -> None:
        if isinstance(error, commands.CommandNotFound):
            return
        original = getattr(error, "original", error)
        logger.error(
            "discord_command_error command=%s",
            ctx.command.name if ctx.command else "?",
            exc_info=original,
        )
        await self._notify_maintainer(
            f"Command `{ctx.message.content[:200]}` failed unexpectedly: {original!r}"
        )
        await self._discard_if_submission_channel(ctx.message)

    # --- Dispatch ---

    async def _run(
        self, ctx: commands.Context, command: str, call: Handler, *, reply: bool = False
    ) -> None:
        """Run a core command and turn its outcome into chat feedback."""
        message = ctx.message
        inv = invocation_from_message(message)
        if inv is None:
            return
        deleting = self._in_submission_channel(message)
        try:
            outcome = await call(inv)
        except MurahdahlaError as exc:
            logger.info("command_rejected command=%s user=%d err=%s", command, inv.author_id, exc)
            if not deleting:
                await self._react(message, REJECT)
            await self._dm(message.author, f"`{command}` failed: {exc}")
            if isinstance(exc, PersistenceFailure):
                await self._notify_maintainer(
                    f"`{command}` hit a database error on server {inv.server_id}"
                )
        else:
            logger.info("command_ok command=%s user=%d", command, inv.author_id)
            if not deleting:
                await self._react(message, APPROVE)
            if reply and outcome.message:
                await self._dm(message.author, outcome.message)
            if outcome.warnings:
                await self._report_warnings(message.author, command, outcome.warnings)
        finally:
            if deleting:
                await self._delete(message)

    async def _handle_submission(self, message: discord.Message, inv: Invocation) -> None:
        if not self._in_submission_channel(message):
            return
        try:
            outcome = await self.handler.handle_message(inv, message.content)
        except MurahdahlaError as exc:
            logger.info("submission_rejected user=%d err=%s", inv.author_id, exc)
            await self._dm(message.author, f"Your submission was not recorded: {exc}")
            return
        finally:
            await self._delete(message)
        if outcome is not None and outcome.warnings:
            await self._report_warnings(message.author, "submission", outcome.warnings)

    def _in_submission_channel(self, message: discord.Message) -> bool:
        group = self.handler.registry.resolve(message.channel.id)
        return group is not None and group.submission_channel_id == message.channel.id

    async def _discard_if_submission_channel(self, message: discord.Message) -> None:
        if self._in_submission_channel(message):
            await self._delete(message)

    # --- Feedback ---

    async def _report_warnings(
        self, user: discord.abc.User, command: str, warnings: list[str]
    ) -> None:
        body = "\n".join(f"- {w}" for w in warnings)
        await self._dm(
            user,
            f"`{command}` was applied, but some chat updates failed "
            f"(`{self.settings.command_prefix}refresh` resyncs the leaderboard):\n{body}",
        )
        await self._notify_maintainer(f"`{command}` side effects failed:\n{body}")

    async def _react(self, message: discord.Message, emoji: str) -> None:
        with contextlib.suppress(discord.Forbidden, discord.HTTPException):
            await message.add_reaction(emoji)

    async def _delete(self, message: discord.Message) -> None:
        try:
            await message.delete()
        except discord.NotFound:
            pass
        except discord.HTTPException as exc:
            logger.warning("message_delete_failed channel=%d err=%s", message.channel.id, exc)

    async def _dm(self, user: discord.abc.User, content: str) -> None:
        try:
            await user.send(content[:2000])
        except (discord.Forbidden, discord.HTTPException) as exc:
            logger.info("dm_failed user=%s err=%s", user.id, exc)

    async def _notify_maintainer(self, content: str) -> None:
        user_id = self.settings.maintenance_user
        if user_id is None:
            return
        user = self.get_user(user_id)
        if user is None:
            try:
                user = await self.fetch_user(user_id)
            except discord.HTTPException:
                logger.warning("maintainer_lookup_failed user=%d", user_id)
                return
        await self._dm(user, content)


def is_discord_enabled(settings: Settings) -> bool:
    """Whether the lifespan should connect the race bot.

    Needs ``DISCORD_ENABLED`` and a token. A development run never connects,
    so a local copy cannot answer commands or delete messages in a live server.
    """
    if settings.murahdahla_env == "development":
        logger.info("race_bot_not_connected env=development")
        return False
    return settings.discord_enabled and bool(settings.discord_bot_token)


async def start_discord_bot(settings: Settings, engine: AsyncEngine) -> MurahdahlaBot:
    """Launch the race bot as a background task and return it for shutdown.

    The channel map loads in ``setup_hook`` before the gateway connects.
    Login and connection errors are logged; the HTTP views keep serving.
    """
    bot = MurahdahlaBot(settings=settings, engine=engine)

    async def _serve() -> None:
        try:
            await bot.start(settings.discord_bot_token)
        except asyncio.CancelledError:
            logger.info("race_bot_cancelled")
        except Exception:  # login or gateway failure ends the bot task only
            logger.exception("race_bot_failed")
        finally:
            if not bot.is_closed():
                await bot.close()

    asyncio.create_task(_serve(), name="murahdahla-bot")
    logger.info("race_bot_task_started")
    return bot
