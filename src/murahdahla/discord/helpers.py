"""Discord bot helpers: invocation context, guild lookups, manifest input."""

from __future__ import annotations

import logging

import discord

from murahdahla.core.commands import Invocation
from murahdahla.core.errors import ValidationError
from murahdahla.core.registry import GuildDirectory

logger = logging.getLogger(__name__)

MAX_MANIFEST_BYTES = 8192


def invocation_from_message(message: discord.Message) -> Invocation | None:
    """Build the core's view of who sent ``message`` and where. None for DMs."""
    guild = message.guild
    if guild is None:
        return None
    author = message.author
    roles = getattr(author, "roles", None) or []
    return Invocation(
        server_id=guild.id,
        owner_id=guild.owner_id or 0,
        channel_id=message.channel.id,
        author_id=author.id,
        author_name=author.display_name,
        role_ids=frozenset(r.id for r in roles),
    )


def directory_from_guild(guild: discord.Guild) -> GuildDirectory:
    return GuildDirectory(
        channels={c.name: c.id for c in guild.text_channels},
        roles={r.name: r.id for r in guild.roles},
    )


async def read_manifest(message: discord.Message, inline: str) -> str:
    """Manifest text from the first attachment, else the inline argument."""
    if message.attachments:
        attachment = message.attachments[0]
        if attachment.size > MAX_MANIFEST_BYTES:
            raise ValidationError("Manifest attachment is too large.")
        data = await attachment.read()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("Manifest attachment is not UTF-8 text.") from exc
    return strip_code_fence(inline)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```yaml ... ``` block if present."""
    body = text.strip()
    if not body.startswith("```"):
        return body
    body = body.removeprefix("```").removesuffix("```")
    first, _, rest = body.partition("\n")
    if first.strip().lower() in ("", "yaml", "yml"):
        return rest
    return body


def split_runner(args: str) -> tuple[str, str]:
    """Split ``<runner name...> <value>`` on the last space."""
    runner, _, value = args.strip().rpartition(" ")
    if not runner.strip() or not value:
        raise ValidationError("Give the runner's name followed by the new value.")
    return runner.strip(), value
