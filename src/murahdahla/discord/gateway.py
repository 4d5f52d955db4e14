"""discord.py implementation of the core's chat gateway."""

from __future__ import annotations

import logging

import discord

from murahdahla.core.errors import ExternalSideEffectFailure, MessageGone

logger = logging.getLogger(__name__)

ROLE_REASON = "Murahdahla race submission"


class DiscordGateway:
    """Posts, edits and role changes through a connected ``discord.Client``.

    Every discord.py HTTP error is re-raised as ``ExternalSideEffectFailure``;
    editing a deleted message raises ``MessageGone``.
    """

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def post_message(self, channel_id: int, content: str) -> int:
        channel = self.client.get_partial_messageable(channel_id)
        try:
            message = await channel.send(content)
        except discord.HTTPException as exc:
            raise ExternalSideEffectFailure(_describe(exc)) from exc
        return message.id

    async def edit_message(self, channel_id: int, message_id: int, content: str) -> None:
        message = self.client.get_partial_messageable(channel_id).get_partial_message(message_id)
        try:
            await message.edit(content=content)
        except discord.NotFound as exc:
            raise MessageGone(_describe(exc)) from exc
        except discord.HTTPException as exc:
            raise ExternalSideEffectFailure(_describe(exc)) from exc

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        message = self.client.get_partial_messageable(channel_id).get_partial_message(message_id)
        try:
            await message.delete()
        except discord.NotFound:
            logger.info("message_already_gone channel=%d message=%d", channel_id, message_id)
        except discord.HTTPException as exc:
            raise ExternalSideEffectFailure(_describe(exc)) from exc

    async def grant_role(self, server_id: int, user_id: int, role_id: int) -> None:
        member = await self._member(server_id, user_id)
        try:
            await member.add_roles(discord.Object(id=role_id), reason=ROLE_REASON)
        except discord.HTTPException as exc:
            raise ExternalSideEffectFailure(_describe(exc)) from exc

    async def revoke_role(self, server_id: int, user_id: int, role_id: int) -> None:
        try:
            member = await self._member(server_id, user_id)
        except ExternalSideEffectFailure:
            # A runner who left the server holds no role.
            logger.info("revoke_skipped_member_gone server=%d user=%d", server_id, user_id)
            return
        try:
            await member.remove_roles(discord.Object(id=role_id), reason=ROLE_REASON)
        except discord.HTTPException as exc:
            raise ExternalSideEffectFailure(_describe(exc)) from exc

    async def _member(self, server_id: int, user_id: int) -> discord.Member:
        guild = self.client.get_guild(server_id)
        if guild is None:
            raise ExternalSideEffectFailure(f"not connected to server {server_id}")
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.HTTPException as exc:
            raise ExternalSideEffectFailure(_describe(exc)) from exc


def _describe(exc: discord.HTTPException) -> str:
    if isinstance(exc, discord.Forbidden):
        return "missing permission"
    if isinstance(exc, discord.NotFound):
        return "not found"
    return f"HTTP {exc.status}"
