"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from murahdahla.config import Settings
from murahdahla.core.commands import CommandHandler, Invocation
from murahdahla.core.errors import ExternalSideEffectFailure, MessageGone
from murahdahla.core.registry import GuildDirectory
from murahdahla.core.seeds import SeedLookup
from murahdahla.db.engine import create_engine, create_tables
from murahdahla.models.race import ChannelGroup

MANIFEST = """\
group_name: weekly
submission: weekly-submit
leaderboard: weekly-leaderboard
spoiler: weekly-spoilers
spoiler_role: weekly-done
"""


# Patch metadata served for https://alttpr.com/h/abc; every other seed is a 404.
ALTTPR_PATCH = {
    "spoiler": {
        "meta": {
            "spoilers": "on",
            "mode": "open",
            "goal": "ganon",
            "entry_crystals_tower": "7",
            "entry_crystals_ganon": "7",
            "dungeon_items": "standard",
            "logic": "NoGlitches",
        }
    },
    "patch": [{"1234": [0]}, {"1573397": [0, 1, 2, 3, 4]}],
}
ALTTPR_DESCRIPTION = "Open Defeat Ganon 7/7 (Bow/Boomerang/Hookshot/Bombs/Mushroom)"


def seed_api(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/abc.json"):
        return httpx.Response(200, json=ALTTPR_PATCH)
    return httpx.Response(404)


@dataclass(frozen=True)
class Guild:
    """IDs of the fake Discord server used throughout the tests."""

    server_id: int = 1
    owner_id: int = 10
    submission: int = 101
    leaderboard: int = 102
    spoiler: int = 103
    spoiler_role: int = 501
    other_submission: int = 201
    other_leaderboard: int = 202
    other_spoiler: int = 203
    other_role: int = 502
    general: int = 300
    admin_role: int = 601
    mod_role: int = 602


class FakeGateway:
    """Records chat calls; operations named in ``failing`` raise."""

    def __init__(self) -> None:
        self.messages: dict[int, tuple[int, str]] = {}
        self.deleted: list[int] = []
        self.roles: set[tuple[int, int, int]] = set()
        self.calls: list[tuple[str, tuple]] = []
        self.failing: set[str] = set()
        self.delay = 0.0
        self._next_id = 9000

    async def _enter(self, op: str, *args: object) -> None:
        self.calls.append((op, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if op in self.failing:
            raise ExternalSideEffectFailure(f"{op} failed")

    async def post_message(self, channel_id: int, content: str) -> int:
        await self._enter("post_message", channel_id, content)
        self._next_id += 1
        self.messages[self._next_id] = (channel_id, content)
        return self._next_id

    async def edit_message(self, channel_id: int, message_id: int, content: str) -> None:
        await self._enter("edit_message", channel_id, message_id, content)
        if message_id not in self.messages:
            raise MessageGone("not found")
        self.messages[message_id] = (channel_id, content)

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        await self._enter("delete_message", channel_id, message_id)
        self.messages.pop(message_id, None)
        self.deleted.append(message_id)

    async def grant_role(self, server_id: int, user_id: int, role_id: int) -> None:
        await self._enter("grant_role", server_id, user_id, role_id)
        self.roles.add((server_id, user_id, role_id))

    async def revoke_role(self, server_id: int, user_id: int, role_id: int) -> None:
        await self._enter("revoke_role", server_id, user_id, role_id)
        self.roles.discard((server_id, user_id, role_id))

    def in_channel(self, channel_id: int) -> list[str]:
        """Contents of the live messages in a channel, oldest first."""
        return [text for _, (cid, text) in sorted(self.messages.items()) if cid == channel_id]

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(
        murahdahla_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        discord_call_timeout_seconds=0.5,
    )


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def guild() -> Guild:
    return Guild()


@pytest.fixture
def directory(guild: Guild) -> GuildDirectory:
    return GuildDirectory(
        channels={
            "weekly-submit": guild.submission,
            "weekly-leaderboard": guild.leaderboard,
            "weekly-spoilers": guild.spoiler,
            "daily-submit": guild.other_submission,
            "daily-leaderboard": guild.other_leaderboard,
            "daily-spoilers": guild.other_spoiler,
            "general": guild.general,
        },
        roles={
            "weekly-done": guild.spoiler_role,
            "daily-done": guild.other_role,
            "Admins": guild.admin_role,
            "Mods": guild.mod_role,
        },
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def handler(engine: AsyncEngine, gateway: FakeGateway, settings: Settings) -> CommandHandler:
    seeds = SeedLookup(0.5, transport=httpx.MockTransport(seed_api))
    return CommandHandler(engine, gateway, settings, seeds=seeds)


@pytest.fixture
def invoke(guild: Guild) -> Callable[..., Invocation]:
    """Factory for invocations; defaults to the server owner in the submission channel."""

    def _make(
        author_id: int | None = None,
        channel_id: int | None = None,
        role_ids: tuple[int, ...] = (),
        name: str = "Owner",
    ) -> Invocation:
        return Invocation(
            server_id=guild.server_id,
            owner_id=guild.owner_id,
            channel_id=guild.submission if channel_id is None else channel_id,
            author_id=guild.owner_id if author_id is None else author_id,
            author_name=name,
            role_ids=frozenset(role_ids),
        )

    return _make


@pytest.fixture
async def group(
    handler: CommandHandler,
    directory: GuildDirectory,
    invoke: Callable[..., Invocation],
    guild: Guild,
) -> ChannelGroup:
    """The ``weekly`` group, registered through the command surface."""
    await handler.addgroup(invoke(channel_id=guild.general), MANIFEST, directory)
    registered = handler.registry.resolve(guild.submission)
    assert registered is not None
    return registered
