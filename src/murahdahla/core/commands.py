"""Command surface.

One coroutine per bot command. Each authorizes the invoker, resolves the
group from the invoking channel, holds that group's lock, and returns an
``Outcome`` or raises a ``MurahdahlaError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from sqlalchemy.ext.asyncio import AsyncEngine

from murahdahla.config import Settings
from murahdahla.core.effects import ChatGateway, Outcome, SideEffects
from murahdahla.core.errors import (
    ExternalSideEffectFailure,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from murahdahla.core.games import RacePayload, parse_payload
from murahdahla.core.leaderboard import LeaderboardRenderer, format_time
from murahdahla.core.lifecycle import RaceController
from murahdahla.core.locks import GroupLocks
from murahdahla.core.permissions import ServerRoles, Tier, require, resolve_tier
from murahdahla.core.registry import GroupRegistry, GuildDirectory, parse_manifest
from murahdahla.core.seeds import SeedLookup
from murahdahla.core.submissions import SubmissionProcessor
from murahdahla.db.repository import transaction
from murahdahla.models.race import ChannelGroup, RaceKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Invocation:
    """Who issued a command, and where."""

    server_id: int
    owner_id: int
    channel_id: int
    author_id: int
    author_name: str
    role_ids: frozenset[int] = frozenset()


class CommandHandler:
    def __init__(
        self,
        engine: AsyncEngine,
        gateway: ChatGateway,
        settings: Settings,
        registry: GroupRegistry | None = None,
        locks: GroupLocks | None = None,
        seeds: SeedLookup | None = None,
    ) -> None:
        self.engine = engine
        self.gateway = gateway
        self.settings = settings
        self.registry = registry or GroupRegistry(settings.max_groups_per_server)
        self.locks = locks or GroupLocks()
        self.seeds = seeds or SeedLookup(settings.seed_lookup_timeout_seconds)
        self.renderer = LeaderboardRenderer(engine)
        self.races = RaceController(engine, self.renderer)
        self.submissions = SubmissionProcessor(engine, self.renderer)

    async def load(self) -> int:
        """Load the channel map from the store."""
        async with transaction(self.engine) as repo:
            return await self.registry.load(repo)

    def effects(self) -> SideEffects:
        return SideEffects(self.gateway, self.settings.discord_call_timeout_seconds)

    async def authorize(self, inv: Invocation, command: str) -> Tier:
        """Record the server and check the invoker's tier for ``command``."""
        async with transaction(self.engine) as repo:
            row = await repo.ensure_server(inv.server_id, inv.owner_id)
            roles = ServerRoles(row.owner_id, row.admin_role_id, row.mod_role_id)
        tier = resolve_tier(inv.author_id, inv.role_ids, roles, self.settings.maintenance_user)
        try:
            require(command, tier)
        except PermissionDenied:
            logger.info(
                "command_denied command=%s user=%d server=%d", command, inv.author_id, inv.server_id
            )
            raise
        return tier

    def group_for(self, inv: Invocation) -> ChannelGroup:
        group = self.registry.resolve(inv.channel_id)
        if group is None or group.server_id != inv.server_id:
            raise NotFound("This channel is not part of a race group.")
        return group

    # --- Groups ---

    async def addgroup(
        self, inv: Invocation, manifest_text: str, directory: GuildDirectory
    ) -> Outcome:
        await self.authorize(inv, "addgroup")
        manifest = parse_manifest(manifest_text)
        async with self.locks.hold(_server_key(inv.server_id)):
            async with transaction(self.engine) as repo:
                group = await self.registry.register(repo, inv.server_id, manifest, directory)
            self.registry.remember(group)
        return Outcome(f"Group `{group.name}` created.")

    async def removegroup(self, inv: Invocation, name: str) -> Outcome:
        await self.authorize(inv, "removegroup")
        name = name.strip()
        if not name:
            raise ValidationError("Name the group to remove.")
        async with self.locks.hold(_server_key(inv.server_id)):
            async with transaction(self.engine) as repo:
                group = await repo.get_group_by_name(inv.server_id, name)
            if group is None:
                raise NotFound(f"No group named `{name}`.")
            async with self.locks.hold(group.id):
                async with transaction(self.engine) as repo:
                    await self.registry.deregister(repo, inv.server_id, name)
                self.registry.forget(group)
            self.locks.discard(group.id)
        return Outcome(f"Group `{name}` removed.")

    async def listgroups(self, inv: Invocation) -> Outcome:
        await self.authorize(inv, "listgroups")
        async with transaction(self.engine) as repo:
            names = await self.registry.list_groups(repo, inv.server_id)
        if not names:
            return Outcome("No groups on this server.")
        return Outcome("Groups on this server:\n" + "\n".join(f"- {n}" for n in names))

    # --- Roles ---

    async def setadminrole(self, inv: Invocation, role: str, directory: GuildDirectory) -> Outcome:
        return await self._set_role(inv, "setadminrole", "admin", role, directory)

    async def setmodrole(self, inv: Invocation, role: str, directory: GuildDirectory) -> Outcome:
        return await self._set_role(inv, "setmodrole", "mod", role, directory)

    async def removeadminrole(self, inv: Invocation) -> Outcome:
        return await self._clear_role(inv, "removeadminrole", "admin")

    async def removemodrole(self, inv: Invocation) -> Outcome:
        return await self._clear_role(inv, "removemodrole", "mod")

    async def _set_role(
        self, inv: Invocation, command: str, tier: str, role: str, directory: GuildDirectory
    ) -> Outcome:
        await self.authorize(inv, command)
        role_id = directory.role(role.strip())
        if role_id is None:
            raise NotFound(f"No role named `{role.strip()}` on this server.")
        async with transaction(self.engine) as repo:
            await repo.set_server_role(inv.server_id, tier, role_id)
        logger.info("server_role_set server=%d tier=%s role=%d", inv.server_id, tier, role_id)
        return Outcome(f"{tier.capitalize()} role set.")

    async def _clear_role(self, inv: Invocation, command: str, tier: str) -> Outcome:
        await self.authorize(inv, command)
        async with transaction(self.engine) as repo:
            await repo.set_server_role(inv.server_id, tier, None)
        logger.info("server_role_cleared server=%d tier=%s", inv.server_id, tier)
        return Outcome(f"{tier.capitalize()} role removed.")

    # --- Races ---

    async def rtastart(self, inv: Invocation, payload: str) -> Outcome:
        return await self._start(inv, "rtastart", RaceKind.RTA, payload)

    async def igtstart(self, inv: Invocation, payload: str) -> Outcome:
        return await self._start(inv, "igtstart", RaceKind.IGT, payload)

    async def _start(self, inv: Invocation, command: str, kind: RaceKind, payload: str) -> Outcome:
        await self.authorize(inv, command)
        group = self.group_for(inv)
        parsed = parse_payload(payload)
        effects = self.effects()
        parsed = await self._describe_seed(parsed, effects)
        async with self.locks.hold(group.id):
            race = await self.races.start(group, kind, parsed, effects)
        return Outcome(
            f"Started {kind.value} race #{race.race_id} in {group.name}.", effects.failures
        )

    async def _describe_seed(self, payload: RacePayload, effects: SideEffects) -> RacePayload:
        """Replace a seed link's info with its fetched settings, when available."""
        if payload.url is None:
            return payload
        try:
            description = await self.seeds.describe(payload.game, payload.url)
        except ExternalSideEffectFailure as exc:
            logger.warning("seed_lookup_failed game=%s err=%s", payload.game.value, exc)
            effects.failures.append(f"look up {payload.game.value} seed: {exc}")
            return payload
        if description is None:
            return payload
        return replace(payload, info=description)

    async def stop(self, inv: Invocation) -> Outcome:
        await self.authorize(inv, "stop")
        group = self.group_for(inv)
        effects = self.effects()
        async with self.locks.hold(group.id):
            race = await self.races.stop(group, effects)
        if race is None:
            return Outcome(f"No race is running in {group.name}.")
        return Outcome(f"Stopped race #{race.race_id} in {group.name}.", effects.failures)

    async def refresh(self, inv: Invocation) -> Outcome:
        await self.authorize(inv, "refresh")
        group = self.group_for(inv)
        effects = self.effects()
        async with self.locks.hold(group.id):
            race, _ = await self.races.refresh(group, effects)
        return Outcome(f"Leaderboard for race #{race.race_id} refreshed.", effects.failures)

    # --- Submissions ---

    async def handle_message(self, inv: Invocation, text: str) -> Outcome | None:
        """Treat a plain message as a submission. None when not in a submission channel."""
        group = self.registry.resolve(inv.channel_id)
        if (
            group is None
            or group.server_id != inv.server_id
            or group.submission_channel_id != inv.channel_id
        ):
            return None
        effects = self.effects()
        async with self.locks.hold(group.id):
            submission = await self.submissions.submit(
                group, inv.author_id, inv.author_name, text, effects
            )
        if submission.forfeit:
            message = f"Forfeit recorded for {group.name}."
        else:
            message = f"Time {format_time(submission.runner_time)} recorded for {group.name}."
        return Outcome(message, effects.failures)

    async def settime(self, inv: Invocation, runner: str, runner_time: str) -> Outcome:
        await self.authorize(inv, "settime")
        group = self.group_for(inv)
        effects = self.effects()
        async with self.locks.hold(group.id):
            updated = await self.submissions.set_time(group, runner, runner_time, effects)
        return Outcome(
            f"{updated.runner_name}'s time is now {format_time(updated.runner_time)}.",
            effects.failures,
        )

    async def setcollection(self, inv: Invocation, runner: str, value: str) -> Outcome:
        await self.authorize(inv, "setcollection")
        group = self.group_for(inv)
        effects = self.effects()
        async with self.locks.hold(group.id):
            updated = await self.submissions.set_collection(group, runner, value, effects)
        return Outcome(
            f"{updated.runner_name}'s collection is now {updated.collection}.", effects.failures
        )

    async def removetime(self, inv: Invocation, runner: str) -> Outcome:
        await self.authorize(inv, "removetime")
        group = self.group_for(inv)
        effects = self.effects()
        async with self.locks.hold(group.id):
            removed = await self.submissions.remove_time(group, runner, effects)
        return Outcome(f"Removed {removed.runner_name}'s submission.", effects.failures)


def _server_key(server_id: int) -> str:
    return f"server:{server_id}"
