"""Group registry: which channels belong to which group.

The in-memory map answers ``resolve`` for every inbound message without a
store round-trip. It is loaded once at startup and changed only after the
store commit that registered or removed a group.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

import pydantic
import yaml

from murahdahla.core.errors import NotFound, OverlapError, ValidationError
from murahdahla.db.repository import Repository
from murahdahla.models.manifest import GroupManifest
from murahdahla.models.race import ChannelGroup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuildDirectory:
    """Name/ID lookup for a server's text channels and roles."""

    channels: Mapping[str, int] = field(default_factory=dict)
    roles: Mapping[str, int] = field(default_factory=dict)

    def channel(self, ref: str) -> int | None:
        return _lookup(ref, self.channels)

    def role(self, ref: str) -> int | None:
        return _lookup(ref.removeprefix("@"), self.roles)


def _lookup(ref: str, names: Mapping[str, int]) -> int | None:
    if ref.isdigit() and int(ref) in names.values():
        return int(ref)
    return names.get(ref)


def parse_manifest(text: str) -> GroupManifest:
    """Parse a YAML group manifest."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValidationError(f"Manifest is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError(
            "Manifest must be a mapping with group_name, submission, leaderboard, "
            "spoiler and spoiler_role."
        )
    try:
        return GroupManifest.model_validate(data)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'manifest'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(f"Invalid manifest: {problems}") from exc


class GroupRegistry:
    def __init__(self, max_groups_per_server: int = 10) -> None:
        self.max_groups_per_server = max_groups_per_server
        self._by_channel: dict[int, ChannelGroup] = {}

    async def load(self, repo: Repository) -> int:
        """Replace the channel map with the store's contents."""
        groups = await repo.get_all_groups()
        self._by_channel = {}
        for group in groups:
            self.remember(group)
        logger.info("registry_loaded groups=%d", len(groups))
        return len(groups)

    def resolve(self, channel_id: int) -> ChannelGroup | None:
        return self._by_channel.get(channel_id)

    def remember(self, group: ChannelGroup) -> None:
        for channel_id in group.channel_ids:
            self._by_channel[channel_id] = group

    def forget(self, group: ChannelGroup) -> None:
        for channel_id in group.channel_ids:
            if self._by_channel.get(channel_id) == group:
                del self._by_channel[channel_id]

    async def register(
        self,
        repo: Repository,
        server_id: int,
        manifest: GroupManifest,
        directory: GuildDirectory,
    ) -> ChannelGroup:
        """Validate a manifest against the server and insert the group.

        Call ``remember`` with the result once the transaction commits.
        """
        channel_ids: list[int] = []
        for label, ref in (
            ("submission", manifest.submission),
            ("leaderboard", manifest.leaderboard),
            ("spoiler", manifest.spoiler),
        ):
            channel_id = directory.channel(ref)
            if channel_id is None:
                raise ValidationError(f"No {label} channel named `{ref}` on this server.")
            channel_ids.append(channel_id)
        if len(set(channel_ids)) != 3:
            raise ValidationError("The submission, leaderboard and spoiler channels must differ.")

        role_id = directory.role(manifest.spoiler_role)
        if role_id is None:
            raise ValidationError(f"No role named `{manifest.spoiler_role}` on this server.")

        if await repo.get_group_by_name(server_id, manifest.group_name) is not None:
            raise ValidationError(f"A group named `{manifest.group_name}` already exists.")
        if await repo.count_groups(server_id) >= self.max_groups_per_server:
            raise ValidationError(
                f"This server already has the maximum of {self.max_groups_per_server} groups."
            )

        clashes = await repo.get_groups_using_channels(server_id, set(channel_ids))
        if clashes:
            names = ", ".join(sorted(g.name for g in clashes))
            raise OverlapError(f"Those channels already belong to: {names}.")

        submission_id, leaderboard_id, spoiler_id = channel_ids
        group = await repo.create_group(
            server_id=server_id,
            name=manifest.group_name,
            submission_channel_id=submission_id,
            leaderboard_channel_id=leaderboard_id,
            spoiler_channel_id=spoiler_id,
            spoiler_role_id=role_id,
        )
        logger.info("group_registered server=%d group=%s", server_id, group.name)
        return group

    async def deregister(self, repo: Repository, server_id: int, name: str) -> ChannelGroup:
        """Delete a group by name. Call ``forget`` after commit."""
        group = await repo.get_group_by_name(server_id, name)
        if group is None:
            raise NotFound(f"No group named `{name}`.")
        await repo.delete_group(group.id)
        logger.info("group_removed server=%d group=%s", server_id, name)
        return group

    async def list_groups(self, repo: Repository, server_id: int) -> list[str]:
        return [g.name for g in await repo.get_groups_for_server(server_id)]
