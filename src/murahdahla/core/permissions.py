"""Permission resolver.

Effective tier is the highest that applies: maintenance user, server
owner, admin-role holder, mod-role holder, otherwise none.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum

from murahdahla.core.errors import PermissionDenied


class Tier(IntEnum):
    NONE = 0
    MOD = 1
    ADMIN = 2
    OWNER = 3
    MAINTENANCE = 4


COMMAND_TIERS: dict[str, Tier] = {
    "addgroup": Tier.ADMIN,
    "removegroup": Tier.ADMIN,
    "setadminrole": Tier.ADMIN,
    "setmodrole": Tier.ADMIN,
    "removeadminrole": Tier.ADMIN,
    "removemodrole": Tier.ADMIN,
    "rtastart": Tier.MOD,
    "igtstart": Tier.MOD,
    "stop": Tier.MOD,
    "refresh": Tier.MOD,
    "removetime": Tier.MOD,
    "settime": Tier.MOD,
    "setcollection": Tier.MOD,
    "listgroups": Tier.NONE,
}


@dataclass(frozen=True)
class ServerRoles:
    """The privilege-bearing identities configured for one server."""

    owner_id: int
    admin_role_id: int | None = None
    mod_role_id: int | None = None


def resolve_tier(
    user_id: int,
    role_ids: Iterable[int],
    server: ServerRoles,
    maintenance_user: int | None = None,
) -> Tier:
    if maintenance_user is not None and user_id == maintenance_user:
        return Tier.MAINTENANCE
    if user_id == server.owner_id:
        return Tier.OWNER
    held = set(role_ids)
    if server.admin_role_id is not None and server.admin_role_id in held:
        return Tier.ADMIN
    if server.mod_role_id is not None and server.mod_role_id in held:
        return Tier.MOD
    return Tier.NONE


def require(command: str, tier: Tier) -> None:
    """Raise ``PermissionDenied`` if ``tier`` is below the command's minimum."""
    needed = COMMAND_TIERS[command]
    if tier < needed:
        raise PermissionDenied(
            f"`{command}` needs {needed.name.lower()} permission; you have {tier.name.lower()}."
        )
