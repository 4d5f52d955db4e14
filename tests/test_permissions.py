"""Tests for the permission resolver."""

import pytest

from murahdahla.core.errors import PermissionDenied
from murahdahla.core.permissions import COMMAND_TIERS, ServerRoles, Tier, require, resolve_tier

ROLES = ServerRoles(owner_id=10, admin_role_id=601, mod_role_id=602)


class TestResolveTier:
    def test_maintenance_beats_everything(self) -> None:
        assert resolve_tier(99, [], ROLES, maintenance_user=99) is Tier.MAINTENANCE

    def test_owner(self) -> None:
        assert resolve_tier(10, [602], ROLES) is Tier.OWNER

    def test_admin_over_mod(self) -> None:
        assert resolve_tier(20, [602, 601], ROLES) is Tier.ADMIN

    def test_mod(self) -> None:
        assert resolve_tier(20, [602], ROLES) is Tier.MOD

    def test_nobody(self) -> None:
        assert resolve_tier(20, [700], ROLES) is Tier.NONE

    def test_unset_roles_grant_nothing(self) -> None:
        assert resolve_tier(20, [601, 602], ServerRoles(owner_id=10)) is Tier.NONE


class TestRequire:
    def test_every_command_has_a_tier(self) -> None:
        assert set(COMMAND_TIERS) == {
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

    def test_mod_cannot_manage_groups(self) -> None:
        with pytest.raises(PermissionDenied):
            require("addgroup", Tier.MOD)

    def test_mod_can_start(self) -> None:
        require("rtastart", Tier.MOD)

    def test_anyone_can_list(self) -> None:
        require("listgroups", Tier.NONE)

    def test_none_cannot_stop(self) -> None:
        with pytest.raises(PermissionDenied, match="mod"):
            require("stop", Tier.NONE)
