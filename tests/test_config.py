"""Tests for application configuration."""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from murahdahla.config import Settings
from murahdahla.main import run


class TestDefaults:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MAINTENANCE_USER_ID", raising=False)
        settings = Settings(_env_file=None)
        assert settings.command_prefix == "!"
        assert settings.max_groups_per_server == 10
        assert settings.discord_call_timeout_seconds == 10.0
        assert settings.database_url == "sqlite+aiosqlite:///murahdahla.db"
        assert settings.maintenance_user is None
        assert settings.seed_lookup_timeout_seconds == 10.0
        assert (settings.host, settings.port) == ("127.0.0.1", 8000)

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COMMAND_PREFIX", "?")
        monkeypatch.setenv("MAX_GROUPS_PER_SERVER", "3")
        settings = Settings(_env_file=None)
        assert settings.command_prefix == "?"
        assert settings.max_groups_per_server == 3


class TestMaintenanceUser:
    def test_numeric_id(self) -> None:
        settings = Settings(maintenance_user_id="123456789012345678")
        assert settings.maintenance_user == 123456789012345678

    def test_whitespace_is_stripped(self) -> None:
        settings = Settings(maintenance_user_id=" 42 ")
        assert settings.maintenance_user == 42

    def test_empty_means_none(self) -> None:
        assert Settings(maintenance_user_id="").maintenance_user is None

    def test_non_numeric_rejected(self) -> None:
        with pytest.raises(ValidationError, match="numeric"):
            Settings(maintenance_user_id="someone#1234")


class TestEntryPoint:
    def test_run_serves_app_on_configured_address(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MAINTENANCE_USER_ID", raising=False)
        monkeypatch.setenv("HOST", "0.0.0.0")
        monkeypatch.setenv("PORT", "9000")
        with patch("murahdahla.main.uvicorn.run") as serve:
            run()
        serve.assert_called_once_with("murahdahla.main:app", host="0.0.0.0", port=9000)
