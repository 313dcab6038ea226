"""
Tests for ServiceSettings and CorsSettings environment loading and validation.

CHANGELOG:
- 2026-10-17: Cover CorsSettings and .env loading
- 2026-10-17: Initial creation

TODO:
- None
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from solarmon.config import CorsSettings, ServiceSettings, split_origins


class TestServiceSettings:
    """Environment-driven configuration."""

    def test_defaults(self) -> None:
        settings = ServiceSettings()

        assert settings.auto_register_devices is False
        assert settings.auto_register_organization == "Unassigned"
        assert settings.max_readings_per_request == 1000
        assert settings.default_query_limit == 1000
        assert settings.redis_url is None
        assert settings.port == 5000

    def test_sync_driver_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/telemetry")
        with pytest.raises(ValidationError):
            ServiceSettings()

    def test_zero_limit_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_READINGS_PER_REQUEST", "0")
        with pytest.raises(ValidationError):
            ServiceSettings()

    def test_negative_cache_ttl_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CACHE_TTL_S", "-1")
        with pytest.raises(ValidationError):
            ServiceSettings()

    def test_blank_auto_register_organization_rejected(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AUTO_REGISTER_ORGANIZATION", "  ")
        with pytest.raises(ValidationError):
            ServiceSettings()

    def test_log_level_normalised(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert ServiceSettings().log_level == "DEBUG"

    def test_unknown_log_level_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        with pytest.raises(ValidationError):
            ServiceSettings()

    def test_auto_register_flag(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTO_REGISTER_DEVICES", "true")
        assert ServiceSettings().auto_register_devices is True

    def test_cors_origin_list(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, ,https://b.example")
        assert ServiceSettings().cors_origin_list == [
            "https://a.example",
            "https://b.example",
        ]


class TestCorsSettings:
    """CORS origins read apart from the full service configuration."""

    def test_origins_from_dotenv(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("CORS_ORIGINS", raising=False)
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text(
            "CORS_ORIGINS=https://dash.example\n"
            "DATABASE_URL=sqlite+aiosqlite:///x.db\n",
            encoding="utf-8",
        )

        assert CorsSettings().cors_origin_list == ["https://dash.example"]

    def test_environment_overrides_dotenv(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text(
            "CORS_ORIGINS=https://dash.example\n", encoding="utf-8"
        )
        monkeypatch.setenv("CORS_ORIGINS", "https://ops.example")

        assert CorsSettings().cors_origin_list == ["https://ops.example"]

    def test_no_origins_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CORS_ORIGINS", raising=False)
        assert CorsSettings(_env_file=None).cors_origin_list == []


def test_split_origins_empty() -> None:
    assert split_origins("") == []
