"""Tests for Settings loading and the GuardConfig mapping."""

from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from ipguard.config.core import DatabaseSettings, GuardSettings, last_yaml_path, load_settings, sanitize_dict
from ipguard.guard.config import GuardConfig, Tier


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run each test from an empty directory with no IPGUARD_* variables."""
    monkeypatch.chdir(tmp_path)
    for name in ("IPGUARD_CONFIG_FILE", "DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("IPGUARD_"):
            monkeypatch.delenv(name, raising=False)
    return tmp_path


class TestSettings:
    """Tests for sources and validation."""

    def test_defaults(self):
        """Test the documented defaults."""
        settings = load_settings()

        assert settings.guard.failed_attempt_threshold == 5
        assert settings.guard.violation_threshold == 3
        assert settings.guard.auto_block_seconds == 86400
        assert settings.guard.default_max_requests == 100
        assert settings.guard.tiers["FREE"].max_requests == 50
        assert settings.guard.tiers["BASIC"].max_requests == 200
        assert settings.guard.tiers["PREMIUM"].max_requests == 1000
        assert settings.database_url is None
        assert settings.notifications.webhook_url is None

    def test_env_overrides(self, monkeypatch):
        """Test nested env variables with the IPGUARD_ prefix."""
        monkeypatch.setenv("IPGUARD_GUARD__VIOLATION_THRESHOLD", "7")
        monkeypatch.setenv("IPGUARD_SERVER__PORT", "9001")

        settings = load_settings()

        assert settings.guard.violation_threshold == 7
        assert settings.server.port == 9001

    def test_yaml_source(self, isolated_env):
        """Test that ./ipguard.yaml in the working directory is read."""
        (isolated_env / "ipguard.yaml").write_text(
            "guard:\n"
            "  default_max_requests: 25\n"
            "notifications:\n"
            "  username: Sentinel\n",
            encoding="utf-8",
        )

        settings = load_settings()

        assert settings.guard.default_max_requests == 25
        assert settings.notifications.username == "Sentinel"
        assert last_yaml_path() == "./ipguard.yaml"

    def test_config_file_env_var(self, isolated_env, monkeypatch):
        """Test IPGUARD_CONFIG_FILE points at an explicit YAML file."""
        path = isolated_env / "custom.yaml"
        path.write_text("server:\n  port: 8123\n", encoding="utf-8")
        monkeypatch.setenv("IPGUARD_CONFIG_FILE", str(path))

        assert load_settings().server.port == 8123

    def test_rejects_sync_database_url(self):
        """Test that only async Postgres URLs are accepted."""
        with pytest.raises(ValidationError):
            DatabaseSettings(url="postgresql://user:pw@localhost/db")

    def test_composes_database_url(self):
        """Test URL composition from discrete fields."""
        db = DatabaseSettings(user="guard", password="pw", name="ipguard", host="db", port=5433)

        assert db.url == "postgresql+asyncpg://guard:pw@db:5433/ipguard"

    @pytest.mark.parametrize("field", ["violation_threshold", "default_window_ms", "store_timeout_seconds"])
    def test_rejects_non_positive(self, field):
        """Test that thresholds and windows must be positive."""
        with pytest.raises(ValidationError):
            GuardSettings(**{field: 0})

    def test_sanitize_redacts_secrets(self):
        """Test that passwords and webhook tokens are hidden."""
        data = {
            "database": {"url": "postgresql+asyncpg://guard:pw@db:5432/ipguard", "password": "pw"},
            "notifications": {"webhook_url": "https://discord.com/api/webhooks/1/abcdef"},
        }

        clean = sanitize_dict(data)

        assert clean["database"]["password"] == "***"
        assert "pw@" not in clean["database"]["url"]
        assert "abcdef" not in clean["notifications"]["webhook_url"]


class TestGuardConfigMapping:
    """Tests for GuardConfig.from_settings."""

    def test_maps_all_sections(self):
        """Test that every guard setting reaches the component configs."""
        settings = GuardSettings(
            refresh_interval_seconds=120,
            violation_threshold=4,
            auto_block_seconds=3600,
            default_window_ms=1000,
            trust_forwarded_for=False,
            exempt_paths=["/ping"],
        )

        config = GuardConfig.from_settings(settings)

        assert config.registry.refresh_interval_sec == 120.0
        assert config.registry.trust_forwarded_for is False
        assert config.violations.violation_threshold == 4
        assert config.violations.auto_block_duration_sec == 3600
        assert config.rate_limit.default_window_ms == 1000
        assert config.rate_limit.exempt_paths == ("/ping",)
        assert set(config.rate_limit.tiers) == {t.value for t in Tier}

    def test_tier_names_are_upper_cased(self):
        """Test that YAML tier keys are normalized."""
        settings = GuardSettings(tiers={"free": {"max_requests": 5}})

        config = GuardConfig.from_settings(settings)

        assert config.rate_limit.tiers["FREE"].max_requests == 5
