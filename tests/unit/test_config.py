"""
Unit tests for ConfigManager.

Tests verify:
- TOML loading, including market arrays of tables
- Environment variable overrides
- Type-specific getters
- In-memory overrides and reload
"""
from pathlib import Path

import pytest

from dlob_publisher.core.config import ConfigManager


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "publisher.toml"
    path.write_text("""
[service]
log_level = "DEBUG"
refresh_interval_ms = 500

[redis]
url = "redis://redis:6379/1"

[health]
enabled = false

[[markets.perp]]
index = 0
name = "SOL-PERP"

[[markets.perp]]
index = 1
name = "BTC-PERP"
publish_mode = "on_change"
""")
    return path


class TestConfigBasics:
    """Tests for basic ConfigManager functionality."""

    def test_empty_config(self):
        """ConfigManager works without a config file."""
        config = ConfigManager()
        assert config.get("any.key") is None
        assert config.get("any.key", "default") == "default"

    def test_missing_file_is_empty(self, tmp_path):
        """A path that does not exist yields an empty config."""
        config = ConfigManager(tmp_path / "nope.toml")
        assert config.raw_data == {}

    def test_load_toml_file(self, config_file):
        """Values load with dot notation."""
        config = ConfigManager(config_file)

        assert config.get("service.log_level") == "DEBUG"
        assert config.get_int("service.refresh_interval_ms") == 500
        assert config.get("redis.url") == "redis://redis:6379/1"
        assert config.get_bool("health.enabled", default=True) is False

    def test_market_tables(self, config_file):
        """Arrays of tables load as lists of dicts."""
        perps = ConfigManager(config_file).get_list("markets.perp")

        assert [p["name"] for p in perps] == ["SOL-PERP", "BTC-PERP"]
        assert perps[1]["publish_mode"] == "on_change"

    def test_get_section(self, config_file):
        config = ConfigManager(config_file)

        assert config.get_section("redis") == {"url": "redis://redis:6379/1"}
        assert config.get_section("missing") == {}

    def test_typed_defaults(self):
        config = ConfigManager()

        assert config.get_int("a.b", 7) == 7
        assert config.get_float("a.b", 1.5) == 1.5
        assert config.get_bool("a.b", True) is True
        assert config.get_list("a.b") == []


class TestEnvironmentOverrides:
    """Tests for DLOB_ environment overrides."""

    def test_env_wins(self, config_file, monkeypatch):
        """Environment variables take precedence over the file."""
        monkeypatch.setenv("DLOB_REDIS_URL", "redis://other:6380")

        assert ConfigManager(config_file).get("redis.url") == "redis://other:6380"

    def test_env_types(self, monkeypatch):
        """Environment strings are parsed into bools, numbers and lists."""
        monkeypatch.setenv("DLOB_SERVICE_LOG_JSON", "true")
        monkeypatch.setenv("DLOB_STALENESS_PERP_MS", "30000")
        monkeypatch.setenv("DLOB_SERVICE_SHUTDOWN_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("DLOB_SOURCE_VENUES", "phoenix, openbook")
        config = ConfigManager()

        assert config.get_bool("service.log_json") is True
        assert config.get_int("staleness.perp_ms") == 30_000
        assert config.get_float("service.shutdown_timeout_seconds") == 2.5
        assert config.get_list("source.venues") == ["phoenix", "openbook"]

    def test_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("TEST_REDIS_URL", "redis://x")

        assert ConfigManager(env_prefix="TEST_").get("redis.url") == "redis://x"


class TestOverridesAndReload:
    """Tests for set() and reload()."""

    def test_set_creates_sections(self):
        """set() creates intermediate sections."""
        config = ConfigManager.from_dict({})

        config.set("service.log_level", "WARNING")

        assert config.get("service.log_level") == "WARNING"

    def test_reload_picks_up_changes(self, config_file):
        config = ConfigManager(config_file)
        config_file.write_text('[service]\nlog_level = "ERROR"\n')

        config.reload()

        assert config.get("service.log_level") == "ERROR"

    def test_raw_data_is_a_copy(self, config_file):
        config = ConfigManager(config_file)

        config.raw_data["service"] = {}

        assert config.get("service.log_level") == "DEBUG"

    def test_default_config_file_loads(self):
        """The shipped default configuration parses and lists markets."""
        path = Path(__file__).resolve().parents[2] / "config" / "default.toml"
        config = ConfigManager(path)

        assert config.get_int("kill_switch.slot_diff_threshold") == 200
        assert len(config.get_list("markets.perp")) > 0
