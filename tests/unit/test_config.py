# =============================================================================
# tests/unit/test_config.py
# Unit Tests for Configuration Loading
# =============================================================================

import pytest

from sync_core.config import SyncConfig, config_from_mapping, load_config
from sync_core.errors import ConfigurationError


SECRETS = """
[supabase]
url = "https://example.supabase.co"
key = "anon-key"

[sync]
ping_interval = 15
max_reconnect_attempts = 3
"""


@pytest.fixture
def secrets_file(tmp_path):
    path = tmp_path / "secrets.toml"
    path.write_text(SECRETS)
    return path


class TestSyncConfigDefaults:
    """Named defaults"""

    def test_defaults(self):
        config = SyncConfig()
        assert config.ping_interval == 30.0
        assert config.reconnect_base_delay == 2.0
        assert config.max_reconnect_attempts == 5
        assert config.throttle_window == 1.0
        assert config.fetch_timeout == 6.0
        assert config.dashboard_ttl == 30.0
        assert config.list_ttl == 60.0

    def test_backoff_delay(self):
        config = SyncConfig()
        assert [config.backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


class TestLoadConfig:
    """secrets.toml and environment"""

    def test_reads_secrets(self, secrets_file):
        config, settings = load_config(secrets_file, environ={})

        assert config.ping_interval == 15.0
        assert config.max_reconnect_attempts == 3
        assert settings.url == "https://example.supabase.co"
        assert settings.is_configured

    def test_missing_file_means_defaults(self, tmp_path):
        config, settings = load_config(tmp_path / "absent.toml", environ={})

        assert config == SyncConfig()
        assert not settings.is_configured

    def test_environment_overrides(self, secrets_file):
        config, settings = load_config(secrets_file, environ={
            "SYNC_PING_INTERVAL": "45",
            "SUPABASE_KEY": "service-key",
        })

        assert config.ping_interval == 45.0
        assert config.max_reconnect_attempts == 3
        assert settings.key == "service-key"

    def test_malformed_toml(self, tmp_path):
        path = tmp_path / "secrets.toml"
        path.write_text("[sync\nping_interval = ")
        with pytest.raises(ConfigurationError):
            load_config(path, environ={})


class TestConfigValidation:
    """Out-of-range values are rejected"""

    @pytest.mark.parametrize("values", [
        {"ping_interval": 0},
        {"fetch_timeout": -1},
        {"max_reconnect_attempts": -1},
        {"max_reconnect_attempts": 0},
        {"probe_table": ""},
        {"throttle_window": "soon"},
        {"ping_intreval": 30},
    ])
    def test_invalid(self, values):
        with pytest.raises(ConfigurationError):
            config_from_mapping(values)

    def test_zero_kickoff_allowed(self):
        assert config_from_mapping({"reconnect_kickoff_delay": 0}).reconnect_kickoff_delay == 0.0
