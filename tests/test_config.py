# tests/test_config.py
"""Tests for engine configuration."""

import pytest

from pipedag.config import CONFIG_ENV_VAR, EngineConfig, load_config
from pipedag.draft import DraftOptions
from pipedag.errors import ConfigError


class TestEngineConfig:
    """Test EngineConfig."""

    def test_defaults(self):
        config = EngineConfig()

        assert config.max_cache_size == 1000
        assert config.max_log_entries == 1000
        assert config.default_max_retries == 2
        assert config.default_timeout_ms == 300000
        assert config.circuit_failure_threshold == 5
        assert config.circuit_retry_after == 30.0
        assert config.cache_enabled is True
        assert config.draft == DraftOptions()

    def test_backoff(self):
        """Test exponential backoff capped at the maximum."""
        config = EngineConfig()
        delays = [config.backoff_delay_ms(attempt) for attempt in range(7)]
        assert delays == [1000, 2000, 4000, 8000, 16000, 30000, 30000]

    @pytest.mark.parametrize("kwargs", [
        {"max_cache_size": 0},
        {"max_log_entries": 0},
        {"default_max_retries": -1},
        {"backoff_base_ms": 5000, "backoff_max_ms": 1000},
        {"default_timeout_ms": 0},
        {"circuit_failure_threshold": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            EngineConfig(**kwargs)

    def test_timeout_can_be_disabled(self):
        assert EngineConfig(default_timeout_ms=None).default_timeout_ms is None


class TestConfigLoading:
    """Test loading config from dicts and files."""

    def test_from_dict(self):
        """Test the nested section layout."""
        config = EngineConfig.from_dict({
            "cache": {"enabled": False, "max_size": 50},
            "retry": {"max_retries": 5, "backoff_base_ms": 10},
            "timeout_ms": 2000,
            "circuit": {"retry_after": 5},
            "draft": {"size_reduction": 0.25},
        })

        assert config.cache_enabled is False
        assert config.max_cache_size == 50
        assert config.default_max_retries == 5
        assert config.backoff_base_ms == 10
        assert config.backoff_max_ms == 30000
        assert config.default_timeout_ms == 2000
        assert config.circuit_retry_after == 5.0
        assert config.draft.size_reduction == 0.25

    def test_round_trip(self):
        config = EngineConfig(max_cache_size=7, default_timeout_ms=None)
        assert EngineConfig.from_dict(config.to_dict()) == config

    def test_unknown_section(self):
        with pytest.raises(ConfigError, match="Unknown config sections"):
            EngineConfig.from_dict({"cahce": {}})

    @pytest.mark.parametrize("data", [
        {"cache": {"max_size": "lots"}},
        {"draft": {"size_reduction": 2}},
        {"cache": {"max_size": 0}},
    ])
    def test_invalid_dict_values(self, data):
        with pytest.raises(ConfigError):
            EngineConfig.from_dict(data)

    def test_from_file(self, tmp_path):
        path = tmp_path / "pipedag.yaml"
        path.write_text("cache:\n  max_size: 20\nlogs:\n  max_entries: 30\n")

        config = EngineConfig.from_file(path)
        assert config.max_cache_size == 20
        assert config.max_log_entries == 30

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            EngineConfig.from_file(tmp_path / "nope.yaml")

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError):
            EngineConfig.from_file(path)

    def test_load_config_env(self, tmp_path, monkeypatch):
        """Test PIPEDAG_CONFIG is used when no path is given."""
        path = tmp_path / "env.yaml"
        path.write_text("retry:\n  max_retries: 9\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().default_max_retries == 9

    def test_load_config_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert load_config() == EngineConfig()
