"""
Tests for engine configuration.
"""

import json

import pytest
import yaml

from policyauth import EngineConfig
from policyauth.util import config as config_utils


class TestEngineConfig:
    """Test EngineConfig construction and validation"""

    def test_defaults(self):
        config = EngineConfig()
        assert config.cache_enabled is False
        assert config.cache_size == 1024
        assert config.validate()

    def test_to_dict(self):
        data = EngineConfig(cache_enabled=True).to_dict()
        assert data['cache_enabled'] is True
        assert set(data) == {
            'cache_enabled', 'cache_size', 'strict_analysis', 'audit_enabled',
            'audit_max_entries', 'metrics_enabled', 'log_decisions',
        }

    @pytest.mark.parametrize("kwargs", [
        {'cache_size': 0},
        {'audit_max_entries': -1},
        {'cache_enabled': "yes"},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs).validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("POLICYAUTH_CACHE_ENABLED", "true")
        monkeypatch.setenv("POLICYAUTH_CACHE_SIZE", "16")
        monkeypatch.setenv("POLICYAUTH_STRICT_ANALYSIS", "1")
        config = EngineConfig.from_env()
        assert config.cache_enabled is True
        assert config.cache_size == 16
        assert config.strict_analysis is True
        assert config.audit_enabled is False

    def test_from_env_bad_int_uses_default(self, monkeypatch):
        monkeypatch.setenv("POLICYAUTH_CACHE_SIZE", "lots")
        assert EngineConfig.from_env().cache_size == 1024

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "policyauth.yaml"
        path.write_text(yaml.safe_dump({'cache-enabled': True, 'cache_size': 8}))
        config = EngineConfig.from_file(str(path))
        assert config.cache_enabled is True
        assert config.cache_size == 8

    def test_from_json_file_with_overrides(self, tmp_path):
        path = tmp_path / "policyauth.json"
        path.write_text(json.dumps({'metrics_enabled': True, 'cache_size': 8}))
        config = EngineConfig.from_file(str(path), overrides={'cache_size': 32})
        assert config.metrics_enabled is True
        assert config.cache_size == 32

    def test_unknown_keys_rejected(self, tmp_path):
        path = tmp_path / "policyauth.json"
        path.write_text(json.dumps({'cache_size': 8, 'redis_url': "redis://"}))
        with pytest.raises(ValueError, match="redis_url"):
            EngineConfig.from_file(str(path))

    def test_invalid_file_values(self, tmp_path):
        path = tmp_path / "policyauth.yml"
        path.write_text("cache_size: 0\n")
        with pytest.raises(ValueError):
            EngineConfig.from_file(str(path))


class TestConfigUtils:
    """Test the configuration helpers"""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            config_utils.load_config_file(str(tmp_path / "missing.yaml"))

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("cache_size = 8\n")
        with pytest.raises(ValueError):
            config_utils.load_config_file(str(path))

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert config_utils.load_config_file(str(path)) == {}

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            config_utils.load_config_file(str(path))

    def test_env_readers(self, monkeypatch):
        monkeypatch.setenv("POLICYAUTH_LOG_DECISIONS", "Yes")
        monkeypatch.setenv("POLICYAUTH_CACHE_SIZE", "12")
        assert config_utils.env_bool("log_decisions", False) is True
        assert config_utils.env_bool("metrics-enabled", True) is True
        assert config_utils.env_int("cache_size", 1) == 12
        assert config_utils.env_name("cache-size") == "POLICYAUTH_CACHE_SIZE"

    def test_normalize_key(self):
        assert config_utils.normalize_key(" Cache-Size ") == "cache_size"

    def test_validate_config(self):
        schema = {'size': {'type': int, 'min': 1, 'max': 10, 'required': True}}
        assert config_utils.validate_config({'size': 5}, schema) == []
        assert config_utils.validate_config({}, schema) == ["Missing required field: size"]
        assert config_utils.validate_config({'size': 11}, schema) == ["Field size must be <= 10"]
        assert config_utils.validate_config({'size': True}, schema) == []
