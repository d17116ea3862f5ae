"""Tests for configuration loading."""

import json

import pytest
import yaml

from automara_core.config import Config, substitute_env_vars
from automara_core.exceptions import ConfigError


@pytest.fixture
def sample_config_dict():
    """Sample configuration dictionary for testing."""
    return {
        "engine": {
            "base_url": "http://n8n.internal:5678/api/v1",
            "api_key": "${N8N_API_KEY}",
            "timeout_seconds": 5,
        },
        "storage": {"database": {"backend": "sqlite", "path": ":memory:"}},
        "provisioning": {"max_conflict_retries": 5},
        "logging": {"level": "DEBUG", "format": "text"},
    }


class TestEnvSubstitution:
    """Tests for environment variable substitution."""

    def test_substitute_string(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "hello")
        assert substitute_env_vars("${TEST_VAR}") == "hello"

    def test_substitute_nested(self, monkeypatch):
        """Values inside dicts and lists are substituted."""
        monkeypatch.setenv("TEST_KEY", "secret")
        data = {"key": "${TEST_KEY}", "items": ["${TEST_KEY}", "plain"], "port": 8080}
        assert substitute_env_vars(data) == {
            "key": "secret",
            "items": ["secret", "plain"],
            "port": 8080,
        }

    def test_partial_substitution(self, monkeypatch):
        monkeypatch.setenv("PREFIX", "prod")
        assert substitute_env_vars("${PREFIX}-n8n") == "prod-n8n"

    def test_missing_env_var_raises(self, monkeypatch):
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        with pytest.raises(ValueError, match="NONEXISTENT_VAR"):
            substitute_env_vars("${NONEXISTENT_VAR}")


class TestConfigLoading:
    """Tests for configuration loading."""

    def test_defaults(self):
        """An empty config is valid and uses documented defaults."""
        config = Config.from_dict({})
        assert config.engine.backend == "n8n"
        assert config.engine.timeout_seconds == 10.0
        assert config.engine.clone_timeout_seconds == 30.0
        assert config.engine.library_tag == "library"
        assert config.storage.database.backend == "sqlite"
        assert config.provisioning.max_conflict_retries == 3
        assert config.logging.format == "json"
        assert config.server.port == 8080

    def test_from_dict(self, sample_config_dict, monkeypatch):
        monkeypatch.setenv("N8N_API_KEY", "key-123")
        config = Config.from_dict(sample_config_dict)
        assert config.engine.base_url == "http://n8n.internal:5678/api/v1"
        assert config.engine.api_key == "key-123"
        assert config.engine.timeout_seconds == 5.0
        assert config.storage.database.path == ":memory:"
        assert config.provisioning.max_conflict_retries == 5
        assert config.logging.level == "DEBUG"

    def test_from_yaml_file(self, sample_config_dict, monkeypatch, tmp_path):
        monkeypatch.setenv("N8N_API_KEY", "from-yaml")
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(sample_config_dict))

        config = Config.from_file(path)
        assert config.engine.api_key == "from-yaml"

    def test_from_json_file(self, sample_config_dict, monkeypatch, tmp_path):
        monkeypatch.setenv("N8N_API_KEY", "from-json")
        path = tmp_path / "config.json"
        path.write_text(json.dumps(sample_config_dict))

        config = Config.from_file(path)
        assert config.engine.api_key == "from-json"

    def test_empty_yaml_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Config.from_file(path).engine.backend == "n8n"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            Config.from_file(tmp_path / "missing.yaml")
