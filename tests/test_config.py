"""Tests for configuration management."""

import json
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from toolgate.validation.config import Config, ConfigError, ToolgateConfig


class TestConfig:
    """Tests for Config class."""

    @pytest.fixture
    def temp_config_dir(self):
        """Create a temporary config directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_deep_merge(self):
        """Test deep merging of dictionaries."""
        config = Config()

        base = {
            "a": 1,
            "b": {"c": 2, "d": 3},
            "e": [1, 2, 3],
        }

        override = {
            "b": {"c": 10, "f": 5},
            "g": "new",
        }

        result = config._deep_merge(base, override)

        assert result["a"] == 1
        assert result["b"]["c"] == 10
        assert result["b"]["d"] == 3
        assert result["b"]["f"] == 5
        assert result["e"] == [1, 2, 3]
        assert result["g"] == "new"

    def test_get_merged_config(self):
        """Local config overrides global, section by section."""
        config = Config(
            global_config={
                "relay": {"base_url": "https://global.example.com", "model": "m-1"},
                "logging": {"level": "INFO"},
            },
            local_config={"relay": {"model": "m-2"}},
        )
        merged = config.get_merged_config()

        assert merged["relay"]["model"] == "m-2"
        assert merged["relay"]["base_url"] == "https://global.example.com"
        assert merged["logging"]["level"] == "INFO"

    def test_api_key_prefers_config(self, monkeypatch):
        monkeypatch.setenv("SERPAPI_API_KEY", "from-env")
        config = Config(global_config={"search": {"serpapi_api_key": "from-config"}})

        assert config.get_api_key("serpapi") == "from-config"

    def test_api_key_env_fallback(self, monkeypatch):
        monkeypatch.setenv("UNSPLASH_ACCESS_KEY", "unsplash-env")
        monkeypatch.setenv("TOOLGATE_API_KEY", "platform-env")
        config = Config()

        assert config.get_api_key("unsplash") == "unsplash-env"
        assert config.get_api_key("knowledge") == "platform-env"
        assert config.get_api_key("relay") == "platform-env"
        assert config.get_api_key("unknown") is None

    def test_knowledge_sources_from_config(self, monkeypatch):
        monkeypatch.delenv("KNOWLEDGE_BASE_CONFIG", raising=False)
        config = Config(local_config={
            "knowledge": {"sources": [{"id": "kb-1", "weight": 2.0}, {"id": "kb-2"}]},
        })

        sources = config.get_knowledge_sources()

        assert [s.id for s in sources] == ["kb-1", "kb-2"]
        assert sources[0].weight == 2.0
        assert sources[1].weight == 1.0

    def test_knowledge_sources_env_fallback(self, monkeypatch):
        monkeypatch.setenv(
            "KNOWLEDGE_BASE_CONFIG",
            json.dumps({"knowledgeBases": [{"id": "kb-env", "weight": 0.5}]}),
        )
        sources = Config().get_knowledge_sources()

        assert len(sources) == 1
        assert sources[0].id == "kb-env"
        assert sources[0].weight == 0.5

    def test_knowledge_sources_bad_env(self, monkeypatch):
        monkeypatch.setenv("KNOWLEDGE_BASE_CONFIG", "{not json")

        with pytest.raises(ConfigError):
            Config().get_knowledge_sources()

    def test_invalid_configuration(self):
        config = Config(global_config={"knowledge": {"top_k": 0}})

        with pytest.raises(ConfigError):
            _ = config.merged

    def test_load_yaml_missing_file(self, temp_config_dir):
        assert Config._load_yaml(temp_config_dir / "missing.yaml") == {}
        assert Config._load_yaml(None) == {}

    def test_load_yaml_invalid(self, temp_config_dir):
        path = temp_config_dir / "config.yaml"
        path.write_text("gate: [unclosed")

        with pytest.raises(ConfigError):
            Config._load_yaml(path)

    def test_set_value(self):
        """Test setting a value resets the validated cache."""
        config = Config(global_config={}, local_config={})
        assert config.merged.relay.model is None

        config.set_value("relay", "model", "m-3", global_=False)
        assert config._local_config["relay"]["model"] == "m-3"
        assert config.merged.relay.model == "m-3"

        config.set_value("logging", "level", "DEBUG", global_=True)
        assert config._global_config["logging"]["level"] == "DEBUG"

    def test_save_writes_one_layer(self, temp_config_dir, monkeypatch):
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", temp_config_dir / "home")
        monkeypatch.chdir(temp_config_dir)
        config = Config(global_config={"logging": {"level": "INFO"}}, local_config={})

        config.set_value("relay", "model", "m-4")
        path = config.save()

        assert path == temp_config_dir / ".toolgate" / "config.yaml"
        assert Config._load_yaml(path) == {"relay": {"model": "m-4"}}
        assert not (temp_config_dir / "home" / "config.yaml").exists()

        global_path = config.save(global_=True)
        assert Config._load_yaml(global_path) == {"logging": {"level": "INFO"}}

    def test_results_dir(self, temp_config_dir):
        config = Config(global_config={"gate": {"results_dir": str(temp_config_dir / "results")}})

        assert config.get_results_dir() == temp_config_dir / "results"
        assert Config().get_results_dir() is None

    def test_create_default_global(self, temp_config_dir, monkeypatch):
        monkeypatch.setattr(Config, "GLOBAL_CONFIG_DIR", temp_config_dir / ".toolgate")

        path = Config.create_default_global()

        assert path.exists()
        loaded = Config(global_config=Config._load_yaml(path))
        assert loaded.merged.knowledge.top_k == 5
        assert "db:read" in loaded.merged.permissions.granted


class TestToolgateConfig:
    """Tests for ToolgateConfig schema."""

    def test_default_config(self):
        config = ToolgateConfig()

        assert config.knowledge.top_k == 5
        assert config.knowledge.sources == []
        assert config.relay.timeout == 120.0
        assert config.logging.level == "WARNING"
        assert "db:write" not in config.permissions.granted

    def test_source_weight_must_be_positive(self):
        with pytest.raises(ValidationError):
            ToolgateConfig(knowledge={"sources": [{"id": "kb", "weight": 0}]})
