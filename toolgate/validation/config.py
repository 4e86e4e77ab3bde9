"""
Toolgate Configuration - Configuration loading and validation.

This module provides the Config class for managing Toolgate configuration
from both global (~/.toolgate/config.yaml) and local (.toolgate/config.yaml)
sources.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from toolgate.tools.schema import KnowledgeSourceConfig


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


class GateConfig(BaseModel):
    """Configuration for the execution gate."""

    results_dir: Optional[str] = None
    retry_delay_s: float = 0.5


class PermissionsConfig(BaseModel):
    """Permission tags granted to CLI callers unless overridden."""

    granted: List[str] = Field(
        default_factory=lambda: ["db:read", "web:search", "web:unsplash", "kb:read", "code:read"]
    )


class KnowledgeConfig(BaseModel):
    """Configuration for knowledge-base retrieval."""

    base_url: Optional[str] = None
    api_key: Optional[str] = None
    app_link: Optional[str] = None
    top_k: int = Field(default=5, ge=1, le=20)
    sources: List[KnowledgeSourceConfig] = Field(default_factory=list)


class SearchConfig(BaseModel):
    """Credentials for the web search backends."""

    serpapi_api_key: Optional[str] = None
    unsplash_access_key: Optional[str] = None


class RelayConfig(BaseModel):
    """Configuration for the upstream chat completion endpoint."""

    base_url: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None
    timeout: float = 120.0
    app_link: Optional[str] = None


class LoggingConfig(BaseModel):
    level: str = "WARNING"


class ToolgateConfig(BaseModel):
    """Complete Toolgate configuration schema."""

    gate: GateConfig = Field(default_factory=GateConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Secret name -> environment variable consulted when the config leaves it unset.
ENV_FALLBACKS = {
    "serpapi": "SERPAPI_API_KEY",
    "unsplash": "UNSPLASH_ACCESS_KEY",
    "knowledge": "TOOLGATE_API_KEY",
    "relay": "TOOLGATE_API_KEY",
}

KNOWLEDGE_BASE_ENV = "KNOWLEDGE_BASE_CONFIG"


def parse_knowledge_base_env(raw: Optional[str]) -> List[KnowledgeSourceConfig]:
    """
    Parse ``{"knowledgeBases": [{"id": ..., "weight": ...}]}``.

    Raises:
        ConfigError: If the value is not valid JSON of that shape.
    """
    if not raw:
        return []
    try:
        data = json.loads(raw)
        return [KnowledgeSourceConfig(**kb) for kb in data.get("knowledgeBases", [])]
    except (ValueError, TypeError, AttributeError) as e:
        raise ConfigError(f"Invalid {KNOWLEDGE_BASE_ENV}: {e}")


class Config:
    """
    Toolgate configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.toolgate/config.yaml
    - Local: .toolgate/config.yaml (project-specific)

    Local configuration overrides global configuration.

    Example:
        >>> config = Config.load()
        >>> config.get_api_key("serpapi")
        >>> config.get_knowledge_sources()
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".toolgate"
    LOCAL_CONFIG_DIR = Path(".toolgate")

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._merged: Optional[ToolgateConfig] = None

    @classmethod
    def load(cls) -> "Config":
        """
        Load configuration from default locations.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_config = cls._load_yaml(cls._find_local_config())

        return cls(global_config=global_config, local_config=local_config)

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Failed to load config from {path}: expected a mapping")
        return data

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / cls.LOCAL_CONFIG_DIR / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        return self._deep_merge(self._global_config.copy(), self._local_config)

    @property
    def merged(self) -> ToolgateConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = ToolgateConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    def get_api_key(self, name: str) -> Optional[str]:
        """
        Get a secret by name (``serpapi``, ``unsplash``, ``knowledge``, ``relay``).

        Checks config first, then environment variables.
        """
        merged = self.merged
        configured = {
            "serpapi": merged.search.serpapi_api_key,
            "unsplash": merged.search.unsplash_access_key,
            "knowledge": merged.knowledge.api_key,
            "relay": merged.relay.api_key,
        }.get(name)
        if configured:
            return configured

        env_var = ENV_FALLBACKS.get(name)
        if env_var:
            return os.environ.get(env_var)

        return None

    def get_knowledge_sources(self) -> List[KnowledgeSourceConfig]:
        """Configured knowledge sources, falling back to $KNOWLEDGE_BASE_CONFIG."""
        if self.merged.knowledge.sources:
            return list(self.merged.knowledge.sources)
        return parse_knowledge_base_env(os.environ.get(KNOWLEDGE_BASE_ENV))

    def get_results_dir(self) -> Optional[Path]:
        results_dir = self.merged.gate.results_dir
        return Path(results_dir).expanduser() if results_dir else None

    def set_value(self, section: str, key: str, value: Any, global_: bool = False) -> None:
        """
        Set a single value.

        Args:
            section: Top-level section, e.g. ``relay``.
            key: Key within the section.
            value: New value.
            global_: Whether to set globally or locally.
        """
        config = self._global_config if global_ else self._local_config
        if not isinstance(config.get(section), dict):
            config[section] = {}
        config[section][key] = value
        self._merged = None  # Reset cache

    def save(self, global_: bool = False) -> Path:
        """
        Write one configuration layer back to disk.

        The local layer goes to the nearest existing .toolgate/config.yaml,
        or to one in the current directory when none exists.

        Returns:
            The path written.
        """
        if global_:
            path = self.GLOBAL_CONFIG_DIR / "config.yaml"
            data = self._global_config
        else:
            path = self._find_local_config() or Path.cwd() / self.LOCAL_CONFIG_DIR / "config.yaml"
            data = self._local_config

        try:
            self._save_yaml(path, data)
        except OSError as e:
            raise ConfigError(f"Failed to save config to {path}: {e}")
        return path

    def _save_yaml(self, path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @classmethod
    def create_default_global(cls) -> Path:
        """Create default global configuration file."""
        config_dir = cls.GLOBAL_CONFIG_DIR
        config_file = config_dir / "config.yaml"

        if config_file.exists():
            return config_file

        default_config = {
            "gate": {
                "results_dir": None,
                "retry_delay_s": 0.5,
            },
            "permissions": {
                "granted": PermissionsConfig().granted,
            },
            "knowledge": {
                "base_url": None,
                "api_key": None,  # Set via TOOLGATE_API_KEY env var
                "app_link": None,
                "top_k": 5,
                "sources": [],
            },
            "search": {
                "serpapi_api_key": None,  # Set via SERPAPI_API_KEY env var
                "unsplash_access_key": None,  # Set via UNSPLASH_ACCESS_KEY env var
            },
            "relay": {
                "base_url": None,
                "api_key": None,
                "model": None,
                "timeout": 120,
                "app_link": None,
            },
            "logging": {"level": "WARNING"},
        }

        try:
            config_dir.mkdir(parents=True, exist_ok=True)
            with open(config_file, "w") as f:
                yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Failed to create {config_file}: {e}")

        return config_file
