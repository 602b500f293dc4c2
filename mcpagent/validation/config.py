"""
mcpagent Configuration - YAML loading and pydantic validation.

This module provides the Config class for managing mcpagent configuration
from both global (~/.mcpagent/config.yaml) and local (.mcpagent/config.yaml)
sources.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from mcpagent import __version__
from mcpagent.mcp.schema import ParameterSetting


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


class ProviderConfig(BaseModel):
    """Configuration for an LLM provider."""

    api_key: Optional[str] = None
    api_base: Optional[str] = None
    models: List[str] = Field(default_factory=list)
    default_model: Optional[str] = None
    enabled: bool = True


class AgentConfig(BaseModel):
    """Configuration for the orchestration loop."""

    model: Optional[str] = None
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout: int = 120
    max_rounds: Optional[int] = Field(default=16, ge=1)
    parallel_tool_calls: bool = False
    system_prompt: Optional[str] = None


class TransportConfig(BaseModel):
    """Settings shared by every tool session."""

    protocol_version: str = "2024-11-05"
    client_name: str = "mcpagent"
    client_version: str = __version__
    connect_timeout: float = 10.0
    request_timeout: float = 60.0
    shutdown_timeout: float = 5.0
    list_tools: bool = True


class ToolConfig(BaseModel):
    """
    A tool reachable through exactly one transport.

    Either ``command`` (spawned as a subprocess, with optional ``args`` and
    ``env``) or ``url`` (an SSE endpoint) must be set.
    """

    description: str = ""
    parameters: List[ParameterSetting] = Field(default_factory=list)
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None
    enabled: bool = True

    @model_validator(mode="after")
    def _exactly_one_transport(self) -> "ToolConfig":
        if bool(self.command) == bool(self.url):
            raise ValueError("exactly one of 'command' or 'url' must be set")
        return self


class MCPAgentConfig(BaseModel):
    """Complete mcpagent configuration schema."""

    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    tools: Dict[str, ToolConfig] = Field(default_factory=dict)


class Config:
    """
    Layered configuration for mcpagent.

    Two YAML files are read:
    - Global: ~/.mcpagent/config.yaml (provider keys, default model)
    - Local: .mcpagent/config.yaml in the project or any parent directory
      (usually the tool catalog)

    Mappings are deep-merged with the local file winning; the result is
    validated once into ``MCPAgentConfig``.

    Example:
        >>> config = Config.load()
        >>> config.merged.tools["add"].command
        '/usr/local/bin/calculator-server'
        >>> config.set_model("ollama/llama3", global_=True)
        >>> config.save()
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".mcpagent"
    LOCAL_CONFIG_DIR = Path(".mcpagent")

    ENV_KEYS = {
        "openai": "OPENAI_API_KEY",
        "openrouter": "OPENROUTER_API_KEY",
        "together": "TOGETHER_API_KEY",
        "groq": "GROQ_API_KEY",
    }

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
    ):
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._merged: Optional[MCPAgentConfig] = None

    @classmethod
    def load(cls) -> "Config":
        """Read the global file and the nearest local file; missing files count as empty."""
        return cls(
            global_config=cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml"),
            local_config=cls._load_yaml(cls._find_local_config()),
        )

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")
        return data or {}

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Walk up from the cwd to the first ``.mcpagent/config.yaml``."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / cls.LOCAL_CONFIG_DIR / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        return self._deep_merge(self._global_config.copy(), self._local_config)

    @property
    def merged(self) -> MCPAgentConfig:
        """Validated view of both files. Cached until the next ``set_model``."""
        if self._merged is None:
            try:
                self._merged = MCPAgentConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    def get_default_model(self) -> Optional[str]:
        """``agent.model``, else the first enabled provider's ``default_model``."""
        if self.merged.agent.model:
            return self.merged.agent.model

        for provider_name, provider_config in self.merged.providers.items():
            if provider_config.enabled and provider_config.default_model:
                return f"{provider_name}/{provider_config.default_model}"
        return None

    def set_model(self, model_name: str, global_: bool = False) -> None:
        config = self._global_config if global_ else self._local_config
        config.setdefault("agent", {})["model"] = model_name
        self._merged = None

    def get_provider_config(self, provider_name: str) -> Optional[ProviderConfig]:
        return self.merged.providers.get(provider_name)

    def get_api_key(self, provider_name: str) -> Optional[str]:
        """Key from ``providers.<name>.api_key``, falling back to the provider's env var."""
        provider = self.get_provider_config(provider_name)
        if provider and provider.api_key:
            return provider.api_key

        env_var = self.ENV_KEYS.get(provider_name)
        return os.environ.get(env_var) if env_var else None

    def save(self) -> None:
        """
        Write the global file, and the local file if there is local config.

        Local settings go to the nearest existing ``.mcpagent/config.yaml``,
        or a new one in the current directory.
        """
        self._save_yaml(self.GLOBAL_CONFIG_DIR / "config.yaml", self._global_config)

        local_path = self._find_local_config()
        if local_path is None and self._local_config:
            local_path = Path.cwd() / self.LOCAL_CONFIG_DIR / "config.yaml"
        if local_path:
            self._save_yaml(local_path, self._local_config)

    def _save_yaml(self, path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``override`` into a copy of ``base``; nested mappings merge, anything else is replaced."""
        result = base.copy()
        for key, value in override.items():
            if isinstance(result.get(key), dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
