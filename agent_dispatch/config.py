"""Configuration management for Agent Dispatch."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_dispatch.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.agent-dispatch/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "agent-dispatch.yaml"

DEFAULT_UNSAFE_TOOLS = [
    "copilot_createFile",
    "copilot_insertEdit",
    "copilot_createDirectory",
    "copilot_editNotebook",
    "copilot_runInTerminal",
    "copilot_installExtension",
    "copilot_runVscodeCommand",
    "copilot_createNewWorkspace",
    "copilot_createAndRunTask",
    "copilot_createNewJupyterNotebook",
]


class ModelConfig(BaseModel):
    """Model gateway configuration."""

    provider: str = "ollama"
    model_id: str = "grok-code-fast-1"
    base_url: str = ""
    api_key: str = ""
    temperature: float = 0.7
    request_timeout: float = 120.0


class ConversationConfig(BaseModel):
    """Defaults applied when a caller leaves conversation options out."""

    max_turns: int = 10
    title: str = "Untitled"
    caller: str = "Unknown"
    instructions: str = "Go, go, go!"


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = Field(default_factory=list)
    allow_unsafe: bool = False
    timeout_seconds: float = 30.0
    unsafe: list[str] = Field(default_factory=lambda: list(DEFAULT_UNSAFE_TOOLS))


class CancellationConfig(BaseModel):
    """Polling used while reading a streaming model response."""

    poll_interval_ms: int = 200
    poll_ceiling_ms: int = 30000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["console", "json"] = "console"
    debug_buffer: bool = False


class Config(BaseSettings):
    """Main configuration for Agent Dispatch."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    cancellation: CancellationConfig = Field(default_factory=CancellationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="AGENT_DISPATCH_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # env vars beat YAML values passed in as init kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration, preferring env vars over YAML."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @property
    def tool_timeout_seconds(self) -> float:
        """Per-tool timeout, never below one second."""
        return max(1.0, float(self.tools.timeout_seconds))


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
