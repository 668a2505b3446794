"""Configuration management for MCP Tools Mesh hub and nodes."""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError, InvalidConfigurationError


@dataclass
class MeshConfig:
    """Configuration shared by the hub and node clients."""

    # Hub endpoint
    hub_host: str = "localhost"
    hub_port: int = 3000
    hub_url: str | None = None

    # Persistence
    state_file: str = "./hub-state.json"
    snapshot_interval: float = 10.0

    # Liveness
    heartbeat_interval: float = 10.0
    heartbeat_timeout: float = 3600.0
    sweep_interval: float = 30.0

    # Node client
    discovery_interval: float = 10.0
    reconnect_max_attempts: int = 10
    reconnect_delay: float = 5.0
    reconnect_backoff: float = 1.0
    reconnect_max_delay: float = 60.0
    request_timeout: float = 30.0

    # Call routing
    executor_timeout: float = 30.0
    simulation_enabled: bool = True

    # Logging settings
    log_level: str = "INFO"
    debug_mode: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.validate()

    def validate(self) -> None:
        """Validate configuration values."""
        errors = []

        if not (1 <= self.hub_port <= 65535):
            errors.append(
                f"Invalid hub_port: {self.hub_port}. Must be between 1 and 65535."
            )

        if not self.hub_host or not isinstance(self.hub_host, str):
            errors.append("hub_host must be a non-empty string.")

        if self.hub_url is not None and not self.hub_url.startswith(
            ("http://", "https://")
        ):
            errors.append(f"Invalid hub_url: {self.hub_url}. Must be an HTTP URL.")

        valid_log_levels = [
            "TRACE",
            "DEBUG",
            "INFO",
            "WARNING",
            "WARN",
            "ERROR",
            "CRITICAL",
        ]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"Invalid log_level: {self.log_level}. "
                f"Must be one of {valid_log_levels}."
            )

        for name in (
            "snapshot_interval",
            "heartbeat_interval",
            "heartbeat_timeout",
            "sweep_interval",
            "discovery_interval",
            "request_timeout",
            "executor_timeout",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive.")

        if self.reconnect_max_attempts < 0:
            errors.append("reconnect_max_attempts must not be negative.")

        if self.reconnect_delay < 0:
            errors.append("reconnect_delay must not be negative.")

        if self.reconnect_backoff < 1.0:
            errors.append("reconnect_backoff must be at least 1.0.")

        if self.reconnect_max_delay < self.reconnect_delay:
            errors.append("reconnect_max_delay must be >= reconnect_delay.")

        if errors:
            raise InvalidConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}"
            )

    @property
    def resolved_hub_url(self) -> str:
        """Hub base URL, built from host and port unless set explicitly."""
        if self.hub_url:
            return self.hub_url.rstrip("/")
        return f"http://{self.hub_host}:{self.hub_port}"

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MeshConfig":
        """Create configuration from dictionary, ignoring unknown keys."""
        known_keys = {field.name for field in fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in known_keys}
        return cls(**filtered_data)

    def merge(self, overrides: dict[str, Any]) -> "MeshConfig":
        """Return a new configuration with ``overrides`` applied on top."""
        merged_data = self.to_dict()
        merged_data.update(
            {k: v for k, v in overrides.items() if v is not None}
        )
        return MeshConfig.from_dict(merged_data)


_INT_KEYS = {"hub_port", "reconnect_max_attempts"}
_FLOAT_KEYS = {
    "snapshot_interval",
    "heartbeat_interval",
    "heartbeat_timeout",
    "sweep_interval",
    "discovery_interval",
    "reconnect_delay",
    "reconnect_backoff",
    "reconnect_max_delay",
    "request_timeout",
    "executor_timeout",
}
_BOOL_KEYS = {"simulation_enabled", "debug_mode"}

ENV_PREFIX = "MCP_TOOLS_MESH_"


def convert_config_value(key: str, value: str) -> Any:
    """Convert a string value to the type expected for ``key``."""
    try:
        if key in _INT_KEYS:
            return int(value)
        if key in _FLOAT_KEYS:
            return float(value)
        if key in _BOOL_KEYS:
            return value.lower() in ("true", "1", "yes", "on")
        return value
    except ValueError:
        raise InvalidConfigurationError(f"Invalid value for {key}: {value}")


class MeshConfigManager:
    """Manager for mesh configuration with multiple sources."""

    DEFAULT_CONFIG_PATH = Path.home() / ".mcp_tools_mesh" / "config.json"

    def __init__(self, config_path: Path | None = None):
        self.config_path = (
            Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        )
        self._config: MeshConfig | None = None

    def load_config(self, override_args: dict[str, Any] | None = None) -> MeshConfig:
        """Load configuration from multiple sources with precedence:
        1. Command-line arguments (highest priority)
        2. Configuration file
        3. Environment variables
        4. Defaults (lowest priority)
        """
        config = MeshConfig()

        env_data = self._load_from_environment()
        if env_data:
            config = config.merge(env_data)

        file_data = self._load_from_file()
        if file_data:
            config = config.merge(file_data)

        if override_args:
            known_keys = {field.name for field in fields(MeshConfig)}
            cli_overrides = {
                k: v for k, v in override_args.items() if k in known_keys
            }
            if cli_overrides:
                config = config.merge(cli_overrides)

        self._config = config
        return config

    def save_config(self, config: MeshConfig) -> None:
        """Save configuration to file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(config.to_dict(), f, indent=2, sort_keys=True)
        except OSError as e:
            raise ConfigurationError(
                f"Failed to save configuration to {self.config_path}: {e}"
            )

    def _load_from_file(self) -> dict[str, Any] | None:
        """Load configuration from JSON file."""
        if not self.config_path.exists():
            return None

        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidConfigurationError(
                f"Invalid JSON in config file {self.config_path}: {e}"
            )
        except OSError as e:
            raise ConfigurationError(
                f"Failed to load config file {self.config_path}: {e}"
            )

        if not isinstance(data, dict):
            raise InvalidConfigurationError(
                f"Config file {self.config_path} must contain a JSON object"
            )
        return data

    def _load_from_environment(self) -> dict[str, Any]:
        """Load configuration from MCP_TOOLS_MESH_* environment variables."""
        config_data = {}
        for field in fields(MeshConfig):
            value = os.getenv(ENV_PREFIX + field.name.upper())
            if value is not None:
                config_data[field.name] = convert_config_value(field.name, value)
        return config_data

    def get_config(self) -> MeshConfig:
        """Get the current configuration, loading it on first use."""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def show_config(self, format: str = "text") -> str:
        """Show current configuration in the specified format."""
        config = self.get_config()

        if format.lower() == "json":
            return json.dumps(config.to_dict(), indent=2, sort_keys=True)
        elif format.lower() == "text":
            lines = []
            for key, value in sorted(config.to_dict().items()):
                lines.append(f"{key}: {value}")
            return "\n".join(lines)
        else:
            raise ValueError(f"Unsupported format: {format}")


__all__ = [
    "MeshConfig",
    "MeshConfigManager",
    "convert_config_value",
    "ENV_PREFIX",
]
