"""
Configuration models for the dashboard state layer.

Uses Pydantic for validation and type safety.
"""
from typing import Dict, List, Literal
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml
from pathlib import Path
import os
import re

from src.constants import (
    CONNECT_DELAY_SECONDS,
    DEBUG_PACKET_COUNT,
    DISCONNECT_GRACE_SECONDS,
    EQUITY_SAMPLE_CAP,
    HANDSHAKE_TIMEOUT_SECONDS,
    HISTORY_CAP,
    INACTIVITY_TIMEOUT_SECONDS,
    LOGS_CAP,
    RECONNECT_DELAY_SECONDS,
    TUNNEL_SKIP_HEADER,
    UNIVERSE,
)

CONFIG_SCHEMA_VERSION = "2026-10-01"


class TransportConfig(BaseSettings):
    """Streaming connection to the strategy engine."""
    model_config = SettingsConfigDict(extra="ignore")

    url: str = "http://localhost:8000"
    socketio_path: str = "/socket.io/"
    # Polling first, then upgrade: large packets survive the tunnel better on polling
    transports: List[Literal["polling", "websocket"]] = Field(
        default_factory=lambda: ["polling", "websocket"]
    )
    extra_headers: Dict[str, str] = Field(default_factory=lambda: dict(TUNNEL_SKIP_HEADER))

    # Fixed delay between reconnect attempts (no exponential backoff, unlimited attempts)
    reconnect_delay_seconds: float = Field(default=RECONNECT_DELAY_SECONDS, ge=0.1, le=60.0)
    inactivity_timeout_seconds: float = Field(default=INACTIVITY_TIMEOUT_SECONDS, ge=1.0, le=600.0)
    disconnect_grace_seconds: float = Field(default=DISCONNECT_GRACE_SECONDS, ge=0.0, le=60.0)
    connect_delay_seconds: float = Field(default=CONNECT_DELAY_SECONDS, ge=0.0, le=30.0)
    handshake_timeout_seconds: float = Field(default=HANDSHAKE_TIMEOUT_SECONDS, ge=1.0, le=120.0)
    debug_packet_count: int = Field(default=DEBUG_PACKET_COUNT, ge=0, le=1000)

    @field_validator("transports")
    @classmethod
    def validate_transports(cls, v):
        if not v:
            raise ValueError("At least one transport is required")
        return v


class StoreConfig(BaseSettings):
    """Persisted history/telemetry ledgers."""
    model_config = SettingsConfigDict(extra="ignore")

    data_dir: str = ".local"
    history_file: str = "history.json"
    logs_file: str = "logs.json"
    history_cap: int = Field(default=HISTORY_CAP, ge=1, le=100000)
    logs_cap: int = Field(default=LOGS_CAP, ge=1, le=100000)
    equity_samples: int = Field(default=EQUITY_SAMPLE_CAP, ge=1, le=10000)

    # Best-effort mirror to the engine's HTTP surface
    remote_sync_enabled: bool = True
    remote_timeout_seconds: float = Field(default=10.0, ge=1.0, le=120.0)

    @property
    def history_path(self) -> Path:
        return Path(self.data_dir) / self.history_file

    @property
    def logs_path(self) -> Path:
        return Path(self.data_dir) / self.logs_file


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: str | None = None
    log_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    log_backup_count: int = Field(default=5, ge=0, le=100)


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    transport: TransportConfig = Field(default_factory=TransportConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    universe: List[str] = Field(default_factory=lambda: list(UNIVERSE))
    environment: Literal["dev", "prod"] = "prod"

    @model_validator(mode="after")
    def validate_timers(self):
        # A grace window longer than the watchdog would let the watchdog fire mid-confirmation
        if self.transport.disconnect_grace_seconds >= self.transport.inactivity_timeout_seconds:
            raise ValueError("disconnect_grace_seconds must be shorter than inactivity_timeout_seconds")
        return self

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        # Regex to find ${VAR} or $VAR
        pattern = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Return original if not found

        expanded_content = pattern.sub(replace_match, raw_content)
        config_dict = yaml.safe_load(expanded_content) or {}

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        # Engine URL can be injected without editing the YAML
        api_url = os.getenv("API_URL")
        if api_url:
            config_dict.setdefault("transport", {})["url"] = api_url

        return cls(**config_dict)


def load_config(config_path: str | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to config.yaml file. If None, uses src/config/config.yaml

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file not found
        ValueError: If configuration validation fails
    """
    from src.config.dotenv_loader import load_dotenv_files

    load_dotenv_files()

    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"

    return Config.from_yaml(config_path)
