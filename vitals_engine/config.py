"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no broker credentials in code)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

PLACEHOLDER_BROKER_HOSTS = {"", "replace your mqtt url", "your-broker-host-here"}


class BrokerConfig(BaseModel):
    """Message broker connection settings."""

    host: str = Field(..., description="Broker host name")
    port: int = Field(default=8884, gt=0, lt=65536, description="Broker port")
    transport: Literal["websockets", "tcp"] = Field(
        default="websockets", description="Underlying socket transport"
    )
    websocket_path: str = Field(default="/mqtt", description="Path used for WebSocket upgrades")
    use_tls: bool = Field(default=True, description="Wrap the connection in TLS")
    username: str | None = Field(default=None, description="Broker username")
    password: str | None = Field(default=None, description="Broker password")
    client_id: str = Field(default="", description="Client id, empty lets the broker pick one")
    clean_session: bool = Field(default=True, description="Start without broker-side state")
    keepalive_seconds: int = Field(default=60, gt=0, description="MQTT keepalive interval")

    # Connection lifecycle
    connect_timeout_seconds: float = Field(
        default=4.0, gt=0.0, description="Time allowed for the broker handshake"
    )
    reconnect_interval_seconds: float = Field(
        default=1.0, gt=0.0, description="Fixed backoff between reconnect attempts"
    )

    # Topics
    data_topic: str = Field(default="demo", min_length=1, description="Topic carrying readings")
    control_topic: str = Field(
        default="demo", min_length=1, description="Topic accepting measurement commands"
    )
    start_command: str = Field(default="start", min_length=1, description="Start command payload")

    @field_validator("host")
    def validate_host(cls, v: str) -> str:
        if v.strip().lower() in PLACEHOLDER_BROKER_HOSTS:
            raise ValueError("Broker host must be set in environment or .env file")
        return v.strip()

    @field_validator("websocket_path")
    def validate_websocket_path(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"


class StorageConfig(BaseModel):
    """Durable key-value storage for history and profiles."""

    backend: Literal["file", "sqlite", "memory"] = Field(
        default="file", description="Storage backend"
    )
    path: str = Field(default="./vitals_data", description="Directory or SQLite file path")


class HistoryConfig(BaseModel):
    """Rolling history settings."""

    capacity: int = Field(default=24, gt=0, le=24, description="Entries kept per subject")
    placeholder_temperature_c: float = Field(
        default=37.0, description="Temperature recorded while the feed carries none"
    )


class AlertConfig(BaseModel):
    """Alert derivation settings."""

    capacity: int = Field(default=5, gt=0, le=5, description="Recent alerts kept")
    bradycardia_markers: list[str] = Field(
        default_factory=lambda: ["Bradycardia"],
        description="Heart-rate status fragments that raise an alert",
    )
    unsafe_spo2_markers: list[str] = Field(
        default_factory=lambda: ["Not Safe"],
        description="SpO2 status fragments that raise an alert",
    )

    @field_validator("bradycardia_markers", "unsafe_spo2_markers")
    def strip_markers(cls, v: list[str]) -> list[str]:
        markers = [m.strip() for m in v if m.strip()]
        if not markers:
            raise ValueError("At least one alert marker is required")
        return markers


class SessionConfig(BaseModel):
    """Measurement window settings."""

    duration_seconds: int = Field(default=30, gt=0, le=30, description="Window length")
    tick_interval_seconds: float = Field(default=1.0, gt=0.0, description="Countdown tick period")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    broker: BrokerConfig
    storage: StorageConfig = Field(default_factory=StorageConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    alerts: AlertConfig = Field(default_factory=AlertConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    def _parse_list(val: str | None, default: list[str]) -> list[str]:
        if val is None:
            return default
        return val.split(",")

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    broker_config = BrokerConfig(
        host=os.getenv("MQTT_HOST", ""),
        port=int(os.getenv("MQTT_PORT", "8884")),
        transport="tcp" if os.getenv("MQTT_TRANSPORT", "").strip().lower() == "tcp" else "websockets",
        websocket_path=os.getenv("MQTT_WS_PATH", "/mqtt"),
        use_tls=_parse_bool(os.getenv("MQTT_USE_TLS"), True),
        username=os.getenv("MQTT_USERNAME") or None,
        password=os.getenv("MQTT_PASSWORD") or None,
        client_id=os.getenv("MQTT_CLIENT_ID", ""),
        keepalive_seconds=int(os.getenv("MQTT_KEEPALIVE", "60")),
        connect_timeout_seconds=float(os.getenv("MQTT_CONNECT_TIMEOUT_SECONDS", "4.0")),
        reconnect_interval_seconds=float(os.getenv("MQTT_RECONNECT_INTERVAL_SECONDS", "1.0")),
        data_topic=os.getenv("MQTT_DATA_TOPIC", "demo"),
        control_topic=os.getenv("MQTT_CONTROL_TOPIC", "demo"),
        start_command=os.getenv("MQTT_START_COMMAND", "start"),
    )

    backend = os.getenv("STORAGE_BACKEND", "file").strip().lower()
    storage_config = StorageConfig(
        backend=cast(Literal["file", "sqlite", "memory"], backend),
        path=os.getenv("STORAGE_PATH", "./vitals_data"),
    )

    history_config = HistoryConfig(
        capacity=int(os.getenv("HISTORY_CAPACITY", "24")),
        placeholder_temperature_c=float(os.getenv("HISTORY_PLACEHOLDER_TEMPERATURE_C", "37.0")),
    )

    alert_config = AlertConfig(
        capacity=int(os.getenv("ALERT_CAPACITY", "5")),
        bradycardia_markers=_parse_list(os.getenv("ALERT_BRADYCARDIA_MARKERS"), ["Bradycardia"]),
        unsafe_spo2_markers=_parse_list(os.getenv("ALERT_UNSAFE_SPO2_MARKERS"), ["Not Safe"]),
    )

    session_config = SessionConfig(
        duration_seconds=int(os.getenv("SESSION_DURATION_SECONDS", "30")),
        tick_interval_seconds=float(os.getenv("SESSION_TICK_INTERVAL_SECONDS", "1.0")),
    )

    # Logging config
    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    # Application config
    return AppConfig(
        environment=environment,
        debug=debug,
        broker=broker_config,
        storage=storage_config,
        history=history_config,
        alerts=alert_config,
        session=session_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()
