"""Configuration settings using Pydantic for validation."""

import os
import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _normalize_level(level: str) -> str:
    level = level.upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level!r}")
    return level


class BinanceConfig(BaseModel):
    """Binance websocket feed configuration."""
    ws_url: str = Field(
        default="wss://stream.binance.com:9443/ws/!miniTicker@arr",
        description="Binance all-market mini-ticker stream URL"
    )
    open_timeout_seconds: float = Field(default=10.0, description="Websocket handshake timeout")
    ping_interval_seconds: float = Field(default=20.0, description="Keepalive ping interval")
    ping_timeout_seconds: float = Field(default=10.0, description="Keepalive pong timeout")
    close_timeout_seconds: float = Field(default=10.0, description="Close handshake timeout")
    max_message_bytes: int = Field(default=2**22, description="Largest accepted frame (array messages are big)")


class ClickHouseConfig(BaseModel):
    """ClickHouse HTTP interface configuration."""
    host: str = Field(
        default_factory=lambda: os.getenv("CLICKHOUSE_HOST", "http://localhost:8123"),
        description="ClickHouse HTTP endpoint"
    )
    user: str = Field(
        default_factory=lambda: os.getenv("CLICKHOUSE_USER", "default"),
        description="ClickHouse user"
    )
    password: str = Field(
        default_factory=lambda: os.getenv("CLICKHOUSE_PASS", ""),
        description="ClickHouse password"
    )
    database: str = Field(
        default_factory=lambda: os.getenv("CLICKHOUSE_DB", "default"),
        description="Database holding the ticks table"
    )
    table: str = Field(default="market_ticks", description="Target table name")
    request_timeout_seconds: float = Field(default=20.0, description="Per-request timeout")
    ttl_days: int = Field(default=30, description="Row retention in days")

    @field_validator('host')
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip('/')

    @field_validator('database', 'table')
    @classmethod
    def validate_identifier(cls, v):
        if not re.fullmatch(r'[A-Za-z_][A-Za-z0-9_]*', v):
            raise ValueError(f"Invalid ClickHouse identifier: {v!r}")
        return v


class BufferConfig(BaseModel):
    """Batching and overflow configuration."""
    batch_max: int = Field(default=1000, description="Flush immediately at this many buffered rows")
    flush_interval_seconds: float = Field(default=2.0, description="Timer-based flush interval")
    max_overflow: int = Field(default=100_000, description="Hard cap on buffered rows after a failed flush")

    @field_validator('batch_max', 'max_overflow')
    @classmethod
    def validate_positive_int(cls, v):
        if v <= 0:
            raise ValueError("Buffer sizes must be positive")
        return v

    @field_validator('flush_interval_seconds')
    @classmethod
    def validate_interval(cls, v):
        if v <= 0:
            raise ValueError("Flush interval must be positive")
        return v

    @model_validator(mode='after')
    def validate_batch_within_overflow(self):
        if self.batch_max > self.max_overflow:
            raise ValueError("batch_max must not exceed max_overflow")
        return self


class ReconnectConfig(BaseModel):
    """Feed reconnect configuration."""
    strategy: str = Field(default="fixed", description="Delay strategy: fixed or exponential")
    delay_seconds: float = Field(default=2.0, description="Delay before reconnecting")
    max_delay_seconds: float = Field(default=60.0, description="Cap for exponential strategy")
    multiplier: float = Field(default=2.0, description="Exponential multiplier")
    jitter: bool = Field(default=False, description="Add +/-25% jitter to exponential delays")

    @field_validator('strategy')
    @classmethod
    def validate_strategy(cls, v):
        if v not in ['fixed', 'exponential']:
            raise ValueError("Strategy must be 'fixed' or 'exponential'")
        return v

    @field_validator('delay_seconds', 'max_delay_seconds')
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Delays must not be negative")
        return v


class HealthConfig(BaseModel):
    """Health check service configuration."""
    enabled: bool = Field(default=True, description="Serve /health, /ready and /live")
    port: int = Field(default=8080, description="Health check server port")
    host: str = Field(default="0.0.0.0", description="Health check server host")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")
    data_loss_level: str = Field(
        default="WARNING",
        description="Level for overflow drops and rows lost at shutdown"
    )
    component_levels: Dict[str, str] = Field(
        default_factory=lambda: {"websockets": "WARNING", "aiohttp.access": "WARNING"},
        description="Per-logger level overrides"
    )

    @field_validator('level', 'data_loss_level')
    @classmethod
    def validate_level(cls, v):
        return _normalize_level(v)

    @field_validator('component_levels')
    @classmethod
    def validate_component_levels(cls, v):
        return {name: _normalize_level(level) for name, level in v.items()}

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        v = v.lower()
        if v not in ('json', 'text'):
            raise ValueError("Log format must be 'json' or 'text'")
        return v


class IngestorSettings(BaseSettings):
    """Main ingestor service settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = Field(default="ticker-ingestor", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")

    binance: BinanceConfig = Field(default_factory=BinanceConfig)
    clickhouse: ClickHouseConfig = Field(default_factory=ClickHouseConfig)
    buffer: BufferConfig = Field(default_factory=BufferConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod']:
            raise ValueError("Environment must be 'local', 'dev', or 'prod'")
        return v


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ValueError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(f"Required environment variable '{var_name}' is not set")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> IngestorSettings:
    """
    Load settings from config file and environment variables.

    The config file supports environment variable substitution using ${VAR_NAME} syntax.
    Values given in the file override environment variables for the same field.

    Args:
        config_file: Path to YAML configuration file

    Returns:
        IngestorSettings: Validated configuration object

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        import yaml

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return IngestorSettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return IngestorSettings()
