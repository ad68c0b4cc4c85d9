"""Configuration settings using Pydantic for validation."""

import os
import re
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


class RPCConfig(BaseModel):
    """Remote node configuration."""
    url: str = Field(default="https://api.devnet.solana.com", description="JSON-RPC endpoint URL")
    account: str = Field(default="", description="Account whose history is backfilled")
    commitment: str = Field(default="confirmed", description="Commitment level for reads")
    request_timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")

    @field_validator('commitment')
    @classmethod
    def validate_commitment(cls, v):
        if v not in ['processed', 'confirmed', 'finalized']:
            raise ValueError("Commitment must be 'processed', 'confirmed', or 'finalized'")
        return v


class FetchConfig(BaseModel):
    """Pagination and pacing."""
    page_size: int = Field(default=20, ge=1, le=1000, description="Signatures per page")
    request_delay_seconds: float = Field(default=2.0, ge=0, description="Pause between transaction lookups")
    page_delay_seconds: float = Field(default=2.0, ge=0, description="Pause between signature pages")
    max_tracked_signatures: int = Field(default=1_000_000, ge=1, description="Deduplication memory bound")


class RetryConfig(BaseModel):
    """Retry configuration for rate-limited calls."""
    max_attempts: int = Field(default=7, ge=1, description="Maximum attempts per call")
    initial_backoff_seconds: float = Field(default=2.0, ge=0, description="Initial backoff delay")
    max_backoff_seconds: float = Field(default=128.0, ge=0, description="Maximum backoff delay")
    backoff_multiplier: float = Field(default=2.0, ge=1, description="Backoff multiplier")
    jitter: bool = Field(default=False, description="Add ±25% jitter to backoff")


class PriceBandConfig(BaseModel):
    """Exclusive unit price bounds."""
    lower: float = 1.0
    upper: float = 5000.0

    @model_validator(mode='after')
    def check_order(self):
        if self.lower >= self.upper:
            raise ValueError("Price band lower bound must be below upper bound")
        return self


class DecoderConfig(BaseModel):
    """Decoder configuration."""
    instrument: str = Field(default="SOL/USDC", description="Instrument label on decoded events")
    log_marker: str = Field(default="Program data: ", description="Prefix of log lines carrying payloads")
    price_lower: float = Field(default=1.0, description="Exclusive lower unit price bound")
    price_upper: float = Field(default=5000.0, description="Exclusive upper unit price bound")
    instrument_bands: Dict[str, PriceBandConfig] = Field(default_factory=dict, description="Per-instrument price bands")
    layouts: Optional[Dict[str, Any]] = Field(default=None, description="Discriminator layout overrides")

    @model_validator(mode='after')
    def check_band(self):
        if self.price_lower >= self.price_upper:
            raise ValueError("price_lower must be below price_upper")
        return self


class OutputConfig(BaseModel):
    """Output locations."""
    path: str = Field(default="data/history.json", description="Fetched events output file")
    redecode_input: str = Field(default="data/history.json", description="Saved history to re-decode")
    redecode_output: str = Field(default="data/history-decoded.json", description="Re-decoded output file")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")


class BackfillSettings(BaseSettings):
    """Main backfill service settings."""

    service_name: str = Field(default="perp-history", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")

    rpc: RPCConfig = Field(default_factory=RPCConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    decoder: DecoderConfig = Field(default_factory=DecoderConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod']:
            raise ValueError("Environment must be 'local', 'dev', or 'prod'")
        return v


def load_config(config_file: str) -> BackfillSettings:
    """Load configuration from YAML file."""
    try:
        with open(config_file, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_file}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_file}: {e}")

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Config file {config_file} must contain a mapping")

    config_data = _substitute_env_vars(config_data)

    try:
        return BackfillSettings(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_file}: {e}")


_ENV_PATTERN = re.compile(r'\$\{([^}:]+)(?::([^}]*))?\}')


def _substitute_env_vars(data):
    """Recursively substitute ``${VAR}`` and ``${VAR:default}`` references."""
    if isinstance(data, dict):
        return {key: _substitute_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    elif isinstance(data, str):
        whole = _ENV_PATTERN.fullmatch(data)
        if whole:
            return os.getenv(whole.group(1), whole.group(2))
        return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), m.group(2) or ""), data)
    else:
        return data
