"""
Shared configuration management for the self-hosted cache gateway.
"""

import ipaddress
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        if value.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}, got {value!r}")
        return value.lower()


class GatewayConfig(BaseConfig):
    """Settings for one gateway session."""

    # Listener
    host: str = Field(default="127.0.0.1")

    # Handler loading
    handler_factory: str = Field(default="create_handler")

    # Deadlines (seconds)
    backend_timeout_seconds: Optional[float] = Field(default=300.0)
    startup_timeout_seconds: float = Field(default=10.0)
    shutdown_grace_seconds: float = Field(default=5.0)

    # Discovery
    publish_environment: bool = Field(default=True)
    server_url_env: str = Field(default="NX_SELF_HOSTED_REMOTE_CACHE_SERVER")
    access_token_env: str = Field(default="NX_SELF_HOSTED_REMOTE_CACHE_ACCESS_TOKEN")

    @field_validator("host")
    @classmethod
    def _loopback_only(cls, value: str) -> str:
        if value == "localhost":
            return value
        try:
            address = ipaddress.ip_address(value)
        except ValueError as exc:
            raise ValueError(f"host must be a loopback address, got {value!r}") from exc
        if not address.is_loopback:
            raise ValueError(f"host must be a loopback address, got {value!r}")
        return value


def get_config(**overrides) -> GatewayConfig:
    """Get gateway configuration from the environment plus explicit overrides."""
    return GatewayConfig(**overrides)
