"""
Shared configuration management for the Hustl Access Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="HUSTL_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Identity store
    store_backend: str = Field(default="memory", description="memory or postgres")
    postgres_dsn: str = Field(default="postgres://localhost:5432/hustl")
    postgres_create_schema: bool = Field(default=True)
    postgres_pool_min_size: int = Field(default=2)
    postgres_pool_max_size: int = Field(default=10)

    # Identity providers
    apple_keys_url: str = Field(default="https://appleid.apple.com/auth/keys")
    google_keys_url: str = Field(default="https://www.googleapis.com/oauth2/v3/certs")
    apple_audience: Optional[str] = Field(default=None)
    google_audience: Optional[str] = Field(default=None)
    jwks_cache_ttl_seconds: int = Field(default=1800)
    jwks_http_timeout: float = Field(default=10.0)

    # Entitlement policy
    free_daily_message_limit: int = Field(default=5)
    premium_daily_message_limit: int = Field(default=10000)
    message_reset_window_seconds: int = Field(default=60)

    # Chat completions
    openai_api_key: str = Field(default="")
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    chat_model: str = Field(default="gpt-4o")
    chat_http_timeout: float = Field(default=60.0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
