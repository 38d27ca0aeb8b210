"""
Shared configuration management for the Assist Access Layer.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ASSIST_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Record store
    store_backend: str = Field(default="postgres", description="postgres | memory")
    postgres_dsn: str = "postgres://localhost:5432/assist"
    postgres_min_pool_size: int = 2
    postgres_max_pool_size: int = 10

    # Rate limiting
    rate_limit_backend: str = Field(default="store", description="store | redis | local")
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_per_window: int = 30
    rate_limit_window_ms: int = 60_000

    # Identity
    identity_backend: str = Field(default="gotrue", description="gotrue | jwt | memory")
    identity_url: str = "http://localhost:9999/auth/v1"
    identity_api_key: Optional[str] = None
    identity_timeout_seconds: float = 5.0
    jwt_secret: Optional[str] = None
    jwt_audience: Optional[str] = "authenticated"

    # Upstream model
    upstream_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    upstream_model: str = "gemini-1.5-flash"
    upstream_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ASSIST_UPSTREAM_API_KEY", "GEMINI_KEY"),
    )
    upstream_temperature: float = 0.4
    upstream_max_output_tokens: int = 512
    upstream_timeout_seconds: float = 15.0

    # Request handling
    request_deadline_seconds: float = 20.0
    max_messages: int = 30


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
