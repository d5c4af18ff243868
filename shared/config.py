"""
Shared configuration management for the Blog API.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="BLOG_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Cache store
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_enabled: bool = Field(default=True)
    cache_default_ttl: int = Field(default=300, gt=0)
    cache_connect_timeout: float = Field(default=10.0, gt=0)
    cache_breaker_threshold: int = Field(default=5, gt=0)
    cache_breaker_cooldown_seconds: float = Field(default=30.0, gt=0)
    cache_max_reconnect_attempts: int = Field(default=5, ge=0)
    cache_reconnect_base_delay: float = Field(default=1.0, gt=0)
    cache_reconnect_max_delay: float = Field(default=10.0, gt=0)

    # Document store
    document_store: str = Field(default="memory", pattern="^(memory|postgres)$")
    postgres_dsn: str = Field(default="postgres://localhost:5432/blog")

    # Security
    secret_key: str = Field(default="change-me")
    token_ttl_seconds: int = Field(default=45 * 60, gt=0)

    # HTTP
    cors_origins: List[str] = Field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:3001",
        "http://localhost:5173",
    ])


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
