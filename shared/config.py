"""
Shared configuration management for the Tracker Access Layer.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden from the environment with the ``ACCESS_``
    prefix (``ACCESS_POSTGRES_DSN``, ``ACCESS_LOG_LEVEL`` ...) or from ``.env``.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    enable_docs: bool = Field(default=True)

    # External services
    postgres_dsn: str = Field(default="postgres://localhost:5432/tracker")
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_min_pool: int = Field(default=2)
    postgres_max_pool: int = Field(default=10)

    # Storage policy rendering
    policy_actor_expression: str = Field(default="auth.uid()")
    policy_schema: str = Field(default="public")
    policy_role_name: str = Field(default="authenticated")

    # Security events
    cross_tenant_alert_threshold: int = Field(default=5, ge=1)
    cross_tenant_window_seconds: int = Field(default=300, ge=1)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
