"""
Shared configuration management for the encrypted session layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Session codec
    session_secret: Optional[str] = Field(default=None, repr=False)
    session_digest: str = Field(default="SHA1")
    session_compress: bool = Field(default=True)

    # Session lifecycle (seconds)
    session_expire_after: Optional[int] = Field(default=None)
    session_refresh_interval: int = Field(default=300)

    # Session cookie
    session_cookie_name: str = Field(default="session")
    session_cookie_path: str = Field(default="/")
    session_cookie_domain: Optional[str] = Field(default=None)
    session_cookie_secure: bool = Field(default=False)
    session_cookie_httponly: bool = Field(default=True)
    session_cookie_samesite: str = Field(default="lax")


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
