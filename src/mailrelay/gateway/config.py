"""
Gateway-specific configuration for mailrelay.

This module provides configuration settings specific to the HTTP gateway,
extending the common application configuration.
"""

from functools import lru_cache
from typing import Annotated, Any, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class GatewaySettings(BaseSettings):
    """Gateway service configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        extra="ignore",
    )

    # Server settings
    host: str = Field(
        default="0.0.0.0",
        description="Host address to bind the gateway server",
    )
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Port to bind the gateway server",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (exposes error details)",
    )

    # Authentication settings
    api_key: Optional[SecretStr] = Field(
        default=None,
        description="API key expected in X-API-Key; unset disables the check",
    )
    csrf_enabled: bool = Field(
        default=True,
        description="Require X-CSRF-Token on state-changing requests",
    )

    # CORS settings
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS support",
    )
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="Allowed CORS origins",
    )
    cors_allow_credentials: bool = Field(
        default=True,
        description="Allow credentials in CORS requests",
    )
    cors_max_age: int = Field(
        default=86400,
        description="CORS preflight cache max age in seconds",
    )

    # Rate limiting settings
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable rate limiting",
    )
    rate_limit_requests: int = Field(
        default=100,
        description="Maximum API requests per window and client",
    )
    rate_limit_window: int = Field(
        default=15 * 60,
        description="API rate limit window in seconds",
    )
    send_rate_limit_requests: int = Field(
        default=5,
        description="Maximum send requests per window and client",
    )
    send_rate_limit_window: int = Field(
        default=60,
        description="Send rate limit window in seconds",
    )
    rate_limit_storage: str = Field(
        default="memory",
        description="Rate limit storage backend (memory or redis)",
    )
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for rate limiting storage",
    )
    trust_proxy: bool = Field(
        default=False,
        description="Honour X-Forwarded-For from one reverse proxy hop",
    )

    # Request settings
    max_content_length: int = Field(
        default=16 * 1024 * 1024,  # 16 MB
        description="Maximum request content length in bytes",
    )

    # Logging settings
    log_requests: bool = Field(
        default=True,
        description="Enable request/response logging",
    )

    # Security settings
    secret_key: str = Field(
        default="change-me-in-production",
        description="Flask secret key",
    )
    cookie_secure: bool = Field(
        default=True,
        description="Only send the CSRF cookie over HTTPS",
    )
    cookie_samesite: str = Field(
        default="Strict",
        description="SameSite attribute of the CSRF cookie",
    )
    csrf_cookie_max_age: int = Field(
        default=24 * 60 * 60,
        description="CSRF cookie lifetime in seconds",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip()
                    for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("api_key", mode="before")
    @classmethod
    def empty_api_key_disables_check(cls, v: Any) -> Any:
        """Treat an empty or blank API key as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("rate_limit_storage")
    @classmethod
    def validate_rate_limit_storage(cls, v: str) -> str:
        """Validate rate limit storage backend."""
        valid_backends = ["memory", "redis"]
        if v.lower() not in valid_backends:
            raise ValueError(
                f"Rate limit storage must be one of: {', '.join(valid_backends)}")
        return v.lower()

    @field_validator("cookie_samesite")
    @classmethod
    def validate_samesite(cls, v: str) -> str:
        """Validate SameSite cookie attribute."""
        valid_values = ["Strict", "Lax", "None"]
        if v not in valid_values:
            raise ValueError(
                f"SameSite must be one of: {', '.join(valid_values)}")
        return v


@lru_cache()
def get_gateway_settings() -> GatewaySettings:
    """
    Get cached gateway settings.

    Returns:
        GatewaySettings instance loaded from environment variables.
    """
    return GatewaySettings()


def reload_gateway_settings() -> GatewaySettings:
    """
    Reload gateway settings, clearing the cache.

    Returns:
        Fresh GatewaySettings instance.
    """
    get_gateway_settings.cache_clear()
    return get_gateway_settings()
