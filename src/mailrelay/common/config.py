"""
Application configuration management for mailrelay.

This module provides configuration loading from environment variables
and configuration files, with type-safe settings classes.
"""

import logging
import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError, InvalidConfigError, MissingConfigError

logger = logging.getLogger(__name__)


class SMTPSettings(BaseSettings):
    """Outbound SMTP transport settings."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore",
    )

    host: Optional[str] = Field(None, description="SMTP relay hostname")
    port: int = Field(default=587, ge=1, le=65535, description="SMTP relay port")
    secure: bool = Field(
        default=False, description="Use implicit TLS (usually port 465)"
    )
    username: Optional[str] = Field(None, description="SMTP login user")
    password: Optional[SecretStr] = Field(None, description="SMTP login password")
    from_address: Optional[str] = Field(
        None, description="Address used in the From header of relayed mail"
    )
    timeout: int = Field(default=30, description="Connection timeout in seconds")
    verify_ssl: bool = Field(
        default=True, description="Verify the relay's TLS certificate"
    )
    diagnostic: bool = Field(
        default=False,
        description="Send through a disposable Ethereal test account",
    )


class ScanSettings(BaseSettings):
    """Malware scanning (VirusTotal) settings."""

    model_config = SettingsConfigDict(
        env_prefix="SCAN_",
        extra="ignore",
    )

    enabled: bool = Field(default=False, description="Scan attachments")
    api_key: Optional[SecretStr] = Field(None, description="VirusTotal API key")
    base_url: str = Field(
        default="https://www.virustotal.com/api/v3",
        description="Scanning service base URL",
    )
    max_attempts: int = Field(
        default=10, ge=1, description="Maximum report polls per file"
    )
    poll_interval: float = Field(
        default=2.0, ge=0, description="Seconds between report polls"
    )
    request_timeout: int = Field(
        default=30, description="HTTP timeout for each scanning call"
    )
    timeout_policy: str = Field(
        default="block",
        description="What to do when no report arrives in time (block or allow)",
    )
    alert_recipient: Optional[str] = Field(
        None, description="Operator address notified when the quota runs out"
    )

    @field_validator("timeout_policy")
    @classmethod
    def validate_timeout_policy(cls, v: str) -> str:
        """Validate the scan timeout policy."""
        valid_policies = ["block", "allow"]
        if v.lower() not in valid_policies:
            raise ValueError(
                f"Timeout policy must be one of: {', '.join(valid_policies)}")
        return v.lower()

    @property
    def active(self) -> bool:
        """Whether scanning should run for uploads."""
        return self.enabled and self.api_key is not None


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper


class Settings(BaseSettings):
    """Main application settings aggregating all configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MAILRELAY_",
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="mailrelay", description="Application name")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")
    upload_dir: str = Field(
        default="./uploads", description="Directory for in-flight attachments"
    )
    sentry_dsn: Optional[str] = Field(
        None, description="Sentry DSN for error reporting"
    )

    # Sub-settings
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment name."""
        valid_environments = ["development", "test", "production"]
        v_lower = v.lower()
        if v_lower not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(valid_environments)}")
        return v_lower

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_toml(cls, path: str | Path) -> "Settings":
        """
        Load settings from a TOML configuration file.

        Args:
            path: Path to the TOML configuration file.

        Returns:
            Settings instance with loaded configuration.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        path = Path(path)
        if not path.exists():
            raise MissingConfigError("MAILRELAY_CONFIG_FILE", {"path": str(path)})

        try:
            with open(path, "rb") as f:
                config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise InvalidConfigError(
                config_key="config_file",
                value=str(path),
                reason=f"Failed to parse TOML: {e}",
            )

        return cls._from_dict(config_data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Create settings from a dictionary.

        Args:
            data: Configuration dictionary.

        Returns:
            Settings instance.
        """
        settings_kwargs: dict[str, Any] = {}

        if "app" in data:
            settings_kwargs.update(data["app"])

        if "smtp" in data:
            settings_kwargs["smtp"] = SMTPSettings(**data["smtp"])

        if "scan" in data:
            settings_kwargs["scan"] = ScanSettings(**data["scan"])

        if "logging" in data:
            settings_kwargs["logging"] = LoggingSettings(**data["logging"])

        return cls(**settings_kwargs)

    def validate_required(self) -> None:
        """
        Validate that all required configuration is present.

        Raises:
            ConfigurationError: If required configuration is missing or
                inconsistent.
        """
        if self.smtp.diagnostic:
            if self.is_production:
                raise InvalidConfigError(
                    config_key="SMTP_DIAGNOSTIC",
                    value=True,
                    reason="Diagnostic mail transport is not allowed in production",
                )
        else:
            if not self.smtp.host:
                raise MissingConfigError("SMTP_HOST")
            if not self.smtp.from_address:
                raise MissingConfigError("SMTP_FROM_ADDRESS")

        if self.scan.enabled and self.scan.api_key is None:
            logger.warning(
                "Attachment scanning is enabled but SCAN_API_KEY is not set; "
                "uploads will not be scanned"
            )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    This function loads settings from environment variables and
    optionally from a configuration file. The result is cached
    for performance.

    Returns:
        Settings instance.
    """
    config_file = os.getenv("MAILRELAY_CONFIG_FILE")

    if config_file and Path(config_file).exists():
        settings = Settings.from_toml(config_file)
    else:
        settings = Settings()

    return settings


def reload_settings() -> Settings:
    """
    Reload settings, clearing the cache.

    Returns:
        Fresh Settings instance.
    """
    get_settings.cache_clear()
    return get_settings()


__all__ = [
    "ConfigurationError",
    "LoggingSettings",
    "ScanSettings",
    "Settings",
    "SMTPSettings",
    "get_settings",
    "reload_settings",
]
