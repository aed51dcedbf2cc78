"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()


class ComplianceConfig(BaseModel):
    """Windows and defaults for the obligation timeline and alerts."""

    upcoming_window_days: int = Field(
        default=7, ge=0, description="Days ahead of today listed as upcoming"
    )
    history_window_days: int = Field(
        default=30, ge=0, description="Days behind today listed in the past view"
    )
    summary_window_days: int = Field(
        default=30, ge=0, description="Days ahead counted as upcoming in the compliance summary"
    )
    follow_up_icon: str = Field(default="💉", description="Icon for follow-up dose entries")
    notification_channel: Literal["app", "email", "whatsapp"] = Field(
        default="app", description="Channel tag written on emitted notifications"
    )


class StorageConfig(BaseModel):
    """Storage collaborator settings."""

    url: str = Field(default="memory://", description="Storage endpoint")
    timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Timeout for a single storage round trip"
    )

    @field_validator("url")
    def validate_url(cls, v):
        if "://" not in v:
            raise ValueError("Storage URL must include a scheme, e.g. memory:// or https://")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    compliance: ComplianceConfig = Field(default_factory=ComplianceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _channel_to_literal(val: str) -> Literal["app", "email", "whatsapp"]:
        v = val.strip().lower()
        return cast(
            Literal["app", "email", "whatsapp"],
            v if v in {"app", "email", "whatsapp"} else "app",
        )

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    compliance_config = ComplianceConfig(
        upcoming_window_days=int(os.getenv("UPCOMING_WINDOW_DAYS", "7")),
        history_window_days=int(os.getenv("HISTORY_WINDOW_DAYS", "30")),
        summary_window_days=int(os.getenv("SUMMARY_WINDOW_DAYS", "30")),
        notification_channel=_channel_to_literal(os.getenv("NOTIFICATION_CHANNEL", "app")),
    )

    storage_config = StorageConfig(
        url=os.getenv("STORAGE_URL", "memory://"),
        timeout_seconds=float(os.getenv("STORAGE_TIMEOUT_SECONDS", "10.0")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        compliance=compliance_config,
        storage=storage_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def reset_config_cache() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    get_config.cache_clear()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")
        print(f"✅ Storage endpoint: {config.storage.url}")
    except Exception as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\n📅 COMPLIANCE CONFIGURATION")
    print(f"Upcoming Window: {config.compliance.upcoming_window_days}d")
    print(f"History Window: {config.compliance.history_window_days}d")
    print(f"Summary Window: {config.compliance.summary_window_days}d")
    print(f"Notification Channel: {config.compliance.notification_channel}")

    print("\n🗄️ STORAGE CONFIGURATION")
    print(f"URL: {config.storage.url}")
    print(f"Timeout: {config.storage.timeout_seconds}s")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
