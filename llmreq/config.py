"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Limits, budgets and lifetimes are validated at startup.
"""

import re
import sys

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# LiteLLM duration strings: "30s", "30m", "9600h", "30d", "2w", "1mo"
_DURATION_PATTERN = re.compile(r"^\d+(s|m|h|d|w|mo)$")


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    prefix: str = "/api"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_title: str = "LLM Request Manager API"
    api_version: str = "1.0.0"
    api_description: str = "API for managing LiteLLM keys and user budgets."

    # Upstream LiteLLM directory (not prefixed, shared with the proxy deployment)
    litellm_api_url: str = Field(
        default="http://litellm:4000", validation_alias="litellm_api_url"
    )
    litellm_master_key: str = Field(default="", validation_alias="litellm_master_key")
    request_timeout_seconds: float = 10.0

    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./app.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    auto_migrate: bool = False

    # Key lifecycle policy
    default_budget: float = 1.0
    standard_key_lifetime: str | None = None  # None = standard keys never expire
    longterm_key_lifetime: str = "9600h"
    longterm_key_limit: int = 1
    longterm_key_budget: float = 20.0
    max_active_keys: int = Field(
        default=10,
        validation_alias="llmreq_max_active_key",
    )

    # Provisioning gate (0 = check upstream on every request)
    provisioning_cache_ttl_seconds: float = 0.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True
    service_name: str = "llmreq"

    model_config = SettingsConfigDict(
        env_prefix="LLMREQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("standard_key_lifetime", mode="before")
    @classmethod
    def empty_lifetime_is_none(cls, value: object) -> object:
        """An empty LLMREQ_STANDARD_KEY_LIFETIME means no expiry."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("litellm_api_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate lifecycle policy configuration at startup.

        A bad ceiling or lifetime would otherwise only surface when a user
        tries to create a key.
        """
        errors: list[str] = []

        if not self.database_url.startswith(("sqlite", "postgresql", "postgres")):
            errors.append(
                f"LLMREQ_DATABASE_URL must be a SQLite or PostgreSQL URL, "
                f"got: {self.database_url[:20]}..."
            )
        if self.default_budget <= 0:
            errors.append(f"LLMREQ_DEFAULT_BUDGET must be positive, got {self.default_budget}")
        if self.longterm_key_budget <= 0:
            errors.append(
                f"LLMREQ_LONGTERM_KEY_BUDGET must be positive, got {self.longterm_key_budget}"
            )
        if self.max_active_keys < 1:
            errors.append(f"LLMREQ_MAX_ACTIVE_KEY must be at least 1, got {self.max_active_keys}")
        if self.longterm_key_limit < 0:
            errors.append(
                f"LLMREQ_LONGTERM_KEY_LIMIT cannot be negative, got {self.longterm_key_limit}"
            )
        if self.request_timeout_seconds <= 0:
            errors.append("LLMREQ_REQUEST_TIMEOUT_SECONDS must be positive")
        if self.provisioning_cache_ttl_seconds < 0:
            errors.append("LLMREQ_PROVISIONING_CACHE_TTL_SECONDS cannot be negative")

        for env_name, lifetime in (
            ("LLMREQ_LONGTERM_KEY_LIFETIME", self.longterm_key_lifetime),
            ("LLMREQ_STANDARD_KEY_LIFETIME", self.standard_key_lifetime),
        ):
            if lifetime is not None and not _DURATION_PATTERN.match(lifetime):
                errors.append(
                    f"{env_name} must look like '30d', '9600h' or '1mo', got: {lifetime!r}"
                )

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
