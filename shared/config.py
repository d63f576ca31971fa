"""
Shared configuration management for the metrics federation service.
"""

from typing import List

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias=AliasChoices("FEDERATION_ENV", "env"))
    log_level: str = Field(default="info", validation_alias=AliasChoices("FEDERATION_LOG_LEVEL", "log_level"))

    # Cloud Foundry platform
    api: str = ""
    app_guid: str = ""
    app_route: str = ""
    cf_user: str = ""
    cf_pass: SecretStr = SecretStr("")
    org_name: str = ""
    space_name: str = ""
    skip_ssl_validation: bool = Field(
        default=False,
        validation_alias=AliasChoices("FEDERATION_SKIP_SSL_VALIDATION", "skip_ssl_validation"),
    )

    # Collection
    metrics_path: str = Field(default="/metrics", validation_alias=AliasChoices("FEDERATION_METRICS_PATH", "metrics_path"))
    collection_interval_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("FEDERATION_COLLECTION_INTERVAL_SECONDS", "collection_interval_seconds"),
    )
    fetch_timeout_seconds: float = Field(
        default=10.0,
        validation_alias=AliasChoices("FEDERATION_FETCH_TIMEOUT_SECONDS", "fetch_timeout_seconds"),
    )
    resolve_timeout_seconds: float = Field(
        default=10.0,
        validation_alias=AliasChoices("FEDERATION_RESOLVE_TIMEOUT_SECONDS", "resolve_timeout_seconds"),
    )
    cycle_timeout_seconds: float = Field(
        default=60.0,
        validation_alias=AliasChoices("FEDERATION_CYCLE_TIMEOUT_SECONDS", "cycle_timeout_seconds"),
    )
    max_concurrent_fetches: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("FEDERATION_MAX_CONCURRENT_FETCHES", "max_concurrent_fetches"),
    )
    resolve_retry_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("FEDERATION_RESOLVE_RETRY_ATTEMPTS", "resolve_retry_attempts"),
    )
    resolve_retry_base_delay: float = Field(
        default=1.0,
        validation_alias=AliasChoices("FEDERATION_RESOLVE_RETRY_BASE_DELAY", "resolve_retry_base_delay"),
    )

    # Observability
    enable_tracing: bool = Field(default=False, validation_alias=AliasChoices("FEDERATION_ENABLE_TRACING", "enable_tracing"))
    otel_exporter: str = Field(
        default="http://localhost:4317",
        validation_alias=AliasChoices("FEDERATION_OTEL_EXPORTER", "otel_exporter"),
    )
    enable_console_tracing: bool = Field(
        default=False,
        validation_alias=AliasChoices("FEDERATION_ENABLE_CONSOLE_TRACING", "enable_console_tracing"),
    )

    def missing_settings(self) -> List[str]:
        """Names of required platform settings that are unset."""
        required = {
            "API": self.api,
            "APP_GUID": self.app_guid,
            "APP_ROUTE": self.app_route,
            "CF_USER": self.cf_user,
            "CF_PASS": self.cf_pass.get_secret_value(),
        }
        return [name for name, value in required.items() if not value]

    @property
    def instance_metrics_url(self) -> str:
        """URL of the application's metrics route, shared by all instances."""
        path = self.metrics_path if self.metrics_path.startswith("/") else f"/{self.metrics_path}"
        return f"https://{self.app_route}{path}"


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = 8080
    host: str = Field(default="0.0.0.0", validation_alias=AliasChoices("FEDERATION_HOST", "host"))


def get_config(service_name: str, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
