from functools import lru_cache
from threading import Lock
from typing import Optional
import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator

from azure_monitor_probe import __version__

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for the Azure Monitor probe.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "azure-monitor-probe"
    VERSION: str = __version__
    DEBUG: bool = False
    TESTING: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    LOG_LEVEL: str = "INFO"

    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # Fallback subscriptions for probes without subscriptionID.
    # Empty list means "discover every visible subscription at startup".
    AZURE_SUBSCRIPTION_IDS: list[str] = []
    AZURE_RESOURCE_MANAGER_URL: str = "https://management.azure.com"
    AZURE_METRICS_ENDPOINT_TEMPLATE: str = "https://{region}.metrics.monitor.azure.com"
    RESOURCE_GRAPH_API_VERSION: str = "2022-10-01"
    METRICS_API_VERSION: str = "2024-02-01"
    SUBSCRIPTIONS_API_VERSION: str = "2022-12-01"

    # Scrape deadline budgeting (X-Prometheus-Scrape-Timeout-Seconds)
    PROBE_DEFAULT_TIMEOUT_SECONDS: float = 10.0
    PROBE_TIMEOUT_OFFSET_SECONDS: float = 0.5
    PROBE_MIN_TIMEOUT_SECONDS: float = 0.1

    HTTP_MAX_CONNECTIONS: int = 100
    HTTP_TIMEOUT_SECONDS: float = 30.0

    OTEL_EXPORTER_OTLP_ENDPOINT: Optional[str] = None
    OTEL_EXPORTER_OTLP_INSECURE: bool = False

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Centralized validation, grouped by concern."""
        self._validate_azure_endpoints()
        self._validate_probe_timeouts()
        return self

    def _validate_azure_endpoints(self) -> None:
        if "{region}" not in self.AZURE_METRICS_ENDPOINT_TEMPLATE:
            raise ValueError(
                "AZURE_METRICS_ENDPOINT_TEMPLATE must contain a '{region}' placeholder."
            )
        if self.is_production_like and not self.AZURE_RESOURCE_MANAGER_URL.startswith(
            "https://"
        ):
            raise ValueError(
                "AZURE_RESOURCE_MANAGER_URL must use https in staging/production."
            )

    def _validate_probe_timeouts(self) -> None:
        if self.PROBE_DEFAULT_TIMEOUT_SECONDS <= 0:
            raise ValueError("PROBE_DEFAULT_TIMEOUT_SECONDS must be > 0.")
        if self.PROBE_TIMEOUT_OFFSET_SECONDS < 0:
            raise ValueError("PROBE_TIMEOUT_OFFSET_SECONDS must be >= 0.")
        if self.PROBE_MIN_TIMEOUT_SECONDS <= 0:
            raise ValueError("PROBE_MIN_TIMEOUT_SECONDS must be > 0.")

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @property
    def is_production_like(self) -> bool:
        """True for production and staging, where error details are withheld."""
        return self.ENVIRONMENT.lower() in {ENV_PRODUCTION, ENV_STAGING}
