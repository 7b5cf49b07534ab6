from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from azure.identity.aio import DefaultAzureCredential
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator

from azure_monitor_probe.modules.probe.domain.runtime import ProbeRuntime
from azure_monitor_probe.shared.adapters.azure import SubscriptionsClient
from azure_monitor_probe.shared.core.app_routes import (
    register_api_routers,
    register_lifecycle_routes,
)
from azure_monitor_probe.shared.core.config import (
    Settings,
    get_settings,
    reload_settings_from_environment,
)
from azure_monitor_probe.shared.core.exceptions import (
    ExternalAPIError,
    ProbeConfigError,
    ProbeException,
)
from azure_monitor_probe.shared.core.logging import setup_logging
from azure_monitor_probe.shared.core.middleware import RequestIDMiddleware
from azure_monitor_probe.shared.core.tracing import setup_tracing

setup_logging()
settings = get_settings()
logger = structlog.get_logger()


async def discover_fallback_subscriptions(
    settings: Settings, subscriptions_client: SubscriptionsClient
) -> list[str]:
    """
    Subscriptions used by probes that do not pass subscriptionID.

    The configured list wins; otherwise every subscription visible to the
    credential is listed once at startup.
    """
    if settings.AZURE_SUBSCRIPTION_IDS:
        logger.info(
            "subscriptions_configured", count=len(settings.AZURE_SUBSCRIPTION_IDS)
        )
        return list(settings.AZURE_SUBSCRIPTION_IDS)

    subscription_ids = await subscriptions_client.list_subscription_ids()
    logger.info("subscriptions_discovered", count=len(subscription_ids))
    return subscription_ids


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()
    logger.info("app_starting", app_name=settings.APP_NAME, version=settings.VERSION)

    from azure_monitor_probe.shared.core.http import close_http_client, init_http_client

    http_client = await init_http_client()
    credential = DefaultAzureCredential()
    try:
        subscriptions_client = SubscriptionsClient(
            http_client,
            credential,
            resource_manager_url=settings.AZURE_RESOURCE_MANAGER_URL,
            api_version=settings.SUBSCRIPTIONS_API_VERSION,
        )
        try:
            fallback_subscriptions = await discover_fallback_subscriptions(
                settings, subscriptions_client
            )
        except ExternalAPIError as exc:
            logger.error("subscriptions_discovery_failed", error=exc.message)
            raise

        app.state.probe_runtime = ProbeRuntime.build(
            settings,
            http_client,
            credential,
            fallback_subscriptions=fallback_subscriptions,
        )

        yield
    finally:
        logger.info("app_shutting_down")
        await credential.close()
        await close_http_client()


# Application instance
probe_app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)
# Uvicorn looks up `app` by default.
app: FastAPI = probe_app

__all__ = ["app", "probe_app", "lifespan"]

# Initialize Tracing
setup_tracing(probe_app)


@probe_app.exception_handler(ProbeConfigError)
async def probe_config_exception_handler(
    request: Request, exc: ProbeConfigError
) -> Response:
    """Reject malformed probe parameters with the message as plain text."""
    from azure_monitor_probe.shared.core.error_governance import (
        handle_probe_config_error,
    )

    return handle_probe_config_error(request, exc)


@probe_app.exception_handler(ProbeException)
async def probe_exception_handler(request: Request, exc: ProbeException) -> JSONResponse:
    """Handle custom application exceptions."""
    from azure_monitor_probe.shared.core.error_governance import handle_exception

    return handle_exception(request, exc)


@probe_app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions with sanitized responses."""
    from azure_monitor_probe.shared.core.error_governance import handle_exception

    return handle_exception(request, exc)


register_lifecycle_routes(
    probe_app,
    app_name=settings.APP_NAME,
    version=settings.VERSION,
)
register_api_routers(probe_app)

# Initialize Prometheus Metrics
Instrumentator().instrument(probe_app).expose(probe_app)

probe_app.add_middleware(RequestIDMiddleware)
