"""
Async HTTP Client Shared Infrastructure

One pooled httpx.AsyncClient serves every probe so Resource Graph and metrics
calls reuse connections. Its transport is wrapped with the Azure API telemetry
decorator.
"""

import inspect
from typing import Optional
import httpx
import structlog

from azure_monitor_probe.shared.adapters.rate_limit_telemetry import (
    RateLimitTelemetryTransport,
)
from azure_monitor_probe.shared.core.config import get_settings

logger = structlog.get_logger()

# Singleton instance
_client: Optional[httpx.AsyncClient] = None


def build_http_client(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Build an AsyncClient whose transport records Azure API telemetry.

    `transport` replaces the default pooled HTTP/2 transport (tests pass a
    mock transport here).
    """
    settings = get_settings()
    inner = transport or httpx.AsyncHTTPTransport(
        http2=True,
        limits=httpx.Limits(
            max_connections=settings.HTTP_MAX_CONNECTIONS,
            max_keepalive_connections=max(settings.HTTP_MAX_CONNECTIONS // 5, 1),
            keepalive_expiry=30.0,
        ),
    )
    return httpx.AsyncClient(
        transport=RateLimitTelemetryTransport(inner),
        timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS, connect=10.0),
        headers={"User-Agent": f"{settings.APP_NAME}/{settings.VERSION}"},
    )


def get_http_client() -> httpx.AsyncClient:
    """
    Returns the global shared httpx.AsyncClient, creating it lazily.
    """
    global _client

    if _client is None:
        logger.warning(
            "http_client_lazy_initialized",
            msg="Client was not pre-initialized",
        )
        _client = build_http_client()
    return _client


async def init_http_client() -> httpx.AsyncClient:
    """
    Initializes the global httpx.AsyncClient.
    """
    global _client
    if _client is not None:
        logger.warning("http_client_already_initialized")
        return _client

    _client = build_http_client()
    logger.info(
        "http_client_initialized",
        http2=True,
        max_connections=get_settings().HTTP_MAX_CONNECTIONS,
    )
    return _client


async def close_http_client() -> None:
    """
    Gracefully shuts down the global client, flushing all connection pools.
    """
    global _client

    if _client is None:
        return

    close_result = _client.aclose()
    if inspect.isawaitable(close_result):
        await close_result
    _client = None
    logger.info("http_client_closed")
