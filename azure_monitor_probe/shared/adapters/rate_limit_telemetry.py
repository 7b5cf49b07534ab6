"""
HTTP transport decorator recording Azure API latency and quota headers.

Wraps any httpx async transport. Every response is timed into
azurerm_api_http_request_duration_seconds; Azure Resource Manager responses
additionally have their x-ms-ratelimit-remaining-* headers copied into the
azurerm_api_ratelimit gauge.
"""

import re
import time

import httpx
import structlog

from azure_monitor_probe.shared.core.ops_metrics import (
    AZURE_API_RATELIMIT,
    AZURE_API_REQUEST_DURATION,
)

logger = structlog.get_logger()

_SUBSCRIPTION_RE = re.compile(r"^/subscriptions/([^/]+)/?.*$", re.IGNORECASE)

# (header, scope label, type label)
RATE_LIMIT_HEADERS: tuple[tuple[str, str, str], ...] = (
    ("x-ms-ratelimit-remaining-microsoft.consumption-tenant-requests", "consumption", "tenant-requests"),
    ("x-ms-ratelimit-remaining-subscription-reads", "subscription", "reads"),
    ("x-ms-ratelimit-remaining-subscription-writes", "subscription", "writes"),
    ("x-ms-ratelimit-remaining-subscription-resource-requests", "subscription", "resourceRequests"),
    ("x-ms-ratelimit-remaining-subscription-resource-entities-read", "subscription", "resource-entities-read"),
    ("x-ms-ratelimit-remaining-tenant-reads", "tenant", "reads"),
    ("x-ms-ratelimit-remaining-tenant-writes", "tenant", "writes"),
    ("x-ms-ratelimit-remaining-tenant-resource-requests", "tenant", "resource-requests"),
    ("x-ms-ratelimit-remaining-tenant-resource-entities-read", "tenant", "resource-entities-read"),
)
RESOURCE_GRAPH_QUOTA_HEADER = "x-ms-user-quota-remaining"
METRICS_HOST_SUFFIX = "metrics.monitor.azure.com"


def shorten_hostname(host: str) -> str:
    """Keep the last three DNS labels: eastus.management.azure.com -> management.azure.com."""
    hostname = host.lower()
    parts = hostname.split(".")
    if len(parts) > 3:
        hostname = ".".join(parts[-3:])
    return hostname


def subscription_from_path(path: str) -> str:
    match = _SUBSCRIPTION_RE.match(path)
    if match:
        return match.group(1).lower()
    return ""


def record_rate_limit_header(
    headers: httpx.Headers,
    *,
    endpoint: str,
    subscription_id: str,
    header_name: str,
    scope: str,
    type_label: str,
) -> None:
    """Copy one quota header into the rate limit gauge.

    Single integer values are recorded as-is; "QueriesPerHour:496,QueriesPerMin:37"
    style values produce one series per quota name.
    """
    header_value = headers.get(header_name)
    if not header_value:
        return

    try:
        AZURE_API_RATELIMIT.labels(
            endpoint=endpoint,
            subscriptionID=subscription_id,
            scope=scope,
            type=type_label,
        ).set(int(header_value))
        return
    except ValueError:
        pass

    if ":" not in header_value:
        logger.debug("ratelimit_header_unparsed", header=header_name, value=header_value)
        return

    for item in header_value.split(","):
        quota_name, sep, quota_value = item.partition(":")
        if not sep:
            continue
        try:
            value = int(quota_value)
        except ValueError:
            continue
        AZURE_API_RATELIMIT.labels(
            endpoint=endpoint,
            subscriptionID=subscription_id,
            scope=scope,
            type=f"{type_label}.{quota_name.strip()}",
        ).set(value)


class RateLimitTelemetryTransport(httpx.AsyncBaseTransport):
    """Decorates an httpx transport with Azure API telemetry."""

    def __init__(self, transport: httpx.AsyncBaseTransport) -> None:
        self._transport = transport

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        start_time = time.perf_counter()
        response = await self._transport.handle_async_request(request)
        AZURE_API_REQUEST_DURATION.labels(
            method=request.method.lower(), code=str(response.status_code)
        ).observe(time.perf_counter() - start_time)

        host = request.url.host
        if host.lower().endswith(METRICS_HOST_SUFFIX):
            # The metrics data plane does not send ARM quota headers.
            return response

        self.collect_rate_limits(request, response)
        return response

    def collect_rate_limits(self, request: httpx.Request, response: httpx.Response) -> None:
        endpoint = shorten_hostname(request.url.host)
        path = request.url.path
        subscription_id = subscription_from_path(path)

        if path.lower().startswith("/providers/microsoft.resourcegraph/"):
            record_rate_limit_header(
                response.headers,
                endpoint=endpoint,
                subscription_id=subscription_id,
                header_name=RESOURCE_GRAPH_QUOTA_HEADER,
                scope="resourcegraph",
                type_label="quota",
            )

        for header_name, scope, type_label in RATE_LIMIT_HEADERS:
            record_rate_limit_header(
                response.headers,
                endpoint=endpoint,
                subscription_id=subscription_id,
                header_name=header_name,
                scope=scope,
                type_label=type_label,
            )

    async def aclose(self) -> None:
        await self._transport.aclose()
