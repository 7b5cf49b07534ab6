"""
Probe API

Endpoint: GET /probe

Runs one discovery + metrics pass for the resources selected by the query
string and answers in the Prometheus text exposition format. Pipeline
failures are reported inside the 200 response through the
`azure_monitor_scrape_collector_success` gauge; only a malformed query string
is rejected (400, plain text).
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from azure_monitor_probe.modules.probe.domain.collector import ProbeCollector
from azure_monitor_probe.modules.probe.domain.config import (
    multi_dict,
    parse_probe_config,
)
from azure_monitor_probe.modules.probe.domain.runtime import ProbeRuntime
from azure_monitor_probe.shared.core.exceptions import (
    ConfigurationError,
    ProbeConfigError,
)
from azure_monitor_probe.shared.core.ops_metrics import PROBE_REQUESTS_TOTAL
from azure_monitor_probe.shared.core.timeout import (
    SCRAPE_TIMEOUT_HEADER,
    compute_probe_timeout,
)

logger = structlog.get_logger()
router = APIRouter(tags=["Probe"])


def get_probe_runtime(request: Request) -> ProbeRuntime:
    runtime = getattr(request.app.state, "probe_runtime", None)
    if runtime is None:
        raise ConfigurationError("probe runtime is not initialized")
    return runtime


@router.get("/probe")
async def probe(
    request: Request,
    runtime: Annotated[ProbeRuntime, Depends(get_probe_runtime)],
) -> Response:
    try:
        config = parse_probe_config(multi_dict(request.query_params.multi_items()))
    except ProbeConfigError:
        PROBE_REQUESTS_TOTAL.labels(outcome="invalid_config").inc()
        raise

    settings = runtime.settings
    timeout_seconds = compute_probe_timeout(
        request.headers.get(SCRAPE_TIMEOUT_HEADER),
        default_seconds=settings.PROBE_DEFAULT_TIMEOUT_SECONDS,
        offset_seconds=settings.PROBE_TIMEOUT_OFFSET_SECONDS,
        min_seconds=settings.PROBE_MIN_TIMEOUT_SECONDS,
    )

    structlog.contextvars.bind_contextvars(resource_type=config.resource_type)
    logger.debug("probe_started", timeout_seconds=round(timeout_seconds, 3))
    collector = ProbeCollector(config, runtime, timeout_seconds)
    succeeded = await collector.collect_async()
    PROBE_REQUESTS_TOTAL.labels(outcome="success" if succeeded else "failure").inc()

    registry = CollectorRegistry(auto_describe=False)
    registry.register(collector)
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
