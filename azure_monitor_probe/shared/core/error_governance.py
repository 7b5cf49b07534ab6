"""
Error governance for the HTTP surface.

Probe configuration errors are answered as plain text, because a scraper shows
the body verbatim. Everything else becomes a JSON error envelope, recorded in
logs, traces and the API error counter.
"""

from typing import Any, Optional
from uuid import uuid4

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from opentelemetry import trace

from azure_monitor_probe.shared.core.config import get_settings
from azure_monitor_probe.shared.core.exceptions import ProbeConfigError, ProbeException
from azure_monitor_probe.shared.core.ops_metrics import API_ERRORS_TOTAL

logger = structlog.get_logger()
tracer = trace.get_tracer(__name__)

_SAFE_CODES = {"invalid_probe_config"}


def handle_probe_config_error(request: Request, exc: ProbeConfigError) -> Response:
    API_ERRORS_TOTAL.labels(
        path=request.url.path, method=request.method, status_code=exc.status_code
    ).inc()
    logger.info("probe_config_rejected", error=exc.message, path=request.url.path)
    return PlainTextResponse(exc.message, status_code=exc.status_code)


def handle_exception(
    request: Request, exc: Exception, error_id: Optional[str] = None
) -> JSONResponse:
    """Classifies and records exceptions, returning a standardized JSON response."""
    error_id = error_id or str(uuid4())
    is_prod = get_settings().is_production_like

    if isinstance(exc, ProbeException):
        probe_exc = exc
        message = probe_exc.message
        if is_prod and probe_exc.code not in _SAFE_CODES:
            message = "An error occurred while processing your request"
    else:
        # Never echo raw exception text; it may carry request headers.
        probe_exc = ProbeException(
            message="An unexpected internal error occurred",
            code="internal_error",
            status_code=500,
        )
        message = probe_exc.message
        logger.exception(
            "unhandled_raw_exception",
            error=str(exc),
            error_id=error_id,
            path=request.url.path,
        )

    with tracer.start_as_current_span("handle_exception") as span:
        span.set_attribute("error.id", error_id)
        span.set_attribute("http.path", request.url.path)
        span.set_attribute("http.method", request.method)
        span.record_exception(exc)
        span.set_status(trace.Status(trace.StatusCode.ERROR, probe_exc.code))

    API_ERRORS_TOTAL.labels(
        path=request.url.path,
        method=request.method,
        status_code=probe_exc.status_code,
    ).inc()

    logger.error(
        "api_error",
        error_id=error_id,
        code=probe_exc.code,
        message=probe_exc.message,
        status_code=probe_exc.status_code,
        path=request.url.path,
        details=probe_exc.details,
    )

    error_body: dict[str, Any] = {
        "message": message,
        "code": probe_exc.code,
        "error_id": error_id,
    }
    if probe_exc.details and not is_prod:
        error_body["details"] = probe_exc.details

    return JSONResponse(status_code=probe_exc.status_code, content={"error": error_body})
