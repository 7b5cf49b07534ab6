from typing import Any, Optional

import structlog
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from azure_monitor_probe.shared.core.config import get_settings

logger = structlog.get_logger()


def setup_tracing(app: Any = None) -> bool:
    """
    Sets up OpenTelemetry tracing when an OTLP endpoint is configured.

    Without an endpoint the API-only no-op tracer stays in place, so spans
    created by the probe pipeline cost nothing.
    """
    settings = get_settings()
    if settings.TESTING or not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        logger.info("tracing_disabled", reason="no_otlp_endpoint")
        return False

    resource = Resource(
        attributes={
            "service.name": settings.APP_NAME,
            "service.version": settings.VERSION,
            "env": settings.ENVIRONMENT,
        }
    )

    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)

    otlp_exporter = OTLPSpanExporter(
        endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        insecure=settings.OTEL_EXPORTER_OTLP_INSECURE,
    )
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    logger.info("setup_tracing_otlp", endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT)

    if app:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("fastapi_instrumented")
    return True


def get_tracer(name: str) -> trace.Tracer:
    """Returns a tracer instance for manual instrumentation."""
    return trace.get_tracer(name)


def get_current_trace_id() -> Optional[str]:
    """Hex trace id of the active span, or None outside a recorded span."""
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return None
    return format(span_context.trace_id, "032x")


def set_correlation_id(correlation_id: str) -> None:
    """Sets a correlation ID for the current span."""
    current_span = trace.get_current_span()
    if current_span:
        current_span.set_attribute("correlation_id", correlation_id)
