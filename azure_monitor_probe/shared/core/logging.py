import re
import sys
import structlog
import logging
from typing import Any, cast
from azure_monitor_probe.shared.core.config import get_settings

_SENSITIVE_FIELDS = {
    "password",
    "token",
    "secret",
    "authorization",
    "auth",
    "api_key",
    "apikey",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
}
_SENSITIVE_SUFFIXES = ("_token", "_secret", "_password", "_key")
_BEARER_RE = re.compile(r"(?i)bearer\s+[a-z0-9\-._~+/]+=*")


def _is_sensitive_key(key: Any) -> bool:
    key_norm = str(key).lower().strip().replace("-", "_")
    if key_norm in _SENSITIVE_FIELDS:
        return True
    return key_norm.endswith(_SENSITIVE_SUFFIXES)


def secret_redactor(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Recursively redact credential-bearing fields and bearer tokens from logs.
    Azure error payloads and httpx exceptions can echo request headers.
    """

    def redact_recursive(data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: ("[REDACTED]" if _is_sensitive_key(k) else redact_recursive(v))
                for k, v in data.items()
            }
        elif isinstance(data, list):
            return [redact_recursive(item) for item in data]
        elif isinstance(data, str):
            return _BEARER_RE.sub("Bearer [REDACTED]", data)
        return data

    redacted = redact_recursive(event_dict)
    if isinstance(redacted, dict):
        return cast(dict[str, Any], redacted)
    return {}


def add_otel_trace_id(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Integrate OTel Trace IDs into structured logs."""
    from azure_monitor_probe.shared.core.tracing import get_current_trace_id

    trace_id = get_current_trace_id()
    if trace_id:
        event_dict["trace_id"] = trace_id
    return event_dict


def setup_logging(level: str | None = None) -> None:
    settings = get_settings()
    min_level = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(min_level, int):
        min_level = logging.INFO

    # 1. Configure the common processors
    base_processors = [
        structlog.contextvars.merge_contextvars,  # Support async context
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_otel_trace_id,
        secret_redactor,  # Redact before rendering
    ]

    # 2. Choose the renderer based on environment
    if settings.DEBUG:
        renderer: Any = structlog.dev.ConsoleRenderer()
        processors = base_processors + [renderer]
    else:
        renderer = structlog.processors.JSONRenderer()
        processors = base_processors + [structlog.processors.dict_tracebacks, renderer]

    # 3. Configure structlog
    structlog.configure(
        processors=cast(Any, processors),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # 4. Route standard logging (uvicorn, httpx) to stderr as well.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=min_level,
    )
