"""
Operational metrics for the probe process itself.

These live on the default prometheus_client registry and are exposed on
/metrics. Per-probe samples never touch this registry; each /probe request
renders its own throwaway registry.
"""

from prometheus_client import Counter, Gauge, Histogram

# --- Azure REST API telemetry (recorded by the HTTP transport) ---
AZURE_API_REQUEST_DURATION = Histogram(
    "azurerm_api_http_request_duration_seconds",
    "A histogram of request latencies.",
    ["method", "code"],
)

AZURE_API_RATELIMIT = Gauge(
    "azurerm_api_ratelimit",
    "AzureRM API ratelimit",
    ["endpoint", "subscriptionID", "scope", "type"],
)

# --- Probe pipeline ---
PROBE_REQUESTS_TOTAL = Counter(
    "azure_monitor_exporter_probe_requests_total",
    "Total number of /probe requests by outcome",
    ["outcome"],  # success | failure | invalid_config
)

INVENTORY_CACHE_LOOKUPS_TOTAL = Counter(
    "azure_monitor_exporter_inventory_cache_lookups_total",
    "Resource inventory cache lookups",
    ["result"],  # hit | miss | disabled
)

METRICS_BATCH_REQUESTS_TOTAL = Counter(
    "azure_monitor_exporter_metrics_batch_requests_total",
    "Metrics batch API calls issued",
    ["region"],
)

METRIC_ENTITIES_SKIPPED_TOTAL = Counter(
    "azure_monitor_exporter_metric_entities_skipped_total",
    "Metric entities skipped because Azure reported a per-resource error",
    ["error_code"],
)

METRICS_CLIENTS_CACHED = Gauge(
    "azure_monitor_exporter_metrics_clients",
    "Number of regional metrics clients held in the client cache",
)

# --- API surface ---
API_ERRORS_TOTAL = Counter(
    "azure_monitor_exporter_api_errors_total",
    "Total API errors by path and status code",
    ["path", "method", "status_code"],
)
