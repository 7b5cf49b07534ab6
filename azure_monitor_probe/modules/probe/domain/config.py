"""
Probe request parsing.

Turns the /probe query string into an immutable ProbeConfig. Keys may repeat
and list parameters also accept the `name[]` form used by some HTML forms.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from azure_monitor_probe.shared.adapters.metrics_batch import MetricsQueryOptions
from azure_monitor_probe.shared.core.exceptions import ProbeConfigError

DEFAULT_QUERY = "Resources"
DEFAULT_METRIC_PREFIX = "azure_monitor"

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_INTEGER_RE = re.compile(r"^[+-]?\d+$")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART_RE = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


@dataclass(frozen=True)
class ProbeConfig:
    resource_type: str
    metric_names: tuple[str, ...]
    query: str = DEFAULT_QUERY
    subscriptions: Optional[tuple[str, ...]] = None
    aggregation: Optional[str] = None
    interval: Optional[str] = None
    filter: Optional[str] = None
    metric_prefix: str = DEFAULT_METRIC_PREFIX
    metric_namespace: str = ""
    top: Optional[int] = None
    query_cache_expiration: timedelta = timedelta(0)

    @property
    def effective_metric_namespace(self) -> str:
        return self.metric_namespace or self.resource_type

    @property
    def cache_enabled(self) -> bool:
        return self.query_cache_expiration > timedelta(0)

    @property
    def query_options(self) -> MetricsQueryOptions:
        return MetricsQueryOptions(
            aggregation=self.aggregation,
            interval=self.interval,
            filter=self.filter,
            top=self.top,
        )


def parse_duration(value: str) -> timedelta:
    """
    Parse a Go-style duration string ("90s", "1m30s", "1.5h", "250ms", "0").

    Raises ValueError on anything else, including negative durations.
    """
    text = value.strip()
    if text == "0":
        return timedelta(0)
    if not text or text.startswith("-"):
        raise ValueError(f"invalid duration {value!r}")
    if text.startswith("+"):
        text = text[1:]

    total = 0.0
    position = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=total)


def _values(params: Mapping[str, Sequence[str]], key: str) -> list[str]:
    return list(params.get(key, ()))


def _list_param(params: Mapping[str, Sequence[str]], key: str) -> list[str]:
    """Values of `key`, falling back to `key[]`."""
    values = _values(params, key)
    if not values:
        values = _values(params, f"{key}[]")
    return values


def _single(params: Mapping[str, Sequence[str]], key: str) -> Optional[str]:
    values = _values(params, key)
    if len(values) > 1:
        raise ProbeConfigError(f"'{key}' parameter must be specified once")
    return values[0] if values else None


def multi_dict(items: Iterable[tuple[str, str]]) -> dict[str, list[str]]:
    """Group (key, value) pairs of a query string, preserving order."""
    grouped: dict[str, list[str]] = {}
    for key, value in items:
        grouped.setdefault(key, []).append(value)
    return grouped


def parse_probe_config(params: Mapping[str, Sequence[str]]) -> ProbeConfig:
    """Validate probe query parameters. Raises ProbeConfigError (HTTP 400)."""
    subscriptions = [s for s in _list_param(params, "subscriptionID") if s]

    resource_types = _values(params, "resourceType")
    if len(resource_types) != 1 or not resource_types[0]:
        raise ProbeConfigError("'resourceType' parameter must be specified once")
    resource_type = resource_types[0]

    metric_names = [name for name in _list_param(params, "metricName") if name]
    if not metric_names:
        raise ProbeConfigError("'metricName' parameter must be specified")

    query = _single(params, "query") or DEFAULT_QUERY

    aggregations = _values(params, "aggregation") or _values(params, "aggregation[]")
    aggregation = ",".join(aggregations) if aggregations else None

    interval = _single(params, "interval")
    filter_expression = _single(params, "filter")
    metric_prefix = _single(params, "metricPrefix") or DEFAULT_METRIC_PREFIX
    metric_namespace = _single(params, "metricNamespace") or resource_type

    top: Optional[int] = None
    raw_top = _single(params, "top")
    if raw_top is not None:
        raw_top = raw_top.strip()
        if not _INTEGER_RE.match(raw_top) or not (
            _INT32_MIN <= int(raw_top) <= _INT32_MAX
        ):
            raise ProbeConfigError("'top' parameter must be a number")
        top = int(raw_top)

    cache_expiration = timedelta(0)
    raw_expiration = _single(params, "queryCacheExpiration")
    if raw_expiration is not None:
        try:
            cache_expiration = parse_duration(raw_expiration)
        except ValueError as exc:
            raise ProbeConfigError(
                "'queryCacheExpiration' parameter must be a duration"
            ) from exc

    return ProbeConfig(
        resource_type=resource_type,
        metric_names=tuple(metric_names),
        query=query,
        subscriptions=tuple(subscriptions) if subscriptions else None,
        aggregation=aggregation,
        interval=interval or None,
        filter=filter_expression or None,
        metric_prefix=metric_prefix,
        metric_namespace=metric_namespace,
        top=top,
        query_cache_expiration=cache_expiration,
    )
