"""
Metric synthesis.

Azure metric entities become gauge samples named
`<prefix>_<namespace>_<metric>_<aggregation>_<unit>`. The ScrapeSink groups
samples into one prometheus_client metric family per full name so a scrape
renders every family exactly once.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Optional

from prometheus_client.core import Metric

from azure_monitor_probe.modules.probe.domain.types import Aggregation, MetricSample

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9_:]")
_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_metric_part(value: str) -> str:
    return _INVALID_NAME_CHARS.sub("_", value.lower())


def sanitize_label_name(name: str) -> str:
    sanitized = _INVALID_LABEL_CHARS.sub("_", name)
    if not sanitized or sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


def metric_namespace(prefix: str, namespace: str) -> str:
    """`Microsoft.Storage/storageAccounts` -> `<prefix>_microsoft_storage_storageaccounts`."""
    normalized = namespace.lower().replace(".", "_").replace("/", "_")
    full = sanitize_metric_part(f"{prefix}_{normalized}")
    if full[0].isdigit():
        full = f"_{full}"
    return full


def metric_name(name: str) -> str:
    return sanitize_metric_part(name.replace(" ", ""))


def metric_unit(unit: str) -> str:
    return sanitize_metric_part(unit)


def metric_help(localized_name: Optional[str], description: Optional[str]) -> str:
    return f"{localized_name or ''}: {description or ''}"


def build_labels(
    subscription_id: str,
    region: str,
    resource_id: str,
    extra_labels: Mapping[str, str],
    metadata_labels: Mapping[str, str],
) -> dict[str, str]:
    """
    Sample labels. Later sources win on name clashes: base labels, then the
    `label_*` columns of discovery, then the time series metadata.
    """
    labels = {
        "subscription_id": subscription_id,
        "region": region,
        "instance": resource_id,
    }
    for source in (extra_labels, metadata_labels):
        for name, value in source.items():
            labels[sanitize_label_name(name)] = value
    return labels


def build_samples(
    *,
    prefix: str,
    namespace: str,
    name: str,
    unit: str,
    help_text: str,
    labels: Mapping[str, str],
    values: Mapping[Aggregation, Optional[float]],
) -> tuple[MetricSample, ...]:
    """One sample per aggregation with a reported value."""
    namespace_part = metric_namespace(prefix, namespace)
    name_part = metric_name(name)
    unit_part = metric_unit(unit)
    return tuple(
        MetricSample(
            namespace=namespace_part,
            name=name_part,
            aggregation=aggregation,
            unit=unit_part,
            help=help_text,
            labels=dict(labels),
            value=float(value),
        )
        for aggregation in Aggregation
        if (value := values.get(aggregation)) is not None
    )


class ScrapeSink:
    """Collects the families of one scrape, in first-seen order."""

    def __init__(self) -> None:
        self._families: dict[str, Metric] = {}

    def _family(self, name: str, documentation: str) -> Metric:
        family = self._families.get(name)
        if family is None:
            family = self._families[name] = Metric(name, documentation, "gauge")
        return family

    def add_sample(self, sample: MetricSample) -> None:
        self._family(sample.fqname, sample.help).add_sample(
            sample.fqname, dict(sample.labels), sample.value
        )

    def add_samples(self, samples: Iterable[MetricSample]) -> None:
        for sample in samples:
            self.add_sample(sample)

    def add_gauge(
        self,
        name: str,
        documentation: str,
        value: float,
        labels: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._family(name, documentation).add_sample(name, dict(labels or {}), value)

    def families(self) -> list[Metric]:
        return list(self._families.values())

    def __len__(self) -> int:
        return len(self._families)
