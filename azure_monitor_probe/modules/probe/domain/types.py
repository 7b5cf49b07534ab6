from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Union


class Aggregation(str, Enum):
    TOTAL = "total"
    AVERAGE = "average"
    COUNT = "count"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"


@dataclass(frozen=True)
class ResourceInventory:
    """
    Discovered resources: region -> subscription id -> resource ids, plus the
    extra labels collected from `label_*` columns keyed by resource id.

    Read-only once built; a refresh replaces the whole object.
    """

    resources: Mapping[str, Mapping[str, tuple[str, ...]]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    additional_labels: Mapping[str, Mapping[str, str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def buckets(self) -> Iterator[tuple[str, str, tuple[str, ...]]]:
        """Yield (region, subscription id, resource ids) triples."""
        for region, subscriptions in self.resources.items():
            for subscription_id, resource_ids in subscriptions.items():
                yield region, subscription_id, resource_ids

    def labels_for(self, resource_id: str) -> Mapping[str, str]:
        return self.additional_labels.get(resource_id, MappingProxyType({}))

    @property
    def resource_count(self) -> int:
        return sum(len(ids) for _, _, ids in self.buckets())

    def is_empty(self) -> bool:
        return self.resource_count == 0


class ResourceInventoryBuilder:
    """Accumulates Resource Graph rows across pages, dropping duplicate ids per bucket."""

    def __init__(self) -> None:
        self._resources: dict[str, dict[str, list[str]]] = {}
        self._seen: dict[tuple[str, str], set[str]] = {}
        self._labels: dict[str, dict[str, str]] = {}

    def add(self, region: str, subscription_id: str, resource_id: str) -> bool:
        """Add a resource; returns False when it was already present in its bucket."""
        seen = self._seen.setdefault((region, subscription_id), set())
        if resource_id in seen:
            return False
        seen.add(resource_id)
        self._resources.setdefault(region, {}).setdefault(subscription_id, []).append(
            resource_id
        )
        return True

    def add_labels(self, resource_id: str, labels: Mapping[str, str]) -> None:
        if labels:
            self._labels.setdefault(resource_id, {}).update(labels)

    def build(self) -> ResourceInventory:
        return ResourceInventory(
            resources=MappingProxyType(
                {
                    region: MappingProxyType(
                        {sub: tuple(ids) for sub, ids in subscriptions.items()}
                    )
                    for region, subscriptions in self._resources.items()
                }
            ),
            additional_labels=MappingProxyType(
                {rid: MappingProxyType(dict(lbl)) for rid, lbl in self._labels.items()}
            ),
        )


@dataclass(frozen=True)
class MetricSample:
    """One synthesized gauge value. Produced per scrape, never stored."""

    namespace: str
    name: str
    aggregation: Aggregation
    unit: str
    help: str
    labels: Mapping[str, str]
    value: float

    @property
    def fqname(self) -> str:
        return f"{self.namespace}_{self.name}_{self.aggregation.value}_{self.unit}"


# Outcome of one metric entity of a batch response. A skipped entity is a
# per-resource Azure error and never fails the probe; request level failures
# are raised as exceptions instead.
@dataclass(frozen=True)
class CollectedEntity:
    resource_id: str
    samples: tuple[MetricSample, ...]


@dataclass(frozen=True)
class SkippedEntity:
    resource_id: str
    metric_name: str
    error_code: str
    error_message: str


EntityOutcome = Union[CollectedEntity, SkippedEntity]
