"""
Metric batch fetching.

Walks the inventory bucket by bucket (region, subscription), queries the
regional metrics batch API with at most MAX_RESOURCES_PER_QUERY ids per call
and turns each returned metric entity into samples of its latest data point.
"""

from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Optional

import structlog

from azure_monitor_probe.modules.probe.domain.clients import MetricsClientCache
from azure_monitor_probe.modules.probe.domain.config import ProbeConfig
from azure_monitor_probe.modules.probe.domain.synthesizer import (
    build_labels,
    build_samples,
    metric_help,
)
from azure_monitor_probe.modules.probe.domain.types import (
    Aggregation,
    CollectedEntity,
    EntityOutcome,
    MetricSample,
    ResourceInventory,
    SkippedEntity,
)
from azure_monitor_probe.shared.adapters.metrics_batch import (
    MAX_RESOURCES_PER_QUERY,
    MetricEntity,
    MetricValue,
    ResourceMetrics,
)
from azure_monitor_probe.shared.core.ops_metrics import (
    METRIC_ENTITIES_SKIPPED_TOTAL,
    METRICS_BATCH_REQUESTS_TOTAL,
)
from azure_monitor_probe.shared.core.timeout import Deadline

logger = structlog.get_logger()

SUCCESS_CODE = "Success"


def chunked(items: Sequence[str], size: int = MAX_RESOURCES_PER_QUERY) -> list[Sequence[str]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[i : i + size] for i in range(0, len(items), size)]


def latest_point(entity: MetricEntity) -> Optional[MetricValue]:
    """
    Data point with the latest timestamp across all time series of the entity.

    Only a strictly later timestamp replaces the current pick, so on ties the
    first point seen wins.
    """
    latest: Optional[MetricValue] = None
    for series in entity.timeseries:
        for point in series.data:
            if latest is None or point.time_stamp > latest.time_stamp:
                latest = point
    return latest


def point_values(point: MetricValue) -> dict[Aggregation, Optional[float]]:
    return {aggregation: getattr(point, aggregation.value) for aggregation in Aggregation}


def metadata_labels(entity: MetricEntity) -> dict[str, str]:
    """Dimension values of the first time series, even when it carries no data."""
    if not entity.timeseries:
        return {}
    return {
        meta.name.value: meta.value or ""
        for meta in entity.timeseries[0].metadata_values
    }


def evaluate_entity(
    entity: MetricEntity,
    resource: ResourceMetrics,
    *,
    subscription_id: str,
    region: str,
    config: ProbeConfig,
    extra_labels: Mapping[str, str],
) -> EntityOutcome:
    if entity.error_code and entity.error_code != SUCCESS_CODE:
        return SkippedEntity(
            resource_id=resource.resource_id,
            metric_name=entity.name.value,
            error_code=entity.error_code,
            error_message=entity.error_message or "",
        )

    point = latest_point(entity)
    if point is None:
        return CollectedEntity(resource_id=resource.resource_id, samples=())

    labels = build_labels(
        subscription_id=subscription_id,
        region=resource.resource_region or region,
        resource_id=resource.resource_id,
        extra_labels=extra_labels,
        metadata_labels=metadata_labels(entity),
    )
    samples = build_samples(
        prefix=config.metric_prefix,
        namespace=resource.namespace or config.effective_metric_namespace,
        name=entity.name.value,
        unit=entity.unit,
        help_text=metric_help(entity.name.localized_value, entity.display_description),
        labels=labels,
        values=point_values(point),
    )
    return CollectedEntity(resource_id=resource.resource_id, samples=samples)


class MetricBatchFetcher:
    def __init__(self, clients: MetricsClientCache) -> None:
        self.clients = clients

    async def fetch(
        self,
        inventory: ResourceInventory,
        config: ProbeConfig,
        deadline: Deadline,
    ) -> AsyncIterator[MetricSample]:
        """
        Yield samples for every resource of the inventory.

        A failed batch request raises and ends the iteration; per-entity Azure
        errors are logged and skipped.
        """
        options = config.query_options
        for region, subscription_id, resource_ids in inventory.buckets():
            client = self.clients.get_client(region)
            for batch in chunked(resource_ids):
                METRICS_BATCH_REQUESTS_TOTAL.labels(region=region).inc()
                response = await client.query_resources(
                    subscription_id=subscription_id,
                    metric_namespace=config.effective_metric_namespace,
                    metric_names=config.metric_names,
                    resource_ids=batch,
                    options=options,
                    deadline=deadline,
                )
                for resource in response.values:
                    extra_labels = inventory.labels_for(resource.resource_id)
                    for entity in resource.metrics:
                        outcome = evaluate_entity(
                            entity,
                            resource,
                            subscription_id=subscription_id,
                            region=region,
                            config=config,
                            extra_labels=extra_labels,
                        )
                        if isinstance(outcome, SkippedEntity):
                            METRIC_ENTITIES_SKIPPED_TOTAL.labels(
                                error_code=outcome.error_code
                            ).inc()
                            logger.warning(
                                "metric_query_entity_failed",
                                resource_id=outcome.resource_id,
                                metric=outcome.metric_name,
                                error=f"{outcome.error_code}: {outcome.error_message}",
                            )
                            continue
                        for sample in outcome.samples:
                            yield sample
