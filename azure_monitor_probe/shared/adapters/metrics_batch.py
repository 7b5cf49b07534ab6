"""
Azure Monitor metrics batch (data plane) adapter.

POST https://<region>.metrics.monitor.azure.com/subscriptions/<id>/metrics:getBatch
returns metrics for up to 50 resources of one subscription and region.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

import httpx
import structlog
from azure.core.credentials_async import AsyncTokenCredential
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from azure_monitor_probe.shared.adapters.azure import METRICS_SCOPE, AzureRestClient
from azure_monitor_probe.shared.core.exceptions import (
    ConfigurationError,
    MetricsQueryError,
)
from azure_monitor_probe.shared.core.timeout import Deadline

logger = structlog.get_logger()

# Hard limit of the metrics:getBatch API.
MAX_RESOURCES_PER_QUERY = 50

_REGION_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


def build_metrics_endpoint(template: str, region: str) -> str:
    """Regional metrics endpoint, e.g. https://westeurope.metrics.monitor.azure.com."""
    normalized = region.strip().lower()
    if not _REGION_RE.match(normalized):
        raise ConfigurationError(
            f"invalid region for metrics endpoint: {region!r}",
            details={"region": region},
        )
    endpoint = template.format(region=normalized).rstrip("/")
    url = httpx.URL(endpoint)
    if url.scheme not in {"http", "https"} or not url.host:
        raise ConfigurationError(
            f"malformed metrics endpoint: {endpoint!r}", details={"region": region}
        )
    return endpoint


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LocalizableString(_WireModel):
    value: str
    localized_value: Optional[str] = Field(default=None, alias="localizedValue")


class MetadataValue(_WireModel):
    name: LocalizableString
    value: Optional[str] = None


class MetricValue(_WireModel):
    """One data point; an aggregation is None when Azure did not report it."""

    time_stamp: datetime = Field(alias="timeStamp")
    total: Optional[float] = None
    average: Optional[float] = None
    count: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None


class TimeSeriesElement(_WireModel):
    metadata_values: list[MetadataValue] = Field(default_factory=list, alias="metadatavalues")
    data: list[MetricValue] = Field(default_factory=list)


class MetricEntity(_WireModel):
    id: Optional[str] = None
    name: LocalizableString
    display_description: Optional[str] = Field(default="", alias="displayDescription")
    unit: str = "Unspecified"
    error_code: Optional[str] = Field(default=None, alias="errorCode")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    timeseries: list[TimeSeriesElement] = Field(default_factory=list)


class ResourceMetrics(_WireModel):
    resource_id: str = Field(alias="resourceid")
    resource_region: str = Field(default="", alias="resourceregion")
    namespace: str = ""
    metrics: list[MetricEntity] = Field(default_factory=list, alias="value")
    interval: Optional[str] = None


class MetricsBatchResponse(_WireModel):
    values: list[ResourceMetrics] = Field(default_factory=list)


@dataclass(frozen=True)
class MetricsQueryOptions:
    """Pass-through query options of a probe."""

    aggregation: Optional[str] = None
    interval: Optional[str] = None
    filter: Optional[str] = None
    top: Optional[int] = None

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.aggregation:
            params["aggregation"] = self.aggregation
        if self.interval:
            params["interval"] = self.interval
        if self.filter:
            params["filter"] = self.filter
        if self.top is not None:
            params["top"] = self.top
        return params


class RegionMetricsClient(AzureRestClient):
    """Metrics batch client bound to one region's endpoint. Stateless, safe to share."""

    error_cls = MetricsQueryError

    def __init__(
        self,
        region: str,
        endpoint: str,
        http_client: httpx.AsyncClient,
        credential: AsyncTokenCredential,
        api_version: str,
    ) -> None:
        super().__init__(http_client, credential, scope=METRICS_SCOPE)
        self.region = region
        self.endpoint = endpoint
        self.api_version = api_version

    async def query_resources(
        self,
        subscription_id: str,
        metric_namespace: str,
        metric_names: Sequence[str],
        resource_ids: Sequence[str],
        options: MetricsQueryOptions,
        deadline: Deadline,
    ) -> MetricsBatchResponse:
        if len(resource_ids) > MAX_RESOURCES_PER_QUERY:
            raise ValueError(
                f"metrics batch accepts at most {MAX_RESOURCES_PER_QUERY} resource ids, "
                f"got {len(resource_ids)}"
            )

        params: dict[str, Any] = {
            "api-version": self.api_version,
            "metricnamespace": metric_namespace,
            "metricnames": ",".join(metric_names),
            **options.to_params(),
        }
        payload = await self._request(
            "POST",
            f"{self.endpoint}/subscriptions/{subscription_id}/metrics:getBatch",
            deadline=deadline,
            operation="metrics_batch_query",
            params=params,
            json={"resourceids": list(resource_ids)},
        )

        try:
            response = MetricsBatchResponse.model_validate(payload)
        except ValidationError as exc:
            raise MetricsQueryError(
                "error querying metrics: unexpected response",
                details={"subscription_id": subscription_id, "region": self.region},
            ) from exc

        logger.debug(
            "metrics_batch_received",
            region=self.region,
            subscription_id=subscription_id,
            resources=len(resource_ids),
            values=len(response.values),
        )
        return response
