"""
Regional metrics client cache.

The metrics batch API is served per region, so one RegionMetricsClient is
built lazily for each region a probe touches and kept for the lifetime of the
process.
"""

import httpx
import structlog
from azure.core.credentials_async import AsyncTokenCredential

from azure_monitor_probe.shared.adapters.metrics_batch import (
    RegionMetricsClient,
    build_metrics_endpoint,
)
from azure_monitor_probe.shared.core.cache import NO_EXPIRY, ExpiringCache
from azure_monitor_probe.shared.core.ops_metrics import METRICS_CLIENTS_CACHED

logger = structlog.get_logger()


class MetricsClientCache:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credential: AsyncTokenCredential,
        endpoint_template: str,
        api_version: str,
    ) -> None:
        self.http_client = http_client
        self.credential = credential
        self.endpoint_template = endpoint_template
        self.api_version = api_version
        self._clients: ExpiringCache[RegionMetricsClient] = ExpiringCache(
            name="metrics_clients"
        )

    def get_client(self, region: str) -> RegionMetricsClient:
        """
        Client for `region`, created on first use.

        A region that cannot form a valid endpoint raises ConfigurationError
        and nothing is cached for it.
        """

        def _create() -> RegionMetricsClient:
            endpoint = build_metrics_endpoint(self.endpoint_template, region)
            logger.info("metrics_client_created", region=region, endpoint=endpoint)
            return RegionMetricsClient(
                region=region,
                endpoint=endpoint,
                http_client=self.http_client,
                credential=self.credential,
                api_version=self.api_version,
            )

        client = self._clients.get_or_create(region, _create, NO_EXPIRY)
        METRICS_CLIENTS_CACHED.set(len(self._clients))
        return client

    def __len__(self) -> int:
        return len(self._clients)
