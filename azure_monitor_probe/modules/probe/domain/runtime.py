from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import httpx
from azure.core.credentials_async import AsyncTokenCredential

from azure_monitor_probe.modules.probe.domain.clients import MetricsClientCache
from azure_monitor_probe.modules.probe.domain.discovery import ResourceDiscovery
from azure_monitor_probe.modules.probe.domain.fetcher import MetricBatchFetcher
from azure_monitor_probe.shared.adapters.resource_graph import ResourceGraphClient
from azure_monitor_probe.shared.core.config import Settings


@dataclass
class ProbeRuntime:
    """
    Process-wide state shared by every probe request.

    Built once in the application lifespan and stored on `app.state`; holds
    the inventory cache (inside `discovery`) and the regional client cache
    (inside `fetcher`).
    """

    settings: Settings
    discovery: ResourceDiscovery
    fetcher: MetricBatchFetcher
    fallback_subscriptions: tuple[str, ...] = ()

    @classmethod
    def build(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        credential: AsyncTokenCredential,
        fallback_subscriptions: Sequence[str] = (),
    ) -> ProbeRuntime:
        graph_client = ResourceGraphClient(
            http_client,
            credential,
            resource_manager_url=settings.AZURE_RESOURCE_MANAGER_URL,
            api_version=settings.RESOURCE_GRAPH_API_VERSION,
        )
        clients = MetricsClientCache(
            http_client,
            credential,
            endpoint_template=settings.AZURE_METRICS_ENDPOINT_TEMPLATE,
            api_version=settings.METRICS_API_VERSION,
        )
        return cls(
            settings=settings,
            discovery=ResourceDiscovery(graph_client),
            fetcher=MetricBatchFetcher(clients),
            fallback_subscriptions=tuple(fallback_subscriptions),
        )
