"""
Resource discovery through Azure Resource Graph.

`discover` pages through the query and assembles a ResourceInventory;
`get_resources` puts the shared expiring cache in front of it.
"""

import asyncio
import hashlib
from collections.abc import Sequence
from typing import Any, Optional

import structlog

from azure_monitor_probe.modules.probe.domain.config import ProbeConfig
from azure_monitor_probe.modules.probe.domain.types import (
    ResourceInventory,
    ResourceInventoryBuilder,
)
from azure_monitor_probe.shared.adapters.resource_graph import ResourceGraphClient
from azure_monitor_probe.shared.core.cache import ExpiringCache
from azure_monitor_probe.shared.core.exceptions import ResourceDiscoveryError
from azure_monitor_probe.shared.core.ops_metrics import INVENTORY_CACHE_LOOKUPS_TOTAL
from azure_monitor_probe.shared.core.timeout import Deadline

logger = structlog.get_logger()

LABEL_PREFIX = "label_"
REQUIRED_FIELDS = ("subscriptionId", "location", "id")


def build_query(config: ProbeConfig) -> str:
    resource_type = config.resource_type.lower().replace("'", "\\'")
    return (
        f"{config.query}\n"
        f"| where type =~ '{resource_type}'\n"
        f"| project-keep id, subscriptionId, location, {LABEL_PREFIX}*"
    )


def effective_subscriptions(
    config: ProbeConfig, fallback_subscriptions: Sequence[str]
) -> list[str]:
    if config.subscriptions:
        return list(config.subscriptions)
    return list(fallback_subscriptions)


def inventory_cache_key(
    config: ProbeConfig, fallback_subscriptions: Sequence[str]
) -> str:
    """sha256 over query text, resource type and the sorted subscription list."""
    subscriptions = sorted(effective_subscriptions(config, fallback_subscriptions))
    raw_key = f"{config.query}-{config.resource_type}-{','.join(subscriptions)}"
    return hashlib.sha256(raw_key.encode()).hexdigest()


def _row_string(row: dict[str, Any], field_name: str) -> str:
    value = row.get(field_name)
    if not isinstance(value, str):
        raise ResourceDiscoveryError(
            f"error querying resource graph: unexpected {field_name} type: {value!r}",
            details={"field": field_name},
        )
    return value


def _add_row(builder: ResourceInventoryBuilder, row: Any) -> None:
    if not isinstance(row, dict):
        raise ResourceDiscoveryError(
            f"error querying resource graph: unexpected row type: {row!r}"
        )

    for field_name in REQUIRED_FIELDS:
        if field_name not in row:
            raise ResourceDiscoveryError(
                f"error querying resource graph: missing field {field_name}. "
                f"Available fields: {sorted(row)}",
                details={"field": field_name},
            )

    subscription_id = _row_string(row, "subscriptionId")
    location = _row_string(row, "location")
    resource_id = _row_string(row, "id")

    labels: dict[str, str] = {}
    for key, value in row.items():
        if not key.startswith(LABEL_PREFIX):
            continue
        if not isinstance(value, str):
            raise ResourceDiscoveryError(
                f"error querying resource graph: unexpected {key} type: {value!r}",
                details={"field": key},
            )
        labels[key[len(LABEL_PREFIX):]] = value

    if builder.add(location, subscription_id, resource_id):
        builder.add_labels(resource_id, labels)


class ResourceDiscovery:
    """
    Finds the resources a probe targets.

    Holds the process-wide inventory cache; safe to share between concurrent
    probes. Concurrent cache misses for one key are coalesced: followers wait
    for the first request and re-read the cache before querying themselves.
    """

    def __init__(
        self,
        client: ResourceGraphClient,
        cache: Optional[ExpiringCache[ResourceInventory]] = None,
    ) -> None:
        self.client = client
        if cache is None:
            cache = ExpiringCache(name="resource_inventory")
        self.cache: ExpiringCache[ResourceInventory] = cache
        self._inflight: dict[str, asyncio.Lock] = {}
        self._inflight_users: dict[str, int] = {}

    async def discover(
        self,
        config: ProbeConfig,
        fallback_subscriptions: Sequence[str],
        deadline: Deadline,
    ) -> ResourceInventory:
        """Run the paginated Resource Graph query. All-or-nothing."""
        query = build_query(config)
        subscriptions = effective_subscriptions(config, fallback_subscriptions)
        builder = ResourceInventoryBuilder()
        skip_token = ""
        pages = 0

        while True:
            page = await self.client.query(
                query, subscriptions, deadline=deadline, skip_token=skip_token
            )
            pages += 1

            if page.truncated:
                logger.warning("resource_graph_result_truncated", query=query)

            if page.count == 0:
                break

            rows = page.data
            if not isinstance(rows, list):
                raise ResourceDiscoveryError(
                    f"error querying resource graph: unexpected type: {type(rows).__name__}"
                )
            if not rows:
                raise ResourceDiscoveryError(
                    "error querying resource graph: no rows returned"
                )

            for row in rows:
                _add_row(builder, row)

            skip_token = page.skip_token or ""
            if not skip_token:
                break

        inventory = builder.build()
        logger.debug(
            "resource_discovery_completed",
            resource_type=config.resource_type,
            pages=pages,
            resources=inventory.resource_count,
        )
        return inventory

    async def get_resources(
        self,
        config: ProbeConfig,
        fallback_subscriptions: Sequence[str],
        deadline: Deadline,
    ) -> ResourceInventory:
        """Cached discovery; a zero cache expiration bypasses the cache."""
        if not config.cache_enabled:
            INVENTORY_CACHE_LOOKUPS_TOTAL.labels(result="disabled").inc()
            return await self.discover(config, fallback_subscriptions, deadline)

        cache_key = inventory_cache_key(config, fallback_subscriptions)
        cached = self.cache.get(cache_key)
        if cached is not None:
            INVENTORY_CACHE_LOOKUPS_TOTAL.labels(result="hit").inc()
            return cached

        lock = self._inflight.get(cache_key)
        if lock is None:
            lock = self._inflight[cache_key] = asyncio.Lock()
        self._inflight_users[cache_key] = self._inflight_users.get(cache_key, 0) + 1
        try:
            await deadline.run(lock.acquire(), operation="inventory_cache_wait")
            try:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    INVENTORY_CACHE_LOOKUPS_TOTAL.labels(result="hit").inc()
                    return cached

                INVENTORY_CACHE_LOOKUPS_TOTAL.labels(result="miss").inc()
                inventory = await self.discover(config, fallback_subscriptions, deadline)
                self.cache.set(cache_key, inventory, config.query_cache_expiration)
                return inventory
            finally:
                lock.release()
        finally:
            users = self._inflight_users[cache_key] - 1
            if users:
                self._inflight_users[cache_key] = users
            else:
                del self._inflight_users[cache_key]
                del self._inflight[cache_key]
