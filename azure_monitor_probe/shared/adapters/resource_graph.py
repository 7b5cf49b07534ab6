"""
Azure Resource Graph adapter.

Runs one page of a Resource Graph query per call; pagination via $skipToken is
driven by the discovery layer.
"""

from typing import Any, Optional, Sequence

import httpx
import structlog
from azure.core.credentials_async import AsyncTokenCredential
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from azure_monitor_probe.shared.adapters.azure import ARM_SCOPE, AzureRestClient
from azure_monitor_probe.shared.core.exceptions import ResourceDiscoveryError
from azure_monitor_probe.shared.core.timeout import Deadline

logger = structlog.get_logger()


class ResourceGraphPage(BaseModel):
    """One page of a Resource Graph `resources` response (objectArray format)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    result_truncated: str | bool = Field(alias="resultTruncated")
    count: int
    data: Any
    skip_token: Optional[str] = Field(default=None, alias="$skipToken")
    total_records: Optional[int] = Field(default=None, alias="totalRecords")

    @property
    def truncated(self) -> bool:
        if isinstance(self.result_truncated, bool):
            return self.result_truncated
        return self.result_truncated.strip().lower() == "true"


class ResourceGraphClient(AzureRestClient):
    error_cls = ResourceDiscoveryError

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credential: AsyncTokenCredential,
        resource_manager_url: str,
        api_version: str,
    ) -> None:
        super().__init__(http_client, credential, scope=ARM_SCOPE)
        self.url = (
            f"{resource_manager_url.rstrip('/')}/providers/Microsoft.ResourceGraph/resources"
        )
        self.api_version = api_version

    async def query(
        self,
        query: str,
        subscriptions: Sequence[str],
        deadline: Deadline,
        skip_token: str = "",
    ) -> ResourceGraphPage:
        options: dict[str, Any] = {"resultFormat": "objectArray"}
        if skip_token:
            options["$skipToken"] = skip_token

        body: dict[str, Any] = {"query": query, "options": options}
        if subscriptions:
            body["subscriptions"] = list(subscriptions)

        payload = await self._request(
            "POST",
            self.url,
            deadline=deadline,
            operation="resource_graph_query",
            params={"api-version": self.api_version},
            json=body,
        )

        if not isinstance(payload, dict):
            raise ResourceDiscoveryError(
                "error querying resource graph: unexpected response"
            )
        try:
            page = ResourceGraphPage.model_validate(payload)
        except ValidationError as exc:
            raise ResourceDiscoveryError(
                "error querying resource graph: unexpected response",
                details={"errors": [err["loc"] for err in exc.errors()]},
            ) from exc

        logger.debug(
            "resource_graph_page_received",
            count=page.count,
            total_records=page.total_records,
            has_skip_token=bool(page.skip_token),
        )
        return page
