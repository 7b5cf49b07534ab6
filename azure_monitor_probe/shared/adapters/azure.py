import logging
from typing import Any, Optional

import httpx
import structlog
import tenacity
from azure.core.credentials_async import AsyncTokenCredential
from azure.core.exceptions import AzureError

from azure_monitor_probe.shared.core.exceptions import (
    DeadlineExceededError,
    ExternalAPIError,
)
from azure_monitor_probe.shared.core.timeout import Deadline

logger = structlog.get_logger()

ARM_SCOPE = "https://management.azure.com/.default"
METRICS_SCOPE = "https://metrics.monitor.azure.com/.default"

# Retry decorator for transient failures outside the probe deadline (startup only).
azure_retry = tenacity.retry(
    retry=tenacity.retry_if_exception_type(ExternalAPIError),
    wait=tenacity.wait_exponential(multiplier=1, min=2, max=10),
    stop=tenacity.stop_after_attempt(3),
    before_sleep=tenacity.before_sleep_log(logging.getLogger(__name__), logging.WARNING),
    reraise=True,
)


def azure_error_message(response: httpx.Response) -> str:
    """Extract `error.code: error.message` from an Azure error body, if any."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        code = error.get("code", "")
        message = error.get("message", "")
        return f"{code}: {message}".strip(": ")
    return response.text[:500]


class AzureRestClient:
    """
    Minimal authenticated Azure REST client on top of the shared httpx pool.

    Every call is bounded by a probe Deadline; expiry, transport failures and
    non-2xx answers are raised as `error_cls` (or DeadlineExceededError).
    """

    error_cls: type[ExternalAPIError] = ExternalAPIError

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credential: AsyncTokenCredential,
        scope: str = ARM_SCOPE,
    ) -> None:
        self.http_client = http_client
        self.credential = credential
        self.scope = scope

    async def _authorization_headers(self, deadline: Deadline) -> dict[str, str]:
        try:
            token = await deadline.run(
                self.credential.get_token(self.scope), operation="acquire_token"
            )
        except AzureError as exc:
            logger.warning("azure_token_acquisition_failed", scope=self.scope, error=str(exc))
            raise self.error_cls(
                f"acquire_token: credential failed: {exc.message}",
                details={"scope": self.scope},
            ) from exc
        return {"Authorization": f"Bearer {token.token}"}

    async def _request(
        self,
        method: str,
        url: str,
        *,
        deadline: Deadline,
        operation: str,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        headers = await self._authorization_headers(deadline)
        try:
            response = await deadline.run(
                self.http_client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                    timeout=max(deadline.remaining(), 0.001),
                ),
                operation=operation,
            )
        except httpx.TimeoutException as exc:
            raise DeadlineExceededError(
                f"{operation}: request timed out: {exc}", details={"url": url}
            ) from exc
        except httpx.HTTPError as exc:
            raise self.error_cls(
                f"{operation}: HTTP error: {exc}", details={"url": url}
            ) from exc

        if response.status_code >= 400:
            message = azure_error_message(response)
            logger.warning(
                "azure_api_request_failed",
                operation=operation,
                status_code=response.status_code,
                error=message,
            )
            raise self.error_cls(
                f"{operation}: Azure API returned {response.status_code}: {message}",
                details={"status_code": response.status_code, "url": url},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise self.error_cls(
                f"{operation}: response body is not valid JSON", details={"url": url}
            ) from exc


class SubscriptionsClient(AzureRestClient):
    """Lists subscriptions visible to the credential (used at startup)."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credential: AsyncTokenCredential,
        resource_manager_url: str,
        api_version: str,
    ) -> None:
        super().__init__(http_client, credential, scope=ARM_SCOPE)
        self.resource_manager_url = resource_manager_url.rstrip("/")
        self.api_version = api_version

    @azure_retry
    async def list_subscription_ids(self, timeout_seconds: float = 10.0) -> list[str]:
        deadline = Deadline.after(timeout_seconds)
        url: Optional[str] = f"{self.resource_manager_url}/subscriptions"
        params: Optional[dict[str, Any]] = {"api-version": self.api_version}
        subscription_ids: list[str] = []

        while url:
            page = await self._request(
                "GET",
                url,
                deadline=deadline,
                operation="list_subscriptions",
                params=params,
            )
            for item in page.get("value", []):
                subscription_id = item.get("subscriptionId")
                if isinstance(subscription_id, str) and subscription_id:
                    subscription_ids.append(subscription_id)
            # nextLink already carries api-version and continuation
            url = page.get("nextLink") or None
            params = None

        return subscription_ids
