"""End-to-end /probe scenarios against mocked Azure REST APIs."""

import json

import httpx
import pytest
import respx
from azure.core.exceptions import ClientAuthenticationError

from tests.azure_payloads import (
    RESOURCE_GRAPH_URL,
    data_point,
    graph_page,
    graph_row,
    metric_entity,
    metrics_response,
    metrics_url,
    resource_id,
    resource_metrics,
)

STORAGE_PARAMS = {
    "resourceType": "Microsoft.Storage/storageAccounts",
    "metricName": "Transactions",
    "subscriptionID": "sub-1",
}
METRIC = "azure_monitor_microsoft_storage_storageaccounts_transactions"


def _transactions(region: str, rids: list[str], value: float = 1.0, aggregation: str = "average"):
    return metrics_response(
        [
            resource_metrics(
                rid,
                region,
                [
                    metric_entity(
                        "Transactions",
                        [data_point("2024-01-01T00:01:00Z", **{aggregation: value})],
                        unit="Count",
                        localized="Transactions",
                        description="The number of requests",
                    )
                ],
            )
            for rid in rids
        ]
    )


@pytest.mark.asyncio
@respx.mock
async def test_scenario_single_resource(async_client):
    rid = resource_id("sub-1", "account1")
    respx.post(RESOURCE_GRAPH_URL).mock(
        return_value=httpx.Response(200, json=graph_page([graph_row("sub-1", "westeurope", rid)]))
    )
    metrics_route = respx.post(metrics_url("westeurope", "sub-1")).mock(
        return_value=httpx.Response(200, json=_transactions("westeurope", [rid]))
    )

    response = await async_client.get(
        "/probe",
        params={**STORAGE_PARAMS, "aggregation": "average"},
        headers={"X-Prometheus-Scrape-Timeout-Seconds": "5"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert metrics_route.calls.last.request.url.params["aggregation"] == "average"
    body = response.text
    assert f"# HELP {METRIC}_average_count Transactions: The number of requests" in body
    assert (
        f'{METRIC}_average_count{{instance="{rid}",region="westeurope",subscription_id="sub-1"}} 1.0'
    ) in body
    assert "azure_monitor_scrape_collector_success 1.0" in body


@pytest.mark.asyncio
@respx.mock
async def test_scenario_fifty_resources_one_batch(async_client):
    rids = [resource_id("sub-1", f"account{i}") for i in range(50)]
    respx.post(RESOURCE_GRAPH_URL).mock(
        return_value=httpx.Response(
            200, json=graph_page([graph_row("sub-1", "westeurope", rid) for rid in rids])
        )
    )
    metrics_route = respx.post(metrics_url("westeurope", "sub-1")).mock(
        return_value=httpx.Response(200, json=_transactions("westeurope", rids))
    )

    response = await async_client.get("/probe", params=STORAGE_PARAMS)

    assert response.status_code == 200
    assert metrics_route.call_count == 1
    assert json.loads(metrics_route.calls.last.request.content)["resourceids"] == rids
    for rid in rids:
        assert f'instance="{rid}"' in response.text
    assert "azure_monitor_scrape_collector_success 1.0" in response.text


@pytest.mark.asyncio
async def test_scenario_empty_inventory(async_client):
    with respx.mock(assert_all_called=False) as router:
        router.post(RESOURCE_GRAPH_URL).mock(
            return_value=httpx.Response(200, json=graph_page([], count=0))
        )
        metrics_route = router.post(url__regex=r"https://.*\.metrics\.monitor\.azure\.com/.*")

        response = await async_client.get("/probe", params=STORAGE_PARAMS)

    assert response.status_code == 200
    assert metrics_route.call_count == 0
    assert METRIC not in response.text
    assert "azure_monitor_scrape_collector_success 1.0" in response.text


@pytest.mark.asyncio
@respx.mock
async def test_scenario_one_failed_entity(async_client):
    rids = [resource_id("sub-1", f"account{i}") for i in range(3)]
    respx.post(RESOURCE_GRAPH_URL).mock(
        return_value=httpx.Response(
            200, json=graph_page([graph_row("sub-1", "westeurope", rid) for rid in rids])
        )
    )
    payload = _transactions("westeurope", rids, aggregation="total")
    failed = payload["values"][1]["value"][0]
    failed["errorCode"] = "ResourceNotFound"
    failed["errorMessage"] = "The resource was deleted"
    failed["timeseries"] = []
    respx.post(metrics_url("westeurope", "sub-1")).mock(
        return_value=httpx.Response(200, json=payload)
    )

    response = await async_client.get("/probe", params=STORAGE_PARAMS)

    body = response.text
    assert f'instance="{rids[0]}"' in body
    assert f'instance="{rids[1]}"' not in body
    assert f'instance="{rids[2]}"' in body
    assert "azure_monitor_scrape_collector_success 1.0" in body


@pytest.mark.asyncio
@respx.mock
async def test_fallback_subscriptions_and_cache(async_client):
    graph_route = respx.post(RESOURCE_GRAPH_URL).mock(
        return_value=httpx.Response(200, json=graph_page([], count=0))
    )
    params = {
        "resourceType": "Microsoft.Web/sites",
        "metricName": "Requests",
        "queryCacheExpiration": "5m",
    }

    for _ in range(2):
        response = await async_client.get("/probe", params=params)
        assert response.status_code == 200

    assert graph_route.call_count == 1
    assert json.loads(graph_route.calls.last.request.content)["subscriptions"] == ["sub-fallback"]


@pytest.mark.asyncio
@respx.mock
async def test_metrics_api_failure_is_reported_in_body(async_client):
    rid = resource_id("sub-1", "account1")
    respx.post(RESOURCE_GRAPH_URL).mock(
        return_value=httpx.Response(200, json=graph_page([graph_row("sub-1", "westeurope", rid)]))
    )
    respx.post(metrics_url("westeurope", "sub-1")).mock(
        return_value=httpx.Response(
            403, json={"error": {"code": "AuthorizationFailed", "message": "denied"}}
        )
    )

    response = await async_client.get("/probe", params=STORAGE_PARAMS)

    assert response.status_code == 200
    assert 'phase="fetch_metrics"} 1.0' in response.text
    assert "AuthorizationFailed: denied" in response.text
    assert "azure_monitor_scrape_collector_success 0.0" in response.text


@pytest.mark.asyncio
async def test_credential_failure_is_reported_in_body(async_client, credential):
    credential.error = ClientAuthenticationError("DefaultAzureCredential failed to retrieve a token")

    with respx.mock(assert_all_called=False) as router:
        graph_route = router.post(RESOURCE_GRAPH_URL)

        response = await async_client.get("/probe", params=STORAGE_PARAMS)

    assert response.status_code == 200
    assert graph_route.call_count == 0
    assert 'phase="query_resources"} 1.0' in response.text
    assert "credential failed" in response.text
    assert "azure_monitor_scrape_collector_success 0.0" in response.text


@pytest.mark.asyncio
async def test_invalid_config_is_plain_text_400(async_client):
    response = await async_client.get("/probe", params={"metricName": "Transactions"})

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "'resourceType' parameter must be specified once"


@pytest.mark.asyncio
async def test_lifecycle_routes(async_client):
    assert (await async_client.get("/health/live")).json() == {"status": "healthy"}
    root = (await async_client.get("/")).json()
    assert root["app"] == "azure-monitor-probe"

    response = await async_client.get("/health/live", headers={"X-Request-ID": "req-1"})
    assert response.headers["X-Request-ID"] == "req-1"

    generated = await async_client.get("/health/live")
    assert len(generated.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_process_metrics_endpoint(async_client):
    response = await async_client.get("/metrics")

    assert response.status_code == 200
    assert "azurerm_api_http_request_duration_seconds" in response.text
