"""
Global pytest fixtures for the probe test suite.

Provides:
- A fake Azure credential (no identity calls)
- The shared httpx client with the telemetry transport, mocked via respx
- A ProbeRuntime wired to them
- An ASGI test client for the FastAPI app
"""
import os
import time
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from azure.core.credentials import AccessToken

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["AZURE_SUBSCRIPTION_IDS"] = '["sub-fallback"]'
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""


class FakeCredential:
    """Stands in for azure.identity.aio.DefaultAzureCredential."""

    def __init__(self) -> None:
        self.scopes: list[str] = []
        self.closed = False
        self.error: Optional[Exception] = None

    async def get_token(self, *scopes: str, **kwargs) -> AccessToken:
        self.scopes.extend(scopes)
        if self.error is not None:
            raise self.error
        return AccessToken("fake-token", int(time.time()) + 3600)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def credential() -> FakeCredential:
    return FakeCredential()


@pytest.fixture
def settings():
    from azure_monitor_probe.shared.core.config import get_settings

    return get_settings()


@pytest_asyncio.fixture
async def http_client() -> AsyncGenerator:
    from azure_monitor_probe.shared.core.http import build_http_client

    client = build_http_client()
    yield client
    await client.aclose()


@pytest.fixture
def runtime(settings, http_client, credential):
    from azure_monitor_probe.modules.probe.domain.runtime import ProbeRuntime

    return ProbeRuntime.build(
        settings, http_client, credential, fallback_subscriptions=["sub-fallback"]
    )


@pytest.fixture
def app():
    from azure_monitor_probe.main import app as probe_app

    return probe_app


@pytest_asyncio.fixture
async def async_client(app, runtime) -> AsyncGenerator:
    """Async test client for FastAPI. The lifespan does not run; the runtime is injected."""
    from httpx import ASGITransport, AsyncClient

    app.state.probe_runtime = runtime
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        del app.state.probe_runtime
