"""
Probe orchestration.

ProbeCollector is an unchecked prometheus_client collector: `describe()`
declares nothing because metric names are only known after Azure answers.
prometheus_client collects synchronously, so the async pipeline runs first in
`collect_async()` and `collect()` replays the families it gathered.
"""

import time
from collections.abc import Iterator
from typing import Optional

import structlog
from prometheus_client.core import Metric

from azure_monitor_probe.modules.probe.domain.config import ProbeConfig
from azure_monitor_probe.modules.probe.domain.runtime import ProbeRuntime
from azure_monitor_probe.modules.probe.domain.synthesizer import ScrapeSink
from azure_monitor_probe.shared.core.exceptions import ProbeException
from azure_monitor_probe.shared.core.timeout import Deadline
from azure_monitor_probe.shared.core.tracing import get_tracer

logger = structlog.get_logger()
tracer = get_tracer(__name__)

META_NAMESPACE = "azure_monitor"
SCRAPE_DURATION_NAME = f"{META_NAMESPACE}_scrape_collector_duration_seconds"
SCRAPE_DURATION_HELP = "azure_monitor_exporter: Duration of a collector scrape."
SCRAPE_SUCCESS_NAME = f"{META_NAMESPACE}_scrape_collector_success"
SCRAPE_SUCCESS_HELP = "azure_monitor_exporter: Whether a collector succeeded."
SCRAPE_ERROR_NAME = f"{META_NAMESPACE}_scrape_collector_error"
SCRAPE_ERROR_HELP = "azure_monitor_exporter: Error that aborted a collector scrape."

PHASE_QUERY_RESOURCES = "query_resources"
PHASE_FETCH_METRICS = "fetch_metrics"


class ProbeCollector:
    def __init__(
        self,
        config: ProbeConfig,
        runtime: ProbeRuntime,
        timeout_seconds: float,
    ) -> None:
        self.config = config
        self.runtime = runtime
        self.timeout_seconds = timeout_seconds
        self.sink = ScrapeSink()
        self.succeeded: Optional[bool] = None

    def describe(self) -> list[Metric]:
        return []

    def collect(self) -> Iterator[Metric]:
        yield from self.sink.families()

    def _observe_duration(self, phase: str, started_at: float) -> None:
        self.sink.add_gauge(
            SCRAPE_DURATION_NAME,
            SCRAPE_DURATION_HELP,
            time.perf_counter() - started_at,
            {"phase": phase},
        )

    def _fail(self, phase: str, exc: ProbeException) -> bool:
        self.sink.add_gauge(
            SCRAPE_ERROR_NAME,
            SCRAPE_ERROR_HELP,
            1,
            {"phase": phase, "error": exc.message},
        )
        self.sink.add_gauge(SCRAPE_SUCCESS_NAME, SCRAPE_SUCCESS_HELP, 0)
        self.succeeded = False
        return False

    async def collect_async(self) -> bool:
        """Run discovery then metric fetching under one deadline. Returns success."""
        deadline = Deadline.after(self.timeout_seconds)
        log = logger.bind(
            resource_type=self.config.resource_type,
            timeout_seconds=round(self.timeout_seconds, 3),
        )

        started_at = time.perf_counter()
        try:
            with tracer.start_as_current_span("probe.query_resources") as span:
                span.set_attribute("azure.resource_type", self.config.resource_type)
                inventory = await self.runtime.discovery.get_resources(
                    self.config, self.runtime.fallback_subscriptions, deadline
                )
                span.set_attribute("azure.resource_count", inventory.resource_count)
        except ProbeException as exc:
            self._observe_duration(PHASE_QUERY_RESOURCES, started_at)
            log.error("probe_query_resources_failed", error=exc.message, code=exc.code)
            return self._fail(PHASE_QUERY_RESOURCES, exc)
        self._observe_duration(PHASE_QUERY_RESOURCES, started_at)

        started_at = time.perf_counter()
        samples = 0
        try:
            with tracer.start_as_current_span("probe.fetch_metrics") as span:
                async for sample in self.runtime.fetcher.fetch(
                    inventory, self.config, deadline
                ):
                    self.sink.add_sample(sample)
                    samples += 1
                span.set_attribute("probe.samples", samples)
        except ProbeException as exc:
            self._observe_duration(PHASE_FETCH_METRICS, started_at)
            log.error("probe_fetch_metrics_failed", error=exc.message, code=exc.code)
            return self._fail(PHASE_FETCH_METRICS, exc)
        self._observe_duration(PHASE_FETCH_METRICS, started_at)

        self.sink.add_gauge(SCRAPE_SUCCESS_NAME, SCRAPE_SUCCESS_HELP, 1)
        self.succeeded = True
        log.debug(
            "probe_completed",
            resources=inventory.resource_count,
            samples=samples,
        )
        return True
