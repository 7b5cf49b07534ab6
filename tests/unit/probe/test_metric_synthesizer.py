from prometheus_client import CollectorRegistry, generate_latest

from azure_monitor_probe.modules.probe.domain.synthesizer import (
    ScrapeSink,
    build_labels,
    build_samples,
    metric_help,
    metric_name,
    metric_namespace,
    metric_unit,
    sanitize_label_name,
)
from azure_monitor_probe.modules.probe.domain.types import Aggregation


class _SinkCollector:
    def __init__(self, sink):
        self.sink = sink

    def collect(self):
        return self.sink.families()


def _render(sink: ScrapeSink) -> str:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(_SinkCollector(sink))
    return generate_latest(registry).decode()


def test_metric_identity_parts():
    assert metric_namespace("azure_monitor", "Microsoft.Storage/storageAccounts") == (
        "azure_monitor_microsoft_storage_storageaccounts"
    )
    assert metric_name("Used Capacity") == "usedcapacity"
    assert metric_name("Http5xx-Errors") == "http5xx_errors"
    assert metric_unit("BytesPerSecond") == "bytespersecond"
    assert metric_help("Used capacity", "The amount of storage used") == (
        "Used capacity: The amount of storage used"
    )


def test_label_names_are_sanitized():
    assert sanitize_label_name("tier-name") == "tier_name"
    assert sanitize_label_name("GeoType") == "GeoType"
    assert sanitize_label_name("1st") == "_1st"


def test_build_labels_merge_order():
    labels = build_labels(
        subscription_id="sub-1",
        region="westeurope",
        resource_id="/r/a",
        extra_labels={"env": "prod", "team": "core"},
        metadata_labels={"team": "metadata", "ApiName": "GetBlob"},
    )
    assert labels == {
        "subscription_id": "sub-1",
        "region": "westeurope",
        "instance": "/r/a",
        "env": "prod",
        "team": "metadata",
        "ApiName": "GetBlob",
    }


def test_build_samples_skips_missing_aggregations():
    samples = build_samples(
        prefix="azure_monitor",
        namespace="Microsoft.Storage/storageAccounts",
        name="Transactions",
        unit="Count",
        help_text="Transactions: The number of requests",
        labels={"instance": "/r/a"},
        values={Aggregation.TOTAL: 12.0, Aggregation.AVERAGE: None, Aggregation.MAXIMUM: 0.0},
    )

    assert [s.aggregation for s in samples] == [Aggregation.TOTAL, Aggregation.MAXIMUM]
    assert samples[0].fqname == (
        "azure_monitor_microsoft_storage_storageaccounts_transactions_total_count"
    )
    assert samples[1].value == 0.0


def test_sink_groups_samples_per_family():
    sink = ScrapeSink()
    for rid, value in (("/r/a", 1.0), ("/r/b", 2.0)):
        sink.add_samples(
            build_samples(
                prefix="azure_monitor",
                namespace="Microsoft.Storage/storageAccounts",
                name="Transactions",
                unit="Count",
                help_text="Transactions: requests",
                labels={"instance": rid},
                values={Aggregation.TOTAL: value},
            )
        )
    sink.add_gauge("azure_monitor_scrape_collector_success", "success", 1)

    assert len(sink) == 2
    output = _render(sink)
    name = "azure_monitor_microsoft_storage_storageaccounts_transactions_total_count"
    assert output.count(f"# TYPE {name} gauge") == 1
    assert f'{name}{{instance="/r/a"}} 1.0' in output
    assert f'{name}{{instance="/r/b"}} 2.0' in output
    assert "azure_monitor_scrape_collector_success 1.0" in output
