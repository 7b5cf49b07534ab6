from datetime import timedelta

import pytest

from azure_monitor_probe.modules.probe.domain.config import (
    DEFAULT_METRIC_PREFIX,
    DEFAULT_QUERY,
    multi_dict,
    parse_duration,
    parse_probe_config,
)
from azure_monitor_probe.shared.core.exceptions import ProbeConfigError

STORAGE = "Microsoft.Storage/storageAccounts"


def _params(**kwargs):
    return {key: value if isinstance(value, list) else [value] for key, value in kwargs.items()}


def test_minimal_config_uses_defaults():
    config = parse_probe_config(_params(resourceType=STORAGE, metricName="Transactions"))

    assert config.resource_type == STORAGE
    assert config.metric_names == ("Transactions",)
    assert config.query == DEFAULT_QUERY
    assert config.subscriptions is None
    assert config.metric_prefix == DEFAULT_METRIC_PREFIX
    assert config.metric_namespace == STORAGE
    assert config.top is None
    assert config.query_cache_expiration == timedelta(0)
    assert config.cache_enabled is False


def test_full_config():
    config = parse_probe_config(
        {
            "subscriptionID[]": ["sub-1", "sub-2"],
            "resourceType": [STORAGE],
            "metricName[]": ["Transactions", "Ingress"],
            "query": ["Resources | where tags.env == 'prod'"],
            "aggregation": ["average", "total"],
            "interval": ["PT5M"],
            "filter": ["ApiName eq '*'"],
            "metricPrefix": ["custom"],
            "metricNamespace": ["Microsoft.Storage/storageAccounts/blobServices"],
            "top": ["10"],
            "queryCacheExpiration": ["1m30s"],
        }
    )

    assert config.subscriptions == ("sub-1", "sub-2")
    assert config.metric_names == ("Transactions", "Ingress")
    assert config.aggregation == "average,total"
    assert config.interval == "PT5M"
    assert config.filter == "ApiName eq '*'"
    assert config.metric_prefix == "custom"
    assert config.effective_metric_namespace == "Microsoft.Storage/storageAccounts/blobServices"
    assert config.top == 10
    assert config.query_cache_expiration == timedelta(seconds=90)
    assert config.query_options.to_params() == {
        "aggregation": "average,total",
        "interval": "PT5M",
        "filter": "ApiName eq '*'",
        "top": 10,
    }


def test_plain_keys_take_precedence_over_bracket_form():
    config = parse_probe_config(
        {
            "resourceType": [STORAGE],
            "metricName": ["A"],
            "metricName[]": ["B"],
            "subscriptionID": ["sub-1"],
            "subscriptionID[]": ["sub-2"],
        }
    )
    assert config.metric_names == ("A",)
    assert config.subscriptions == ("sub-1",)


def test_aggregation_bracket_form():
    config = parse_probe_config(
        {"resourceType": [STORAGE], "metricName": ["A"], "aggregation[]": ["minimum", "maximum"]}
    )
    assert config.aggregation == "minimum,maximum"


@pytest.mark.parametrize(
    "params, message",
    [
        ({"metricName": ["A"]}, "'resourceType' parameter must be specified once"),
        ({"resourceType": [STORAGE, STORAGE], "metricName": ["A"]}, "'resourceType' parameter must be specified once"),
        ({"resourceType": [""], "metricName": ["A"]}, "'resourceType' parameter must be specified once"),
        ({"resourceType": [STORAGE]}, "'metricName' parameter must be specified"),
        ({"resourceType": [STORAGE], "metricName": ["A"], "top": ["ten"]}, "'top' parameter must be a number"),
        ({"resourceType": [STORAGE], "metricName": ["A"], "top": ["2147483648"]}, "'top' parameter must be a number"),
        ({"resourceType": [STORAGE], "metricName": ["A"], "queryCacheExpiration": ["soon"]}, "'queryCacheExpiration' parameter must be a duration"),
        ({"resourceType": [STORAGE], "metricName": ["A"], "queryCacheExpiration": ["-5m"]}, "'queryCacheExpiration' parameter must be a duration"),
        ({"resourceType": [STORAGE], "metricName": ["A"], "interval": ["PT1M", "PT5M"]}, "'interval' parameter must be specified once"),
        ({"resourceType": [STORAGE], "metricName": ["A"], "query": ["a", "b"]}, "'query' parameter must be specified once"),
    ],
)
def test_invalid_parameters(params, message):
    with pytest.raises(ProbeConfigError) as exc_info:
        parse_probe_config(params)

    assert exc_info.value.message == message
    assert exc_info.value.status_code == 400


def test_negative_top_is_accepted():
    config = parse_probe_config(_params(resourceType=STORAGE, metricName="A", top="-1"))
    assert config.top == -1


@pytest.mark.parametrize(
    "value, expected",
    [
        ("0", timedelta(0)),
        ("90s", timedelta(seconds=90)),
        ("1m30s", timedelta(seconds=90)),
        ("1.5h", timedelta(minutes=90)),
        ("250ms", timedelta(milliseconds=250)),
        ("2h45m", timedelta(hours=2, minutes=45)),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "5", "m", "1d", "5m3", "-1s", "1s-"])
def test_parse_duration_rejects(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_multi_dict_groups_repeated_keys():
    assert multi_dict([("a", "1"), ("b", "2"), ("a", "3")]) == {"a": ["1", "3"], "b": ["2"]}
