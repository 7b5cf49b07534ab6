import pytest
from pydantic import ValidationError

from azure_monitor_probe.shared.core.config import Settings, reload_settings_from_environment


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.PROBE_DEFAULT_TIMEOUT_SECONDS == 10.0
    assert settings.PROBE_TIMEOUT_OFFSET_SECONDS == 0.5
    assert settings.METRICS_API_VERSION == "2024-02-01"
    assert settings.AZURE_METRICS_ENDPOINT_TEMPLATE.format(region="westeurope") == (
        "https://westeurope.metrics.monitor.azure.com"
    )


def test_subscription_ids_parsed_from_environment(monkeypatch):
    monkeypatch.setenv("AZURE_SUBSCRIPTION_IDS", '["sub-a", "sub-b"]')
    assert Settings(_env_file=None).AZURE_SUBSCRIPTION_IDS == ["sub-a", "sub-b"]


def test_metrics_template_requires_region_placeholder():
    with pytest.raises(ValidationError, match="region"):
        Settings(_env_file=None, AZURE_METRICS_ENDPOINT_TEMPLATE="https://metrics.example")


def test_negative_timeouts_are_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, PROBE_TIMEOUT_OFFSET_SECONDS=-1)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, PROBE_DEFAULT_TIMEOUT_SECONDS=0)


def test_production_requires_https_resource_manager():
    with pytest.raises(ValidationError):
        Settings(
            _env_file=None,
            ENVIRONMENT="production",
            AZURE_RESOURCE_MANAGER_URL="http://management.local",
        )


@pytest.mark.parametrize(
    ("environment", "expected"),
    [("production", True), ("Staging", True), ("development", False), ("local", False)],
)
def test_is_production_like(environment, expected):
    assert Settings(_env_file=None, ENVIRONMENT=environment).is_production_like is expected


def test_reload_settings_from_environment(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    try:
        assert reload_settings_from_environment().LOG_LEVEL == "DEBUG"
    finally:
        monkeypatch.delenv("LOG_LEVEL")
        reload_settings_from_environment()
