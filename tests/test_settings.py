"""Tests for patient_hub.settings.Settings behavior."""

import pytest

from patient_hub.settings import Settings, get_settings


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch):
    """Defaults should be stable even if external env or .env sets values.

    Variables are deleted and .env loading is bypassed with `_env_file=None`.
    """
    for var in [
        "PATIENT_HUB_HOST",
        "PATIENT_HUB_PORT",
        "PATIENT_HUB_LOG_LEVEL",
        "PATIENT_HUB_BILLING_SERVICE_ADDRESS",
        "PATIENT_HUB_BILLING_SERVICE_PORT",
        "PATIENT_HUB_BILLING_RETRIES",
        "PATIENT_HUB_PROFILES",
    ]:
        monkeypatch.delenv(var, raising=False)
    s = Settings(_env_file=None)
    assert s.host == "0.0.0.0"
    assert s.port == 8080
    assert s.log_level == "INFO"
    assert s.profiles is None
    assert s.patient_topic == "patient"
    assert s.analytics_consumer_group == "analytics-service"
    assert s.billing_service_address == "localhost"
    assert s.billing_service_port == 9001
    assert s.billing_service_tls is False
    assert s.billing_retries == 2
    assert s.await_publish is True


def test_env_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PATIENT_HUB_PORT", "9090")
    monkeypatch.setenv("PATIENT_HUB_BILLING_SERVICE_ADDRESS", "billing-service")
    monkeypatch.setenv("PATIENT_HUB_BILLING_SERVICE_PORT", "9005")
    monkeypatch.setenv("PATIENT_HUB_BILLING_TRANSPORT", "http")
    monkeypatch.setenv("PATIENT_HUB_AWAIT_PUBLISH", "false")
    s = Settings(_env_file=None)
    assert s.port == 9090
    assert s.billing_transport == "http"
    assert s.billing_base_url == "http://billing-service:9005"
    assert s.await_publish is False


def test_case_insensitive_env_name(monkeypatch: pytest.MonkeyPatch):
    # lower-case variable name should still be picked up due to case_sensitive=False
    monkeypatch.setenv("patient_hub_host", "10.10.10.10")
    s = Settings(_env_file=None)
    assert s.host == "10.10.10.10"


def test_log_level_is_normalized():
    assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"


def test_invalid_log_level_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, log_level="verbose")


def test_tls_switches_billing_scheme():
    s = Settings(_env_file=None, billing_service_tls=True, billing_service_address="billing.internal", billing_service_port=443)
    assert s.billing_base_url == "https://billing.internal:443"


def test_negative_retry_budget_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, billing_retries=-1)


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
