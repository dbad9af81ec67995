"""Tests for Settings and ClientConfig."""

import pytest
from pydantic import ValidationError

from eventsource.shared.config import DEFAULT_RETRY_PERIOD_MS, ClientConfig, Settings


def test_client_config_defaults():
    config = ClientConfig()
    assert config.retry_period_ms == DEFAULT_RETRY_PERIOD_MS == 60000
    assert config.read_timeout_s is None
    assert config.headers == {}


def test_client_config_is_frozen():
    config = ClientConfig()
    with pytest.raises(ValidationError):
        config.retry_period_ms = 5


def test_negative_retry_period_is_rejected():
    with pytest.raises(ValidationError):
        ClientConfig(retry_period_ms=-1)


def test_json_round_trip():
    config = ClientConfig(base_url="https://example.com", retry_period_ms=2500, headers={"Authorization": "Bearer t"})
    assert ClientConfig.model_validate_json(config.model_dump_json()) == config


def test_settings_read_prefixed_env(monkeypatch):
    monkeypatch.setenv("EVENTSOURCE_BASE_URL", "http://env.test")
    monkeypatch.setenv("EVENTSOURCE_RETRY_PERIOD_MS", "1234")
    monkeypatch.setenv("EVENTSOURCE_READ_TIMEOUT_S", "30")

    s = Settings()

    assert s.BASE_URL == "http://env.test"
    assert s.RETRY_PERIOD_MS == 1234
    assert s.READ_TIMEOUT_S == 30.0


def test_from_settings_with_overrides():
    s = Settings(BASE_URL="http://a.test", RETRY_PERIOD_MS=100)

    config = ClientConfig.from_settings(s, retry_period_ms=200)

    assert config.base_url == "http://a.test"
    assert config.retry_period_ms == 200
    assert config.connect_timeout_s == s.CONNECT_TIMEOUT_S
