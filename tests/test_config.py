"""Tests for engine configuration."""
import logging

import pytest

from subscriptions.config import LogLevel, SubscriptionOptions


def test_defaults():
    options = SubscriptionOptions()
    assert options.max_retry_attempts == 3
    assert options.retry_delay == 2.0
    assert options.subscription_timeout == 10.0
    assert options.enable_auto_subscribe is True
    assert options.log_level == LogLevel.INFO
    assert options.bot_retry_interval == 1.0
    assert options.bot_max_attempts == 5


def test_log_level_ordering_and_mapping():
    assert LogLevel.DEBUG < LogLevel.INFO < LogLevel.WARN < LogLevel.ERROR
    assert LogLevel.parse("warning") == LogLevel.WARN
    assert LogLevel.parse("Error").logging_level == logging.ERROR
    with pytest.raises(ValueError):
        LogLevel.parse("loud")


def test_string_log_level_is_coerced():
    assert SubscriptionOptions(log_level="debug").log_level == LogLevel.DEBUG


@pytest.mark.parametrize("kwargs", [
    {"max_retry_attempts": 0},
    {"bot_max_attempts": 0},
    {"retry_delay": -1},
    {"subscription_timeout": -0.5},
])
def test_invalid_values_rejected(kwargs):
    with pytest.raises(ValueError):
        SubscriptionOptions(**kwargs)


def test_from_env(monkeypatch):
    monkeypatch.setenv("SUBSCRIBER_MAX_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("SUBSCRIBER_RETRY_DELAY", "0.5")
    monkeypatch.setenv("SUBSCRIBER_TIMEOUT", "3")
    monkeypatch.setenv("SUBSCRIBER_AUTO_SUBSCRIBE", "false")
    monkeypatch.setenv("SUBSCRIBER_LOG_LEVEL", "warn")
    monkeypatch.setenv("SUBSCRIBER_BOT_RETRY_INTERVAL", "0.25")
    monkeypatch.setenv("SUBSCRIBER_BOT_MAX_ATTEMPTS", "8")

    options = SubscriptionOptions.from_env()
    assert options.max_retry_attempts == 5
    assert options.retry_delay == 0.5
    assert options.subscription_timeout == 3.0
    assert options.enable_auto_subscribe is False
    assert options.log_level == LogLevel.WARN
    assert options.bot_retry_interval == 0.25
    assert options.bot_max_attempts == 8


def test_from_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("SUBSCRIBER_MAX_RETRY_ATTEMPTS", "many")
    with pytest.raises(ValueError):
        SubscriptionOptions.from_env()
