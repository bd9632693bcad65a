"""
Subscription engine configuration
"""
import logging
import os
from dataclasses import dataclass
from enum import IntEnum


class LogLevel(IntEnum):
    """Ordered severities; only messages at or above the configured one are surfaced"""
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3

    @property
    def logging_level(self) -> int:
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARN: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]

    @classmethod
    def parse(cls, value) -> "LogLevel":
        if isinstance(value, LogLevel):
            return value
        name = str(value).strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"unknown log level: {value!r}")


@dataclass
class SubscriptionOptions:
    max_retry_attempts: int = 3
    retry_delay: float = 2.0  # seconds, multiplied by the attempt number
    subscription_timeout: float = 10.0  # seconds per subscribe/unsubscribe call
    enable_auto_subscribe: bool = True
    log_level: LogLevel = LogLevel.INFO
    bot_retry_interval: float = 1.0
    bot_max_attempts: int = 5

    def __post_init__(self):
        self.log_level = LogLevel.parse(self.log_level)
        if self.max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be at least 1")
        if self.bot_max_attempts < 1:
            raise ValueError("bot_max_attempts must be at least 1")
        for name in ("retry_delay", "subscription_timeout", "bot_retry_interval"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    @classmethod
    def from_env(cls) -> "SubscriptionOptions":
        """Build options from SUBSCRIBER_* environment variables"""
        return cls(
            max_retry_attempts=int(os.environ.get("SUBSCRIBER_MAX_RETRY_ATTEMPTS", 3)),
            retry_delay=float(os.environ.get("SUBSCRIBER_RETRY_DELAY", 2.0)),
            subscription_timeout=float(os.environ.get("SUBSCRIBER_TIMEOUT", 10.0)),
            enable_auto_subscribe=_env_flag("SUBSCRIBER_AUTO_SUBSCRIBE", True),
            log_level=LogLevel.parse(os.environ.get("SUBSCRIBER_LOG_LEVEL", "info")),
            bot_retry_interval=float(os.environ.get("SUBSCRIBER_BOT_RETRY_INTERVAL", 1.0)),
            bot_max_attempts=int(os.environ.get("SUBSCRIBER_BOT_MAX_ATTEMPTS", 5)),
        )


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
