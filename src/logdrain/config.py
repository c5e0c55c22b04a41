from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from logdrain.errors import ConfigError

_TRUE = ("1", "true", "yes", "on")


def _flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "0").strip().lower() in _TRUE


def _number(env: Mapping[str, str], name: str, default: str, cast):
    raw = env.get(name, default).strip() or default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class Settings:
    vercel_verify: str
    vercel_secret: str

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    enable_metrics: bool = False
    metrics_prefix: str = "drain"

    enable_cloudwatch: bool = False
    cloudwatch_log_group: str = "/vercel/log-drain"
    cloudwatch_region: Optional[str] = None

    enable_loki: bool = False
    loki_url: str = ""
    loki_user: str = ""
    loki_password: str = ""

    # Per-sink batching, shared by every backend
    sink_batch_size: int = 100
    sink_flush_interval: float = 1.0
    sink_max_retries: int = 3
    # Upper bound on one sink's delivery of one record; 0 disables
    sink_timeout: float = 30.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env

        verify = env.get("VERCEL_VERIFY", "")
        secret = env.get("VERCEL_SECRET", "")
        if not verify:
            raise ConfigError("VERCEL_VERIFY is required")
        if not secret:
            raise ConfigError("VERCEL_SECRET is required")

        settings = cls(
            vercel_verify=verify,
            vercel_secret=secret,
            log_level=env.get("VERCEL_LOG_DRAIN_LOG_LEVEL", "INFO").upper(),
            host=env.get("VERCEL_LOG_DRAIN_IP", "0.0.0.0"),
            port=_number(env, "VERCEL_LOG_DRAIN_PORT", "8000", int),
            enable_metrics=_flag(env, "VERCEL_LOG_DRAIN_ENABLE_METRICS"),
            metrics_prefix=env.get("VERCEL_LOG_DRAIN_METRICS_PREFIX", "drain"),
            enable_cloudwatch=_flag(env, "VERCEL_LOG_DRAIN_ENABLE_CLOUDWATCH"),
            cloudwatch_log_group=env.get("VERCEL_LOG_DRAIN_CLOUDWATCH_LOG_GROUP", "/vercel/log-drain"),
            cloudwatch_region=env.get("VERCEL_LOG_DRAIN_CLOUDWATCH_REGION") or None,
            enable_loki=_flag(env, "VERCEL_LOG_DRAIN_ENABLE_LOKI"),
            loki_url=env.get("VERCEL_LOG_DRAIN_LOKI_URL", ""),
            loki_user=env.get("VERCEL_LOG_DRAIN_LOKI_USER", ""),
            loki_password=env.get("VERCEL_LOG_DRAIN_LOKI_PASS", ""),
            sink_batch_size=_number(env, "VERCEL_LOG_DRAIN_SINK_BATCH_SIZE", "100", int),
            sink_flush_interval=_number(env, "VERCEL_LOG_DRAIN_SINK_FLUSH_INTERVAL", "1.0", float),
            sink_max_retries=_number(env, "VERCEL_LOG_DRAIN_SINK_MAX_RETRIES", "3", int),
            sink_timeout=_number(env, "VERCEL_LOG_DRAIN_SINK_TIMEOUT", "30", float),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigError(f"unknown log level {self.log_level!r}")
        if not 0 < self.port < 65536:
            raise ConfigError(f"port out of range: {self.port}")
        if self.enable_loki and not self.loki_url:
            raise ConfigError("VERCEL_LOG_DRAIN_LOKI_URL is required when Loki is enabled")
        if bool(self.loki_user) != bool(self.loki_password):
            raise ConfigError("Loki basic auth needs both user and password")
        if self.sink_batch_size < 1:
            raise ConfigError("sink batch size must be at least 1")
        if self.sink_max_retries < 0:
            raise ConfigError("sink max retries cannot be negative")
