from __future__ import annotations

import os
from dataclasses import dataclass


def _env_ms(name: str, default_ms: int) -> float:
    raw = os.environ.get(name)
    ms = int(raw) if raw else default_ms
    return ms / 1000


@dataclass(frozen=True, slots=True)
class FeedSettings:
    # Seconds between change feed polls.
    poll_interval_s: float = 0.5
    # Seconds between keepalive pings on an otherwise idle channel.
    ping_interval_s: float = 30.0


def settings_from_env() -> FeedSettings:
    return FeedSettings(
        poll_interval_s=_env_ms("TABLETOP_POLL_INTERVAL_MS", 500),
        ping_interval_s=_env_ms("TABLETOP_PING_INTERVAL_MS", 30_000),
    )


def redis_url_from_env() -> str:
    return os.environ.get("REDIS_URL", "redis://localhost:6379/0")


def log_level_from_env() -> str:
    return os.environ.get("TABLETOP_LOG_LEVEL", "INFO").upper()
