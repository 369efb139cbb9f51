from __future__ import annotations

import redis

from tabletop.settings import redis_url_from_env

# Live channels hold a client for the life of the stream; ping idle connections before reuse.
HEALTH_CHECK_INTERVAL_S = 30


def create_redis(url: str | None = None) -> redis.Redis:
    return redis.Redis.from_url(
        url or redis_url_from_env(),
        decode_responses=True,
        health_check_interval=HEALTH_CHECK_INTERVAL_S,
    )
