from __future__ import annotations

from collections.abc import Generator

import redis
from fastapi import Header, HTTPException, status

from tabletop.infra.redis_client import create_redis
from tabletop.settings import FeedSettings, settings_from_env


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, as asserted by the authenticating proxy in front of us."""

    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id


def get_feed_settings() -> FeedSettings:
    return settings_from_env()
