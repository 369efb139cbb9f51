from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Protocol

from tabletop.change_feed import ChangeFeed
from tabletop.core.events import SessionEvent
from tabletop.settings import FeedSettings

logger = logging.getLogger(__name__)

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class DisconnectAware(Protocol):
    async def is_disconnected(self) -> bool: ...


async def live_session_stream(
    *,
    request: DisconnectAware,
    feed: ChangeFeed,
    settings: FeedSettings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> AsyncGenerator[str, None]:
    """Server-sent event frames for one client connection.

    Polls `feed` every `poll_interval_s` and pings every `ping_interval_s`.
    A watermark advances only after its frame has been handed to the
    transport (the generator is resumed). The loop ends when the client goes
    away; cancellation by the server closes it the same way.
    """

    last_ping = monotonic()
    logger.info("live channel opened for session %s", feed.session_id)
    try:
        while True:
            await sleep(settings.poll_interval_s)
            if await request.is_disconnected():
                break

            # Ping first; the poll below may block on the store.
            now = monotonic()
            if now - last_ping >= settings.ping_interval_s:
                last_ping = now
                yield SessionEvent.ping().to_sse()

            for delta in await feed.tick():
                yield delta.event.to_sse()
                feed.acknowledge(delta)
    finally:
        logger.info("live channel closed for session %s", feed.session_id)
