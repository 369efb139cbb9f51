from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

import redis

from tabletop.core.events import SessionEvent
from tabletop.session_store import messages_created_since, tokens_updated_since

logger = logging.getLogger(__name__)

Stream = Literal["tokens", "messages"]


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class Delta:
    """A delta ready to push, plus the watermark it advances once pushed."""

    event: SessionEvent
    stream: Stream
    polled_at: datetime


@dataclass(slots=True)
class ChangeFeed:
    """Per-connection watermark state over one session's tokens and chat.

    Watermarks start at connection time, so a new connection sees no backlog;
    clients fetch initial state with a normal read. Nothing here is shared
    between connections.
    """

    r: redis.Redis
    session_id: str
    clock: Callable[[], datetime] = _now
    last_token_update: datetime = field(init=False)
    last_chat_update: datetime = field(init=False)

    def __post_init__(self) -> None:
        started = self.clock()
        self.last_token_update = started
        self.last_chat_update = started

    def poll(self) -> list[Delta]:
        """Query for rows newer than the watermarks. Does not advance them.

        The poll time is captured before querying; advancing to it after the
        push can re-emit a row written during the query, never skip one.
        """

        polled_at = self.clock()
        deltas: list[Delta] = []

        tokens = tokens_updated_since(r=self.r, session_id=self.session_id, since=self.last_token_update)
        if tokens:
            rows = [t.model_dump(mode="json") for t in tokens]
            deltas.append(Delta(event=SessionEvent.tokens(rows), stream="tokens", polled_at=polled_at))

        messages = messages_created_since(r=self.r, session_id=self.session_id, since=self.last_chat_update)
        if messages:
            rows = [m.model_dump(mode="json") for m in messages]
            deltas.append(Delta(event=SessionEvent.messages(rows), stream="messages", polled_at=polled_at))

        return deltas

    def acknowledge(self, delta: Delta) -> None:
        """Advance the matching watermark after `delta` was pushed. Never moves backwards."""

        if delta.stream == "tokens":
            self.last_token_update = max(self.last_token_update, delta.polled_at)
        else:
            self.last_chat_update = max(self.last_chat_update, delta.polled_at)

    async def tick(self) -> list[Delta]:
        """One poll off the event loop; store failures are logged and yield nothing."""

        try:
            return await asyncio.to_thread(self.poll)
        except (redis.RedisError, ValueError):
            logger.exception("change feed poll failed for session %s; retrying next tick", self.session_id)
            return []
