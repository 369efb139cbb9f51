from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, cast

EventType = Literal[
    "tokens",
    "messages",
    "ping",
]

EVENT_TYPES: frozenset[str] = frozenset({"tokens", "messages", "ping"})


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """A typed delta pushed down the live session channel.

    Deltas are cache-invalidation hints: `payload` carries the rows that
    changed, but clients re-read state rather than trusting it.
    """

    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def tokens(rows: list[dict[str, Any]]) -> "SessionEvent":
        return SessionEvent(type="tokens", payload={"tokens": rows})

    @staticmethod
    def messages(rows: list[dict[str, Any]]) -> "SessionEvent":
        return SessionEvent(type="messages", payload={"messages": rows})

    @staticmethod
    def ping() -> "SessionEvent":
        return SessionEvent(type="ping")

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload}

    def to_sse(self) -> str:
        """Frame as a single server-sent event."""

        return f"data: {json.dumps(self.as_dict(), separators=(',', ':'))}\n\n"

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SessionEvent":
        kind = data.get("type")
        if kind not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {kind!r}")
        payload = {k: v for k, v in data.items() if k != "type"}
        return SessionEvent(type=cast(EventType, kind), payload=payload)
