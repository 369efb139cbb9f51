from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx

from tabletop.client.cache import PendingOverlay, QueryCache
from tabletop.client.reconnect import ReconnectionController
from tabletop.client.transport import SSETransport
from tabletop.fsm import ConnectionState

logger = logging.getLogger(__name__)


class TabletopClient:
    """Thin async client over the HTTP surface.

    Reads go through a shared `QueryCache` so a live controller's
    invalidations force re-fetches. Token moves are applied optimistically
    through a `PendingOverlay` and rolled back if the server refuses them.
    """

    def __init__(self, *, http: httpx.AsyncClient, user_id: str, cache: QueryCache | None = None) -> None:
        self._http = http
        self.user_id = user_id
        self.cache = cache or QueryCache()
        self.token_overlay = PendingOverlay(key_field="token_id")

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-User-Id": self.user_id}

    async def _get_json(self, path: str, **params: Any) -> Any:
        resp = await self._http.get(path, headers=self._headers, params=params or None)
        resp.raise_for_status()
        return resp.json()

    async def tokens(self, session_id: str) -> list[dict[str, Any]]:
        async def fetch() -> list[dict[str, Any]]:
            mark = self.token_overlay.mark()
            rows = (await self._get_json(f"/sessions/{session_id}/tokens"))["tokens"]
            # Only moves confirmed before this read started are reflected in `rows`.
            self.token_overlay.reconcile(fetched_after=mark)
            return rows

        rows = await self.cache.get("tokens", session_id, fetch)
        return self.token_overlay.view(rows)

    async def messages(self, session_id: str) -> list[dict[str, Any]]:
        async def fetch() -> list[dict[str, Any]]:
            return (await self._get_json(f"/sessions/{session_id}/messages"))["messages"]

        return await self.cache.get("messages", session_id, fetch)

    async def fog(self, session_id: str) -> dict[str, Any] | None:
        return await self.cache.get("fog", session_id, lambda: self._get_json(f"/sessions/{session_id}/fog"))

    async def vision(self, session_id: str) -> dict[str, Any]:
        return await self.cache.get("vision", session_id, lambda: self._get_json(f"/sessions/{session_id}/vision"))

    async def move_token(self, session_id: str, token_id: str, *, x: float, y: float) -> dict[str, Any]:
        """Move a token locally first, then persist; undo the local move on failure."""

        self.token_overlay.apply(token_id, {"x": x, "y": y})
        try:
            resp = await self._http.patch(f"/tokens/{token_id}", headers=self._headers, json={"x": x, "y": y})
            resp.raise_for_status()
        except httpx.HTTPError:
            logger.warning("token %s move rejected; rolling back", token_id)
            self.token_overlay.rollback(token_id)
            raise
        self.token_overlay.confirm(token_id)
        self.cache.invalidate("tokens", session_id)
        return resp.json()

    async def send_message(self, session_id: str, content: str) -> dict[str, Any]:
        resp = await self._http.post(
            f"/sessions/{session_id}/messages", headers=self._headers, json={"content": content}
        )
        resp.raise_for_status()
        self.cache.invalidate("messages", session_id)
        return resp.json()

    def live(
        self,
        session_id: str,
        *,
        on_state_change: Callable[[ConnectionState], None] | None = None,
    ) -> ReconnectionController:
        """Build (but do not start) a controller for the session's live channel."""

        def transport_factory() -> SSETransport:
            return SSETransport(client=self._http, url=f"/sessions/{session_id}/events", headers=self._headers)

        return ReconnectionController(
            session_id=session_id,
            transport_factory=transport_factory,
            cache=self.cache,
            on_state_change=on_state_change,
        )
