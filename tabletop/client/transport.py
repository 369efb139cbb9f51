from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Protocol

import httpx

from tabletop.core.events import SessionEvent

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Channel failure.

    `closed=True` means the channel is gone and must be re-established;
    `closed=False` is a hiccup the transport recovers from on its own.
    """

    def __init__(self, message: str, *, closed: bool = True) -> None:
        super().__init__(message)
        self.closed = closed


class Transport(Protocol):
    async def connect(self) -> None: ...

    def messages(self) -> AsyncIterator[SessionEvent]: ...

    async def close(self) -> None: ...


async def iter_sse_data(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield the `data` payload of each server-sent event.

    Multi-line data fields are joined with newlines; comments and other
    fields (`event`, `id`, `retry`) are ignored.
    """

    buf: list[str] = []
    async for line in lines:
        if line == "":
            if buf:
                yield "\n".join(buf)
                buf = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if name == "data":
            buf.append(value[1:] if value.startswith(" ") else value)
    if buf:
        yield "\n".join(buf)


class SSETransport:
    """One streaming GET against the session events endpoint."""

    def __init__(self, *, client: httpx.AsyncClient, url: str, headers: dict[str, str] | None = None) -> None:
        self._client = client
        self._url = url
        self._headers = {"Accept": "text/event-stream", **(headers or {})}
        self._response: httpx.Response | None = None

    async def connect(self) -> None:
        request = self._client.build_request("GET", self._url, headers=self._headers)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"connect failed: {e}") from e

        if response.status_code != 200:
            await response.aclose()
            raise TransportError(f"events endpoint returned HTTP {response.status_code}")
        self._response = response

    async def messages(self) -> AsyncIterator[SessionEvent]:
        if self._response is None:
            raise TransportError("not connected")
        try:
            async for data in iter_sse_data(self._response.aiter_lines()):
                try:
                    yield SessionEvent.from_dict(json.loads(data))
                except (ValueError, TypeError, AttributeError):
                    logger.warning("skipping malformed session event: %r", data)
        except httpx.HTTPError as e:
            raise TransportError(f"stream failed: {e}") from e

    async def close(self) -> None:
        response, self._response = self._response, None
        if response is not None:
            await response.aclose()
