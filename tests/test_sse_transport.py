from __future__ import annotations

import httpx
import pytest

from tabletop.client.transport import SSETransport, TransportError, iter_sse_data


async def _lines(*lines: str):  # type: ignore[no-untyped-def]
    for line in lines:
        yield line


@pytest.mark.asyncio
async def test_iter_sse_data_joins_multiline_and_skips_comments() -> None:
    frames = [
        d
        async for d in iter_sse_data(
            _lines(
                ": keepalive",
                "",
                "event: ignored",
                "data: {\"a\":",
                "data: 1}",
                "",
                "data:{\"type\":\"ping\"}",
                "",
                "id: 7",
                "data: {\"type\":\"tokens\"}",
            )
        )
    ]

    # No space after the colon is allowed, and a final frame without its blank line still counts.
    assert frames == ['{"a":\n1}', '{"type":"ping"}', '{"type":"tokens"}']


def _client(handler) -> httpx.AsyncClient:  # type: ignore[no-untyped-def]
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://vtt.test")


@pytest.mark.asyncio
async def test_messages_parses_events_and_skips_malformed() -> None:
    body = (
        'data: {"type":"tokens","tokens":[{"token_id":"t1"}]}\n\n'
        "data: not json\n\n"
        'data: {"type":"weather"}\n\n'
        'data: {"type":"ping"}\n\n'
    )
    seen_headers: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen_headers.update(request.headers)
        return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

    async with _client(handler) as client:
        transport = SSETransport(client=client, url="/sessions/s1/events", headers={"X-User-Id": "u1"})
        await transport.connect()
        events = [e async for e in transport.messages()]
        await transport.close()

    assert [e.type for e in events] == ["tokens", "ping"]
    assert events[0].payload == {"tokens": [{"token_id": "t1"}]}
    assert seen_headers["x-user-id"] == "u1"
    assert seen_headers["accept"] == "text/event-stream"


@pytest.mark.asyncio
async def test_non_200_is_a_closed_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"detail": "Forbidden"})

    async with _client(handler) as client:
        transport = SSETransport(client=client, url="/sessions/s1/events")
        with pytest.raises(TransportError) as exc:
            await transport.connect()

    assert exc.value.closed
    assert "403" in str(exc.value)


@pytest.mark.asyncio
async def test_network_error_is_a_closed_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        transport = SSETransport(client=client, url="/sessions/s1/events")
        with pytest.raises(TransportError) as exc:
            await transport.connect()

    assert exc.value.closed


@pytest.mark.asyncio
async def test_messages_before_connect_fails() -> None:
    async with _client(lambda request: httpx.Response(200)) as client:
        transport = SSETransport(client=client, url="/sessions/s1/events")
        with pytest.raises(TransportError):
            async for _ in transport.messages():
                pass
