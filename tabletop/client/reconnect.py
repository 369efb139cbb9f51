from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from tabletop.client.cache import QueryCache
from tabletop.client.transport import Transport, TransportError
from tabletop.core.events import SessionEvent
from tabletop.fsm import ConnectionFSM, ConnectionState

logger = logging.getLogger(__name__)

BASE_DELAY_MS = 1_000
MAX_DELAY_MS = 30_000
MAX_RETRIES = 10

# Delta type -> cached resource it makes stale.
INVALIDATES: dict[str, str] = {
    "tokens": "tokens",
    "messages": "messages",
}


def retry_delay_ms(attempt: int, *, base_ms: int = BASE_DELAY_MS, max_ms: int = MAX_DELAY_MS) -> int:
    """Exponential backoff: 1s, 2s, 4s, ... capped at 30s."""

    return min(base_ms * 2**attempt, max_ms)


class ReconnectionController:
    """Keeps one live channel per session and invalidates cached reads on deltas.

    Holds connection bookkeeping only: the retry counter, the current
    transport and the pending retry. After `max_retries` consecutive failed
    retries it enters the terminal `error` state and stops.
    """

    def __init__(
        self,
        *,
        session_id: str,
        transport_factory: Callable[[], Transport],
        cache: QueryCache,
        max_retries: int = MAX_RETRIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state_change: Callable[[ConnectionState], None] | None = None,
    ) -> None:
        self.session_id = session_id
        self._transport_factory = transport_factory
        self._cache = cache
        self._max_retries = max_retries
        self._sleep = sleep
        self._on_state_change = on_state_change

        self._fsm = ConnectionFSM()
        self._retry_count = 0
        self._transport: Transport | None = None
        self._task: asyncio.Task[None] | None = None
        self._torn_down = False

        # Total connection attempts made, including the first.
        self.attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._fsm.connection_state

    def _transition(self, event: str) -> None:
        if self._torn_down:
            return
        getattr(self._fsm, event)()
        logger.debug("session %s connection -> %s", self.session_id, self.state.value)
        if self._on_state_change is not None:
            self._on_state_change(self.state)

    def handle_event(self, event: SessionEvent) -> None:
        resource = INVALIDATES.get(event.type)
        if resource is not None:
            self._cache.invalidate(resource, self.session_id)

    async def _pump(self, transport: Transport) -> None:
        # Returns when the stream ends; raises TransportError(closed=True) on failure.
        while True:
            try:
                async for event in transport.messages():
                    if self._torn_down:
                        return
                    self.handle_event(event)
                return
            except TransportError as e:
                if e.closed:
                    raise
                logger.warning("session %s transport hiccup: %s", self.session_id, e)

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()

    async def _attempt(self) -> None:
        """Open a transport and consume it until it closes."""

        self.attempts += 1
        transport = self._transport_factory()
        self._transport = transport
        try:
            await transport.connect()
            self._transition("transport_opened")
            self._retry_count = 0
            await self._pump(transport)
        except TransportError as e:
            logger.info("session %s channel closed: %s", self.session_id, e)
        finally:
            await self._close_transport()

    async def run(self) -> None:
        """Connect, and keep reconnecting with backoff until torn down or out of retries."""

        while not self._torn_down:
            try:
                await self._attempt()
            except Exception:
                logger.exception("session %s live channel failed unexpectedly", self.session_id)
                self._transition("give_up")
                return

            if self._torn_down:
                return
            self._transition("transport_closed")

            if self._retry_count >= self._max_retries:
                self._transition("give_up")
                logger.error(
                    "session %s: max reconnection attempts reached; reload to reconnect", self.session_id
                )
                return

            delay_ms = retry_delay_ms(self._retry_count)
            self._retry_count += 1
            logger.info("session %s reconnecting in %dms (retry %d)", self.session_id, delay_ms, self._retry_count)
            await self._sleep(delay_ms / 1000)
            self._transition("retry")

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def aclose(self) -> None:
        """Tear down: cancel any pending retry and close the transport. Idempotent."""

        self._torn_down = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_transport()
