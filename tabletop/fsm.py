from __future__ import annotations

from enum import StrEnum

from statemachine import State, StateMachine


class ConnectionState(StrEnum):
    connecting = "connecting"
    connected = "connected"
    reconnecting = "reconnecting"
    disconnected = "disconnected"
    error = "error"


class ConnectionFSM(StateMachine):
    """Liveness of one client's session channel.

    - connecting -> connected on the first successful open
    - any live state -> disconnected when the transport reports closed
    - disconnected -> reconnecting when a retry fires
    - error is terminal; only a fresh controller leaves it
    """

    connecting = State(ConnectionState.connecting.value, value=ConnectionState.connecting.value, initial=True)
    connected = State(ConnectionState.connected.value, value=ConnectionState.connected.value)
    reconnecting = State(ConnectionState.reconnecting.value, value=ConnectionState.reconnecting.value)
    disconnected = State(ConnectionState.disconnected.value, value=ConnectionState.disconnected.value)
    failed = State(ConnectionState.error.value, value=ConnectionState.error.value, final=True)

    transport_opened = connecting.to(connected) | reconnecting.to(connected)
    transport_closed = connecting.to(disconnected) | connected.to(disconnected) | reconnecting.to(disconnected)
    retry = disconnected.to(reconnecting)
    give_up = (
        disconnected.to(failed) | connecting.to(failed) | reconnecting.to(failed) | connected.to(failed)
    )

    @property
    def connection_state(self) -> ConnectionState:
        return ConnectionState(str(self.current_state.value))
