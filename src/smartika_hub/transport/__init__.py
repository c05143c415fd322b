"""Hub connection layer - socket, state machine and command client."""

from smartika_hub.transport.connection_manager import ConnectionManager
from smartika_hub.transport.exceptions import (
    CommandBusyError,
    CommandTimeoutError,
    HandshakeError,
    HubConnectionError,
    NotConnectedError,
    TransportError,
)
from smartika_hub.transport.hub_client import SmartikaHub
from smartika_hub.transport.retry_policy import ReconnectPolicy, TimeoutConfig
from smartika_hub.transport.types import ConnectionState, HubEvent

__all__ = [
    "CommandBusyError",
    "CommandTimeoutError",
    "ConnectionManager",
    "ConnectionState",
    "HandshakeError",
    "HubConnectionError",
    "HubEvent",
    "NotConnectedError",
    "ReconnectPolicy",
    "SmartikaHub",
    "TimeoutConfig",
    "TransportError",
]
