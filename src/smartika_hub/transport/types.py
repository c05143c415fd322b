"""Core types for the hub connection layer."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum


class ConnectionState(Enum):
    """Connection state machine states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    READY = "ready"
    RECONNECTING = "reconnecting"


class HubEvent(Enum):
    """Notifications emitted by the connection.

    CONNECTED and DISCONNECTED carry no payload, ERROR carries the exception
    and DEVICE_STATUS_UPDATE carries a list of Device records.
    """

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    DEVICE_STATUS_UPDATE = "device_status_update"


@dataclass
class PendingCommand:
    """Tracks the single command awaiting its response.

    Attributes:
        cmd_id: Command identifier of the request
        future: Resolved with the decrypted response frame
        correlation_id: Correlation ID for observability
        sent_at: Timestamp when the request was written (time.perf_counter())
        timeout_handle: Timer that fails the command on expiry
    """

    cmd_id: int
    future: asyncio.Future[bytes]
    correlation_id: str
    sent_at: float = 0.0
    timeout_handle: asyncio.TimerHandle | None = field(default=None, repr=False)

    def cancel_timer(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None
