"""Custom exception types for hub connection errors.

This module defines the exception hierarchy for transport-related errors,
extending the protocol exceptions.
"""

from __future__ import annotations

from smartika_hub.protocol.exceptions import HubProtocolError


class HubConnectionError(HubProtocolError):
    """Connection state error (not connected, busy, lost, etc.)

    Note: Named HubConnectionError to avoid shadowing Python's built-in ConnectionError.

    Attributes:
        reason: Specific failure reason
        state: Connection state when error occurred
    """

    def __init__(self, reason: str, state: str = "unknown"):
        self.reason = reason
        self.state = state
        super().__init__(f"Connection error: {reason} (state: {state})")


class NotConnectedError(HubConnectionError):
    """Command issued while the connection is not READY."""

    def __init__(self, state: str = "unknown"):
        super().__init__("not_connected", state)


class CommandBusyError(HubConnectionError):
    """Another command is still awaiting its response.

    Raised before anything is written to the socket.
    """

    def __init__(self, pending_command: int, state: str = "unknown"):
        self.pending_command = pending_command
        super().__init__(f"busy (command 0x{pending_command:04x} pending)", state)


class CommandTimeoutError(HubConnectionError):
    """No complete response arrived within the command timeout.

    Attributes:
        cmd_id: Command that timed out
        timeout_seconds: Timeout value that was exceeded
        correlation_id: Correlation ID for observability
    """

    def __init__(self, cmd_id: int, timeout_seconds: float, correlation_id: str = ""):
        self.cmd_id = cmd_id
        self.timeout_seconds = timeout_seconds
        self.correlation_id = correlation_id
        super().__init__(f"command 0x{cmd_id:04x} timed out after {timeout_seconds}s", "ready")


class HandshakeError(HubConnectionError):
    """Gateway-id handshake failed (timeout or undecodable response)."""

    def __init__(self, reason: str, state: str = "handshaking"):
        super().__init__(f"handshake failed: {reason}", state)


class TransportError(HubConnectionError):
    """Socket-level failure: connect refused, write failed, connection lost."""
