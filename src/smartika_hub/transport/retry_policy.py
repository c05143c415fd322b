"""Timer configuration and reconnect policy for the hub connection.

The hub answers well inside a second on a healthy LAN; the defaults below
leave room for a busy Zigbee network behind it.
"""

from __future__ import annotations


class TimeoutConfig:
    """All timer values used by the connection, in seconds."""

    def __init__(
        self,
        connect_timeout: float = 30.0,
        handshake_timeout: float = 5.0,
        command_timeout: float = 10.0,
        ping_interval: float = 30.0,
        idle_timeout: float = 30.0,
        polling_interval: float = 5.0,
    ):
        """Initialize timeout configuration.

        Args:
            connect_timeout: TCP connect deadline
            handshake_timeout: Deadline for the gateway-id response
            command_timeout: Default deadline for a command response
            ping_interval: Keep-alive period while READY
            idle_timeout: Read inactivity after which an opportunistic ping is sent
            polling_interval: Default status polling period
        """
        self.connect_timeout_seconds = connect_timeout
        self.handshake_timeout_seconds = handshake_timeout
        self.command_timeout_seconds = command_timeout
        self.ping_interval_seconds = ping_interval
        self.idle_timeout_seconds = idle_timeout
        self.polling_interval_seconds = polling_interval

    def __repr__(self) -> str:
        return (
            f"TimeoutConfig(connect={self.connect_timeout_seconds}s, "
            f"handshake={self.handshake_timeout_seconds}s, "
            f"command={self.command_timeout_seconds}s, "
            f"ping={self.ping_interval_seconds}s, "
            f"idle={self.idle_timeout_seconds}s, "
            f"polling={self.polling_interval_seconds}s)"
        )


class ReconnectPolicy:
    """Fixed-delay reconnect policy.

    The hub reboots in a few seconds and accepts one client, so retries use
    a constant delay and never give up.
    """

    def __init__(self, delay_seconds: float = 5.0, max_attempts: int | None = None):
        """Initialize reconnect policy.

        Args:
            delay_seconds: Wait before each reconnect attempt (default: 5.0s)
            max_attempts: Stop after this many attempts (default: None = forever)
        """
        self.delay_seconds = delay_seconds
        self.max_attempts = max_attempts

    def get_delay(self, attempt: int) -> float:  # noqa: ARG002
        """Return the delay before reconnect attempt ``attempt`` (0-indexed)."""
        return self.delay_seconds

    def should_retry(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt < self.max_attempts

    def __repr__(self) -> str:
        return f"ReconnectPolicy(delay={self.delay_seconds}s, max_attempts={self.max_attempts})"
