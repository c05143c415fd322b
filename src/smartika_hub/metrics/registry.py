"""Prometheus metrics registry for the hub connection."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

# Metric definitions
smartika_command_total: Final = Counter(  # type: ignore[assignment]
    "smartika_command_total",
    "Total commands sent to the hub",
    ["hub", "command", "outcome"],
)

smartika_command_latency_seconds: Final = Histogram(  # type: ignore[assignment]
    "smartika_command_latency_seconds",
    "Command round-trip latency in seconds",
    ["hub", "command"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

smartika_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "smartika_decode_errors_total",
    "Total response decode errors",
    ["hub", "reason"],
)

# Connection metrics
smartika_connection_state: Final = Gauge(  # type: ignore[assignment]
    "smartika_connection_state",
    "Current connection state",
    ["hub", "state"],
)

smartika_handshake_total: Final = Counter(  # type: ignore[assignment]
    "smartika_handshake_total",
    "Total handshake attempts",
    ["hub", "outcome"],
)

smartika_reconnection_total: Final = Counter(  # type: ignore[assignment]
    "smartika_reconnection_total",
    "Total reconnection attempts",
    ["hub", "reason"],
)

smartika_keepalive_total: Final = Counter(  # type: ignore[assignment]
    "smartika_keepalive_total",
    "Total keep-alive pings",
    ["hub", "outcome"],
)

smartika_poll_total: Final = Counter(  # type: ignore[assignment]
    "smartika_poll_total",
    "Total status polls",
    ["hub", "outcome"],
)

_CONNECTION_STATES: Final = ("disconnected", "connecting", "handshaking", "ready", "reconnecting")

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_command(hub: str, command: str, outcome: str) -> None:
    """Record a command exchange."""
    smartika_command_total.labels(hub=hub, command=command, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_command_latency(hub: str, command: str, latency_seconds: float) -> None:
    """Record command latency."""
    smartika_command_latency_seconds.labels(hub=hub, command=command).observe(latency_seconds)  # type: ignore[no-untyped-call]


def record_decode_error(hub: str, reason: str) -> None:
    """Record a decode error."""
    smartika_decode_errors_total.labels(hub=hub, reason=reason).inc()  # type: ignore[no-untyped-call]


def record_connection_state(hub: str, state: str) -> None:
    """Record connection state change."""
    # Set gauge to 1 for current state, 0 for all others
    for s in _CONNECTION_STATES:
        value = 1 if s == state else 0
        smartika_connection_state.labels(hub=hub, state=s).set(value)  # type: ignore[no-untyped-call]


def record_handshake(hub: str, outcome: str) -> None:
    """Record a handshake attempt."""
    smartika_handshake_total.labels(hub=hub, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_reconnection(hub: str, reason: str) -> None:
    """Record a reconnection attempt."""
    smartika_reconnection_total.labels(hub=hub, reason=reason).inc()  # type: ignore[no-untyped-call]


def record_keepalive(hub: str, outcome: str) -> None:
    smartika_keepalive_total.labels(hub=hub, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_poll(hub: str, outcome: str) -> None:
    smartika_poll_total.labels(hub=hub, outcome=outcome).inc()  # type: ignore[no-untyped-call]
