"""Metrics module."""

from .registry import (
    record_command,
    record_command_latency,
    record_connection_state,
    record_decode_error,
    record_handshake,
    record_keepalive,
    record_poll,
    record_reconnection,
    start_metrics_server,
)

__all__ = [
    "record_command",
    "record_command_latency",
    "record_connection_state",
    "record_decode_error",
    "record_handshake",
    "record_keepalive",
    "record_poll",
    "record_reconnection",
    "start_metrics_server",
]
