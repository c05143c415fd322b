"""Custom exception types for Smartika protocol errors.

This module defines the exception hierarchy for codec and cipher errors.
Decode helpers raise instead of returning None, so a malformed response
always reaches the caller of the exchange that produced it.
"""

from __future__ import annotations


class HubProtocolError(Exception):
    """Base exception for all Smartika hub errors.

    Protocol, cipher and connection errors all inherit from this base class,
    enabling catch-all error handling when needed while keeping specific
    exception types for detailed handling.
    """


class FormatError(HubProtocolError):
    """Malformed textual input (for example a hub identifier string)."""

    def __init__(self, reason: str, value: str = ""):
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid format: {reason}")


class InvalidInputError(HubProtocolError):
    """Argument of the wrong size or range (key derivation, payload fields)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid input: {reason}")


class PacketDecodeError(HubProtocolError):
    """Packet cannot be decoded.

    Attributes:
        reason: Specific failure reason (e.g., "too_short", "checksum_mismatch")
        data_preview: First 16 bytes of packet data (keeps key material out of logs)
    """

    def __init__(self, reason: str, data: bytes = b""):
        self.reason = reason
        self.data_preview = data[:16] if data else b""
        super().__init__(f"Packet decode failed: {reason}")


class TooShortError(PacketDecodeError):
    """Fewer than the 11 bytes every frame needs."""

    def __init__(self, data: bytes = b""):
        super().__init__("too_short", data)


class BadStartMarkError(PacketDecodeError):
    """First two bytes are neither the request nor the response start mark."""

    def __init__(self, start_mark: int, data: bytes = b""):
        self.start_mark = start_mark
        super().__init__(f"bad_start_mark 0x{start_mark:04x}", data)


class IncompleteError(PacketDecodeError):
    """Buffer is shorter than the length announced by the header."""

    def __init__(self, expected: int, actual: int, data: bytes = b""):
        self.expected = expected
        self.actual = actual
        super().__init__(f"incomplete ({actual}/{expected} bytes)", data)


class BadEndMarkError(PacketDecodeError):
    """Terminator field does not match the end mark."""

    def __init__(self, end_mark: int, data: bytes = b""):
        self.end_mark = end_mark
        super().__init__(f"bad_end_mark 0x{end_mark:04x}", data)


class ChecksumMismatchError(PacketDecodeError):
    """Transmitted FCS differs from the recomputed checksum."""

    def __init__(self, received: int, expected: int, data: bytes = b""):
        self.received = received
        self.expected = expected
        super().__init__(
            f"checksum_mismatch (got 0x{received:02x}, expected 0x{expected:02x})",
            data,
        )


class UnexpectedCommandError(PacketDecodeError):
    """Response carries a different command id than the one being decoded."""

    def __init__(self, expected: int, actual: int, data: bytes = b""):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"unexpected_command (got 0x{actual:04x}, expected 0x{expected:04x})",
            data,
        )
