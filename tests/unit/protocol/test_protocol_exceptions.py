"""Unit tests for protocol exception types."""

from __future__ import annotations

from smartika_hub.protocol.exceptions import (
    BadEndMarkError,
    BadStartMarkError,
    ChecksumMismatchError,
    FormatError,
    HubProtocolError,
    IncompleteError,
    InvalidInputError,
    PacketDecodeError,
    TooShortError,
    UnexpectedCommandError,
)

# Test constants
DATA_PREVIEW_TRUNCATE_LENGTH = 16  # Maximum bytes stored in error preview


def test_hierarchy() -> None:
    """Every codec error is a PacketDecodeError and every error a HubProtocolError."""
    for exc_type in (
        TooShortError,
        BadStartMarkError,
        IncompleteError,
        BadEndMarkError,
        ChecksumMismatchError,
        UnexpectedCommandError,
    ):
        assert issubclass(exc_type, PacketDecodeError)
    for exc_type in (PacketDecodeError, FormatError, InvalidInputError):
        assert issubclass(exc_type, HubProtocolError)


def test_packet_decode_error_truncates_data() -> None:
    """Test PacketDecodeError keeps only the first 16 bytes."""
    large_data = bytes(range(32))

    error = PacketDecodeError("checksum_mismatch", large_data)

    assert len(error.data_preview) == DATA_PREVIEW_TRUNCATE_LENGTH
    assert error.data_preview == large_data[:DATA_PREVIEW_TRUNCATE_LENGTH]


def test_packet_decode_error_empty_data() -> None:
    error = PacketDecodeError("too_short")

    assert error.reason == "too_short"
    assert error.data_preview == b""
    assert "too_short" in str(error)


def test_reason_prefixes() -> None:
    """Reasons start with a stable token usable as a metric label."""
    assert TooShortError().reason == "too_short"
    assert BadStartMarkError(0x1234).reason.split(" ")[0] == "bad_start_mark"
    assert IncompleteError(20, 12).reason.split(" ")[0] == "incomplete"
    assert BadEndMarkError(0x0000).reason.split(" ")[0] == "bad_end_mark"
    assert ChecksumMismatchError(0x01, 0x02).reason.split(" ")[0] == "checksum_mismatch"
    assert UnexpectedCommandError(0x0101, 0x0106).reason.split(" ")[0] == "unexpected_command"


def test_checksum_mismatch_attributes() -> None:
    error = ChecksumMismatchError(0xAB, 0xCD, b"\xfe\x01")

    assert error.received == 0xAB
    assert error.expected == 0xCD
    assert "0xab" in str(error)
    assert error.data_preview == b"\xfe\x01"


def test_format_error_keeps_value() -> None:
    error = FormatError("hub identifier must be 12 hex digits", "00:12")

    assert error.value == "00:12"
    assert "12 hex digits" in str(error)


def test_invalid_input_error() -> None:
    error = InvalidInputError("key must be 16 bytes, got 8")

    assert error.reason == "key must be 16 bytes, got 8"
    assert str(error).startswith("Invalid input")
