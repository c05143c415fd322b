"""Smartika protocol package - framing, checksum, cipher and payload codecs.

Public API:
- Wire constants and the Command enum
- Packet and result dataclasses (Packet, Device, Group, ...)
- Protocol encoder/decoder (HubProtocol)
- Session cipher (derive_key, encrypt, decrypt)
"""

from smartika_hub.protocol.checksum import calculate_checksum
from smartika_hub.protocol.cipher import (
    decrypt,
    derive_key,
    encrypt,
    format_identifier,
    parse_identifier,
)
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
from smartika_hub.protocol.hub_protocol import HubProtocol
from smartika_hub.protocol.packet_types import (
    DEVICE_ID_BROADCAST,
    END_MARK,
    GROUP_ID_INVALID,
    HUB_PORT,
    START_MARK_REQUEST,
    START_MARK_RESPONSE,
    Command,
    Device,
    DeviceCategory,
    FirmwareVersion,
    GatewayId,
    Group,
    JoinResult,
    Packet,
    PingResult,
)

__all__ = [
    # Protocol encoder/decoder
    "HubProtocol",
    "calculate_checksum",
    # Cipher
    "derive_key",
    "encrypt",
    "decrypt",
    "parse_identifier",
    "format_identifier",
    # Constants
    "START_MARK_REQUEST",
    "START_MARK_RESPONSE",
    "END_MARK",
    "DEVICE_ID_BROADCAST",
    "GROUP_ID_INVALID",
    "HUB_PORT",
    "Command",
    # Dataclasses
    "Packet",
    "Device",
    "DeviceCategory",
    "Group",
    "GatewayId",
    "FirmwareVersion",
    "PingResult",
    "JoinResult",
    # Exceptions
    "HubProtocolError",
    "FormatError",
    "InvalidInputError",
    "PacketDecodeError",
    "TooShortError",
    "BadStartMarkError",
    "IncompleteError",
    "BadEndMarkError",
    "ChecksumMismatchError",
    "UnexpectedCommandError",
]
