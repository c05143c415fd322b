"""Smartika protocol encoder/decoder implementation.

This module implements frame encoding/decoding and the payload layout of every
hub command. All functions are pure transforms over bytes; no I/O happens here.

Frame layout (all integers big-endian, unsigned)::

    +-----------+--------+----------+----------+-----------+-----+---------+
    | startMark | cmdId  | dataLen  | listLen  |   data    | fcs | endMark |
    |  2 bytes  | 2 bytes| 2 bytes  | 2 bytes  | dataLen B | 1 B | 2 bytes |
    +-----------+--------+----------+----------+-----------+-----+---------+

- startMark: 0xFE00 for requests, 0xFE01 for responses
- fcs: XOR of every byte from cmdId through the end of data
- endMark: 0x00FF
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterable, Sequence

from smartika_hub.protocol.checksum import calculate_checksum
from smartika_hub.protocol.exceptions import (
    BadEndMarkError,
    BadStartMarkError,
    ChecksumMismatchError,
    IncompleteError,
    InvalidInputError,
    PacketDecodeError,
    TooShortError,
    UnexpectedCommandError,
)
from smartika_hub.protocol.packet_types import (
    DEVICE_ID_BROADCAST,
    END_MARK,
    FRAME_HEADER_LENGTH,
    GATEWAY_PREFIX,
    HUB_ID_LENGTH,
    MIN_FRAME_LENGTH,
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
    device_category,
    device_type_name,
)

logger = logging.getLogger(__name__)

_HEADER = struct.Struct(">HHHH")
_BODY_HEADER = struct.Struct(">HHH")
_ID = struct.Struct(">H")
_LEVEL_ENTRY = struct.Struct(">HB")
# short_address(2) + type_id(4) + mac(8)
_DEVICE_ENTRY = struct.Struct(">HI8s")
# short_address(2) + type_id(4) + state_len(1)
_STATUS_ENTRY = struct.Struct(">HIB")

_START_MARKS = (START_MARK_REQUEST, START_MARK_RESPONSE)


def _check_u8(value: int, name: str) -> int:
    if not 0 <= value <= 0xFF:
        reason = f"{name} must be in 0-255, got {value}"
        raise InvalidInputError(reason)
    return value


def _check_u16(value: int, name: str) -> int:
    if not 0 <= value <= 0xFFFF:
        reason = f"{name} must be in 0-0xFFFF, got {value}"
        raise InvalidInputError(reason)
    return value


def _pack_ids(ids: Iterable[int]) -> bytes:
    return b"".join(_ID.pack(_check_u16(i, "address")) for i in ids)


def _read_ids(data: bytes, count: int, offset: int = 0) -> list[int]:
    """Read up to ``count`` u16 values, stopping early if the payload runs out."""
    ids: list[int] = []
    for _ in range(count):
        if offset + _ID.size > len(data):
            break
        ids.append(_ID.unpack_from(data, offset)[0])
        offset += _ID.size
    return ids


def _level_request(level: int, name: str, device_ids: Sequence[int]) -> tuple[bytes, int]:
    data = bytes([_check_u8(level, name)]) + _pack_ids(device_ids)
    return data, len(device_ids)


def _level_batch_request(entries: Sequence[tuple[int, int]], name: str) -> tuple[bytes, int]:
    data = b"".join(
        _LEVEL_ENTRY.pack(_check_u16(device_id, "address"), _check_u8(level, name))
        for device_id, level in entries
    )
    return data, len(entries)


class HubProtocol:
    """Smartika protocol encoder/decoder.

    Provides static methods for encoding requests and decoding responses.
    All methods are stateless - no instance state maintained.
    """

    # ------------------------------------------------------------------
    # Framing
    # ------------------------------------------------------------------

    @staticmethod
    def encode_frame(
        cmd_id: int,
        data: bytes = b"",
        list_len: int = 0,
        is_request: bool = True,
    ) -> bytes:
        """Encode a complete frame.

        Example:
            >>> HubProtocol.encode_frame(Command.GATEWAY_ID).hex().upper()
            'FE000010000000001000FF'
        """
        start_mark = START_MARK_REQUEST if is_request else START_MARK_RESPONSE
        body = (
            _BODY_HEADER.pack(
                _check_u16(cmd_id, "cmd_id"),
                _check_u16(len(data), "data length"),
                _check_u16(list_len, "list_len"),
            )
            + data
        )
        fcs = calculate_checksum(body)
        frame = _ID.pack(start_mark) + body + bytes([fcs]) + _ID.pack(END_MARK)

        logger.debug(
            "Encoded frame: cmd=0x%04x, data_len=%d, list_len=%d",
            cmd_id,
            len(data),
            list_len,
        )
        return frame

    @staticmethod
    def frame_length(header: bytes) -> int | None:
        """Return the total frame length announced by ``header``.

        Returns None when fewer than 6 bytes are present or the start mark
        is unknown.
        """
        if len(header) < 6:
            return None
        start_mark, _, data_len = struct.unpack_from(">HHH", header)
        if start_mark not in _START_MARKS:
            return None
        return MIN_FRAME_LENGTH + data_len

    @staticmethod
    def decode_frame(data: bytes) -> Packet:
        """Decode and validate a complete frame.

        Checks run in order: length, start mark, completeness, end mark, FCS.

        Raises:
            TooShortError: Fewer than 11 bytes
            BadStartMarkError: Unknown start mark
            IncompleteError: Buffer shorter than 11 + data_len
            BadEndMarkError: Wrong terminator
            ChecksumMismatchError: FCS does not match
        """
        if len(data) < MIN_FRAME_LENGTH:
            raise TooShortError(data)

        start_mark, cmd_id, data_len, list_len = _HEADER.unpack_from(data)
        if start_mark not in _START_MARKS:
            raise BadStartMarkError(start_mark, data)

        frame_length = MIN_FRAME_LENGTH + data_len
        if len(data) < frame_length:
            raise IncompleteError(frame_length, len(data), data)

        payload_end = FRAME_HEADER_LENGTH + data_len
        payload = bytes(data[FRAME_HEADER_LENGTH:payload_end])
        fcs = data[payload_end]
        end_mark = int.from_bytes(data[payload_end + 1 : payload_end + 3], "big")
        if end_mark != END_MARK:
            raise BadEndMarkError(end_mark, data)

        expected_fcs = calculate_checksum(data[2:payload_end])
        if fcs != expected_fcs:
            raise ChecksumMismatchError(fcs, expected_fcs, data)

        return Packet(
            start_mark=start_mark,
            cmd_id=cmd_id,
            data_len=data_len,
            list_len=list_len,
            data=payload,
            fcs=fcs,
        )

    @staticmethod
    def decode_response(data: bytes, expected: Command) -> Packet:
        """Decode a frame and verify it answers ``expected``.

        Raises:
            PacketDecodeError: Any framing failure
            UnexpectedCommandError: The frame carries a different command id
        """
        packet = HubProtocol.decode_frame(data)
        if packet.cmd_id != expected:
            raise UnexpectedCommandError(expected, packet.cmd_id, data)
        return packet

    @staticmethod
    def _decode_id_list(data: bytes, expected: Command) -> list[int]:
        packet = HubProtocol.decode_response(data, expected)
        return _read_ids(packet.data, packet.list_len)

    @staticmethod
    def _decode_device_list(data: bytes, expected: Command, mac_as_integer: bool) -> list[Device]:
        packet = HubProtocol.decode_response(data, expected)
        payload = packet.data
        devices: list[Device] = []
        offset = 0
        for _ in range(packet.list_len):
            if offset + _DEVICE_ENTRY.size > len(payload):
                break
            short_address, type_id, mac = _DEVICE_ENTRY.unpack_from(payload, offset)
            offset += _DEVICE_ENTRY.size
            mac_address = (
                f"{int.from_bytes(mac, 'big'):016X}" if mac_as_integer else mac.hex().upper()
            )
            devices.append(
                Device(
                    short_address=short_address,
                    type_id=type_id,
                    type_name=device_type_name(type_id),
                    category=device_category(type_id),
                    mac_address=mac_address,
                )
            )
        return devices

    # ------------------------------------------------------------------
    # System commands
    # ------------------------------------------------------------------

    @staticmethod
    def encode_gateway_id_request() -> bytes:
        return HubProtocol.encode_frame(Command.GATEWAY_ID)

    @staticmethod
    def decode_gateway_id_response(data: bytes) -> GatewayId:
        """Decode ``"artika"`` + 6-byte hub id.

        Raises:
            PacketDecodeError: Payload shorter than 12 bytes
        """
        packet = HubProtocol.decode_response(data, Command.GATEWAY_ID)
        needed = len(GATEWAY_PREFIX) + HUB_ID_LENGTH
        if len(packet.data) < needed:
            reason = f"gateway_id_too_short ({len(packet.data)} bytes)"
            raise PacketDecodeError(reason, data)
        return GatewayId(
            prefix=packet.data[: len(GATEWAY_PREFIX)].decode("ascii", errors="replace"),
            hub_id=packet.data[len(GATEWAY_PREFIX) : needed],
        )

    @staticmethod
    def encode_ping_request() -> bytes:
        return HubProtocol.encode_frame(Command.PING)

    @staticmethod
    def decode_ping_response(data: bytes) -> PingResult:
        packet = HubProtocol.decode_response(data, Command.PING)
        return PingResult(alarm_set=bool(packet.data) and packet.data[0] != 0)

    @staticmethod
    def encode_credentials_request(hub_id: bytes) -> bytes:
        if len(hub_id) < HUB_ID_LENGTH:
            reason = f"hub identifier must be {HUB_ID_LENGTH} bytes, got {len(hub_id)}"
            raise InvalidInputError(reason)
        return HubProtocol.encode_frame(Command.CREDENTIALS, GATEWAY_PREFIX + hub_id[:HUB_ID_LENGTH])

    @staticmethod
    def decode_credentials_response(data: bytes) -> bool:
        packet = HubProtocol.decode_response(data, Command.CREDENTIALS)
        return not packet.data or packet.data[0] != 0

    @staticmethod
    def encode_join_enable_request(duration: int = 0) -> bytes:
        """Enable pairing for ``duration`` seconds (0 = hub default)."""
        return HubProtocol.encode_frame(Command.JOIN_ENABLE, bytes([_check_u8(duration, "duration")]))

    @staticmethod
    def decode_join_enable_response(data: bytes) -> JoinResult:
        packet = HubProtocol.decode_response(data, Command.JOIN_ENABLE)
        return JoinResult(duration=packet.data[0] if packet.data else 0)

    @staticmethod
    def encode_join_disable_request() -> bytes:
        return HubProtocol.encode_frame(Command.JOIN_DISABLE)

    @staticmethod
    def decode_join_disable_response(data: bytes) -> None:
        HubProtocol.decode_response(data, Command.JOIN_DISABLE)

    @staticmethod
    def encode_firmware_version_request() -> bytes:
        return HubProtocol.encode_frame(Command.FIRMWARE_VERSION)

    @staticmethod
    def decode_firmware_version_response(data: bytes) -> FirmwareVersion:
        packet = HubProtocol.decode_response(data, Command.FIRMWARE_VERSION)
        if len(packet.data) < 3:
            reason = "firmware_version_too_short"
            raise PacketDecodeError(reason, data)
        major, minor, patch = packet.data[:3]
        return FirmwareVersion(major=major, minor=minor, patch=patch)

    # ------------------------------------------------------------------
    # Device commands
    # ------------------------------------------------------------------

    @staticmethod
    def encode_device_discovery_request() -> bytes:
        return HubProtocol.encode_frame(Command.DEVICE_DISCOVERY)

    @staticmethod
    def decode_device_discovery_response(data: bytes) -> list[Device]:
        return HubProtocol._decode_device_list(data, Command.DEVICE_DISCOVERY, mac_as_integer=False)

    @staticmethod
    def encode_device_status_request(device_ids: Sequence[int] | None = None) -> bytes:
        """Request status for ``device_ids`` (default: every device via broadcast)."""
        ids = list(device_ids) if device_ids else [DEVICE_ID_BROADCAST]
        return HubProtocol.encode_frame(Command.DEVICE_STATUS, _pack_ids(ids), len(ids))

    @staticmethod
    def decode_device_status_response(data: bytes) -> list[Device]:
        """Decode status entries ``addr(2)‖type(4)‖stateLen(1)‖state``.

        State bytes are interpreted by category: light = on/brightness/
        temperature, fan = on/speed, plug = on. Anything else, or a state
        shorter than its category needs, is kept as ``raw_state`` hex. An
        entry whose state runs past the payload ends the list.
        """
        packet = HubProtocol.decode_response(data, Command.DEVICE_STATUS)
        payload = packet.data
        devices: list[Device] = []
        offset = 0
        for _ in range(packet.list_len):
            if offset + _STATUS_ENTRY.size > len(payload):
                break
            short_address, type_id, state_len = _STATUS_ENTRY.unpack_from(payload, offset)
            state_start = offset + _STATUS_ENTRY.size
            if state_start + state_len > len(payload):
                break
            state = payload[state_start : state_start + state_len]
            offset = state_start + state_len

            category = device_category(type_id)
            fields: dict[str, object] = {}
            if category is DeviceCategory.LIGHT and state_len >= 3:
                fields = {"on": state[0] != 0, "brightness": state[1], "temperature": state[2]}
            elif category is DeviceCategory.FAN and state_len >= 2:
                fields = {"on": state[0] != 0, "speed": state[1]}
            elif category is DeviceCategory.PLUG and state_len >= 1:
                fields = {"on": state[0] != 0}
            else:
                fields = {"raw_state": state.hex().upper()}

            devices.append(
                Device(
                    short_address=short_address,
                    type_id=type_id,
                    type_name=device_type_name(type_id),
                    category=category,
                    **fields,  # type: ignore[arg-type]
                )
            )
        return devices

    @staticmethod
    def encode_device_switch_request(on: bool, device_ids: Sequence[int]) -> bytes:
        """Switch devices on/off: ``on(1)‖ids(2·n)``, list_len = n.

        Example:
            >>> HubProtocol.encode_device_switch_request(True, [0x28CF])[8:11].hex()
            '0128cf'
        """
        data = bytes([1 if on else 0]) + _pack_ids(device_ids)
        return HubProtocol.encode_frame(Command.DEVICE_SWITCH, data, len(device_ids))

    @staticmethod
    def decode_device_switch_response(data: bytes) -> list[int]:
        return HubProtocol._decode_id_list(data, Command.DEVICE_SWITCH)

    @staticmethod
    def encode_light_dim_request(brightness: int, device_ids: Sequence[int]) -> bytes:
        data, list_len = _level_request(brightness, "brightness", device_ids)
        return HubProtocol.encode_frame(Command.LIGHT_DIM, data, list_len)

    @staticmethod
    def decode_light_dim_response(data: bytes) -> list[int]:
        return HubProtocol._decode_id_list(data, Command.LIGHT_DIM)

    @staticmethod
    def encode_light_temperature_request(temperature: int, device_ids: Sequence[int]) -> bytes:
        """Set colour temperature (0 = warm, 255 = cool)."""
        data, list_len = _level_request(temperature, "temperature", device_ids)
        return HubProtocol.encode_frame(Command.LIGHT_TEMPERATURE, data, list_len)

    @staticmethod
    def decode_light_temperature_response(data: bytes) -> list[int]:
        return HubProtocol._decode_id_list(data, Command.LIGHT_TEMPERATURE)

    @staticmethod
    def encode_fan_control_request(speed: int, device_ids: Sequence[int]) -> bytes:
        data, list_len = _level_request(speed, "speed", device_ids)
        return HubProtocol.encode_frame(Command.FAN_CONTROL, data, list_len)

    @staticmethod
    def decode_fan_control_response(data: bytes) -> list[int]:
        return HubProtocol._decode_id_list(data, Command.FAN_CONTROL)

    @staticmethod
    def encode_light_dim_batch_request(entries: Sequence[tuple[int, int]]) -> bytes:
        """Per-device brightness: ``(id(2)‖brightness(1))·n``."""
        data, list_len = _level_batch_request(entries, "brightness")
        return HubProtocol.encode_frame(Command.LIGHT_DIM_BATCH, data, list_len)

    @staticmethod
    def decode_light_dim_batch_response(data: bytes) -> list[int]:
        return HubProtocol._decode_id_list(data, Command.LIGHT_DIM_BATCH)

    @staticmethod
    def encode_light_temperature_batch_request(entries: Sequence[tuple[int, int]]) -> bytes:
        data, list_len = _level_batch_request(entries, "temperature")
        return HubProtocol.encode_frame(Command.LIGHT_TEMPERATURE_BATCH, data, list_len)

    @staticmethod
    def decode_light_temperature_batch_response(data: bytes) -> list[int]:
        return HubProtocol._decode_id_list(data, Command.LIGHT_TEMPERATURE_BATCH)

    # ------------------------------------------------------------------
    # Database commands
    # ------------------------------------------------------------------

    @staticmethod
    def encode_db_list_device_request() -> bytes:
        return HubProtocol.encode_frame(Command.DB_LIST_DEVICE)

    @staticmethod
    def decode_db_list_device_response(data: bytes) -> list[int]:
        return HubProtocol._decode_id_list(data, Command.DB_LIST_DEVICE)

    @staticmethod
    def encode_db_list_device_full_request() -> bytes:
        return HubProtocol.encode_frame(Command.DB_LIST_DEVICE_FULL)

    @staticmethod
    def decode_db_list_device_full_response(data: bytes) -> list[Device]:
        return HubProtocol._decode_device_list(data, Command.DB_LIST_DEVICE_FULL, mac_as_integer=True)

    @staticmethod
    def encode_db_add_device_request(device_ids: Sequence[int]) -> bytes:
        return HubProtocol.encode_frame(Command.DB_ADD_DEVICE, _pack_ids(device_ids), len(device_ids))

    @staticmethod
    def decode_db_add_device_response(data: bytes) -> list[int]:
        """Return the ids the hub failed to add."""
        return HubProtocol._decode_id_list(data, Command.DB_ADD_DEVICE)

    @staticmethod
    def encode_db_remove_device_request(device_ids: Sequence[int]) -> bytes:
        return HubProtocol.encode_frame(Command.DB_REMOVE_DEVICE, _pack_ids(device_ids), len(device_ids))

    @staticmethod
    def decode_db_remove_device_response(data: bytes) -> list[int]:
        """Return the ids the hub failed to remove."""
        return HubProtocol._decode_id_list(data, Command.DB_REMOVE_DEVICE)

    # ------------------------------------------------------------------
    # Group commands
    # ------------------------------------------------------------------

    @staticmethod
    def encode_group_list_request() -> bytes:
        return HubProtocol.encode_frame(Command.GROUP_LIST)

    @staticmethod
    def decode_group_list_response(data: bytes) -> list[int]:
        return HubProtocol._decode_id_list(data, Command.GROUP_LIST)

    @staticmethod
    def encode_group_create_request(device_ids: Sequence[int]) -> bytes:
        return HubProtocol.encode_frame(Command.GROUP_CREATE, _pack_ids(device_ids), len(device_ids))

    @staticmethod
    def _decode_group_id(data: bytes, expected: Command) -> Group:
        packet = HubProtocol.decode_response(data, expected)
        if len(packet.data) < _ID.size:
            reason = "group_id_missing"
            raise PacketDecodeError(reason, data)
        return Group(group_id=_ID.unpack_from(packet.data)[0])

    @staticmethod
    def decode_group_create_response(data: bytes) -> Group:
        """Return the new group (``group_id == 0xFFFF`` on hub-side failure)."""
        return HubProtocol._decode_group_id(data, Command.GROUP_CREATE)

    @staticmethod
    def encode_group_update_request(group_id: int, device_ids: Sequence[int]) -> bytes:
        data = _ID.pack(_check_u16(group_id, "group_id")) + _pack_ids(device_ids)
        return HubProtocol.encode_frame(Command.GROUP_UPDATE, data, len(device_ids))

    @staticmethod
    def decode_group_update_response(data: bytes) -> Group:
        return HubProtocol._decode_group_id(data, Command.GROUP_UPDATE)

    @staticmethod
    def encode_group_read_request(group_id: int) -> bytes:
        return HubProtocol.encode_frame(Command.GROUP_READ, _ID.pack(_check_u16(group_id, "group_id")))

    @staticmethod
    def decode_group_read_response(data: bytes) -> Group:
        """Decode ``group(2)‖members(2·list_len)``."""
        packet = HubProtocol.decode_response(data, Command.GROUP_READ)
        if len(packet.data) < _ID.size:
            reason = "group_id_missing"
            raise PacketDecodeError(reason, data)
        group_id = _ID.unpack_from(packet.data)[0]
        members = _read_ids(packet.data, packet.list_len, offset=_ID.size)
        return Group(group_id=group_id, device_ids=tuple(members))

    @staticmethod
    def encode_group_delete_request(group_ids: Sequence[int]) -> bytes:
        return HubProtocol.encode_frame(Command.GROUP_DELETE, _pack_ids(group_ids), len(group_ids))

    @staticmethod
    def decode_group_delete_response(data: bytes) -> list[int]:
        """Return the group ids the hub failed to delete."""
        return HubProtocol._decode_id_list(data, Command.GROUP_DELETE)
