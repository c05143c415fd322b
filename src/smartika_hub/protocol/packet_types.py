"""Wire constants, command ids, device tables and packet dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from types import MappingProxyType
from typing import Final

# Frame markers
START_MARK_REQUEST: Final = 0xFE00
START_MARK_RESPONSE: Final = 0xFE01
END_MARK: Final = 0x00FF

# start(2) + cmd(2) + data_len(2) + list_len(2); fcs(1) + end(2)
FRAME_HEADER_LENGTH: Final = 8
FRAME_TRAILER_LENGTH: Final = 3
MIN_FRAME_LENGTH: Final = FRAME_HEADER_LENGTH + FRAME_TRAILER_LENGTH

DEVICE_ID_BROADCAST: Final = 0xFFFF
GROUP_ID_INVALID: Final = 0xFFFF
HUB_PORT: Final = 1234
DISCOVERY_PORT: Final = 4156

GATEWAY_PREFIX: Final = b"artika"
HUB_ID_LENGTH: Final = 6


class Command(IntEnum):
    """Hub command identifiers."""

    # Device commands
    DEVICE_SWITCH = 0x0000
    DEVICE_DISCOVERY = 0x0001
    DEVICE_STATUS = 0x0002
    LIGHT_DIM = 0x0004
    LIGHT_TEMPERATURE = 0x0005
    FAN_CONTROL = 0x0006
    LIGHT_DIM_BATCH = 0x0008
    LIGHT_TEMPERATURE_BATCH = 0x0009

    # System commands
    GATEWAY_ID = 0x0010
    PING = 0x0101
    CREDENTIALS = 0x0103
    JOIN_ENABLE = 0x0104
    JOIN_DISABLE = 0x0105
    FIRMWARE_VERSION = 0x0106

    # Database commands
    DB_LIST_DEVICE = 0x0200
    DB_ADD_DEVICE = 0x0201
    DB_REMOVE_DEVICE = 0x0202
    DB_LIST_DEVICE_FULL = 0x0203

    # Group commands
    GROUP_LIST = 0x0400
    GROUP_CREATE = 0x0401
    GROUP_UPDATE = 0x0402
    GROUP_READ = 0x0403
    GROUP_DELETE = 0x0404


class DeviceCategory(StrEnum):
    """Coarse device category used to interpret status payloads."""

    LIGHT = "light"
    FAN = "fan"
    PLUG = "plug"
    THERMOSTAT = "thermostat"
    SENSOR = "sensor"
    REMOTE = "remote"
    UNKNOWN = "unknown"


DEVICE_TYPES: Final = MappingProxyType(
    {
        # Real devices
        0x00000001: "Champagne Track",
        0x00000005: "Ceiling Fan",
        0x00000007: "Smart Plug",
        0x00000008: "Mini Wall Washer",
        0x00000009: "Glowbox",
        0x0000000B: "Recessed Lighting",
        0x0000000D: "Water Leakage Sensor",
        0x00001001: "Pendant 1",
        0x00001002: "Pendant 2",
        0x00001003: "Pendant 3",
        0x00001004: "Pendant 4",
        0x00001005: "Pendant 5",
        0x00001006: "Smart Bulb",
        0x00001007: "Spotlight",
        0x00001008: "Sandwich Light 1",
        0x00001009: "Sandwich Light 2",
        0x0000100A: "Sandwich Light 3",
        0x00002001: "Thermostat",
        0x00002002: "Smart Heater",
        # Virtual devices (groups)
        0x40000001: "Virtual Light",
        0x40000003: "Virtual Fan",
        0x40000004: "Virtual Plug",
        0x40002002: "Virtual Heater",
        # Remote controls
        0x80000002: "Remote Control Light",
        0x80000004: "Remote Control Heater",
        0x80000006: "Remote Control Fan",
        0x80000008: "Programmable Remote",
    }
)

DEVICE_TYPE_CATEGORY: Final = MappingProxyType(
    {
        0x00000001: DeviceCategory.LIGHT,
        0x00000005: DeviceCategory.FAN,
        0x00000007: DeviceCategory.PLUG,
        0x00000008: DeviceCategory.LIGHT,
        0x00000009: DeviceCategory.LIGHT,
        0x0000000B: DeviceCategory.LIGHT,
        0x0000000D: DeviceCategory.SENSOR,
        0x00001001: DeviceCategory.LIGHT,
        0x00001002: DeviceCategory.LIGHT,
        0x00001003: DeviceCategory.LIGHT,
        0x00001004: DeviceCategory.LIGHT,
        0x00001005: DeviceCategory.LIGHT,
        0x00001006: DeviceCategory.LIGHT,
        0x00001007: DeviceCategory.LIGHT,
        0x00001008: DeviceCategory.LIGHT,
        0x00001009: DeviceCategory.LIGHT,
        0x0000100A: DeviceCategory.LIGHT,
        0x00002001: DeviceCategory.THERMOSTAT,
        0x00002002: DeviceCategory.THERMOSTAT,
        0x40000001: DeviceCategory.LIGHT,
        0x40000003: DeviceCategory.FAN,
        0x40000004: DeviceCategory.PLUG,
        0x40002002: DeviceCategory.THERMOSTAT,
        0x80000002: DeviceCategory.REMOTE,
        0x80000004: DeviceCategory.REMOTE,
        0x80000006: DeviceCategory.REMOTE,
        0x80000008: DeviceCategory.REMOTE,
    }
)


def device_type_name(type_id: int) -> str:
    """Return the display name for a device type id."""
    return DEVICE_TYPES.get(type_id, f"Unknown (0x{type_id:x})")


def device_category(type_id: int) -> DeviceCategory:
    """Return the category for a device type id."""
    return DEVICE_TYPE_CATEGORY.get(type_id, DeviceCategory.UNKNOWN)


@dataclass(frozen=True)
class Packet:
    """A decoded protocol frame.

    Attributes:
        start_mark: START_MARK_REQUEST or START_MARK_RESPONSE
        cmd_id: Command identifier
        data_len: Payload length in bytes
        list_len: Count of logical list elements inside the payload
        data: Payload bytes
        fcs: Frame check sequence as transmitted
    """

    start_mark: int
    cmd_id: int
    data_len: int
    list_len: int
    data: bytes
    fcs: int

    @property
    def is_request(self) -> bool:
        return self.start_mark == START_MARK_REQUEST

    def __repr__(self) -> str:
        return (
            f"Packet(cmd_id=0x{self.cmd_id:04X}, list_len={self.list_len}, "
            f"data={self.data.hex(' ') if self.data else '(empty)'})"
        )


@dataclass(frozen=True)
class Device:
    """A device known to the hub, with live state when decoded from a status response."""

    short_address: int
    type_id: int
    type_name: str
    category: DeviceCategory
    mac_address: str | None = None
    on: bool | None = None
    brightness: int | None = None
    temperature: int | None = None
    speed: int | None = None
    raw_state: str | None = None


@dataclass(frozen=True)
class Group:
    """A virtual device made of member short addresses."""

    group_id: int
    device_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        return self.group_id != GROUP_ID_INVALID


@dataclass(frozen=True)
class GatewayId:
    """Hub identity returned by the unencrypted handshake."""

    prefix: str
    hub_id: bytes

    @property
    def hub_id_hex(self) -> str:
        return self.hub_id.hex().upper()


@dataclass(frozen=True)
class FirmwareVersion:
    major: int
    minor: int
    patch: int

    @property
    def version(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class PingResult:
    alarm_set: bool


@dataclass(frozen=True)
class JoinResult:
    duration: int
