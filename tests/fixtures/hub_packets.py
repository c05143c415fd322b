"""Hub frames used across the unit tests.

The literal frames were checked byte by byte; ``response()`` builds the rest
so payload layouts stay readable in the tests.
"""

from __future__ import annotations

from functools import reduce
from operator import xor

# Hub identifier and the key derive_key() produces for it
HUB_ID = bytes.fromhex("00124B3289BB")
DERIVED_HUB_KEY = bytes.fromhex("2159E82A784EB15A4E1C25E11C687826")

# Session key the captured ciphertext below was recorded under
HUB_KEY = bytes.fromhex("A7E58B22F0BE06AC242439CB9441838E")

# Firmware-version request encrypted under HUB_KEY
FIRMWARE_REQUEST_CIPHERTEXT = bytes.fromhex("65A8EB378C0D1AE04A771B574867BDFE")
FIRMWARE_REQUEST_CLEARTEXT = bytes.fromhex("FE000106000000010600FF")

GATEWAY_ID_REQUEST = bytes.fromhex("FE000010000000001000FF")
GATEWAY_ID_RESPONSE = bytes.fromhex("FE010010000C0000" + "61727469" + "6B61" + "00124B3289BB" + "41" + "00FF")

PING_REQUEST = bytes.fromhex("FE000101000000000000FF")

# switch on 0x28CF: data 01 28 CF, fcs E4
SWITCH_ON_28CF_REQUEST = bytes.fromhex("FE00000000030001" + "0128CF" + "E4" + "00FF")


def response(cmd_id: int, data: bytes = b"", list_len: int = 0) -> bytes:
    """Build a well-formed hub response frame."""
    body = cmd_id.to_bytes(2, "big") + len(data).to_bytes(2, "big") + list_len.to_bytes(2, "big") + data
    return b"\xfe\x01" + body + bytes([reduce(xor, body, 0)]) + b"\x00\xff"


def status_entry(address: int, type_id: int, state: bytes) -> bytes:
    return address.to_bytes(2, "big") + type_id.to_bytes(4, "big") + bytes([len(state)]) + state


def device_entry(address: int, type_id: int, mac: bytes) -> bytes:
    return address.to_bytes(2, "big") + type_id.to_bytes(4, "big") + mac


def id_list(*ids: int) -> bytes:
    return b"".join(i.to_bytes(2, "big") for i in ids)
