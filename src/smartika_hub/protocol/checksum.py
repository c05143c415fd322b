"""Frame check sequence for the hub protocol.

The FCS is a running XOR over ``cmd_id‖data_len‖list_len‖data``, i.e. every
byte between the start mark and the FCS itself.
"""

from __future__ import annotations

from functools import reduce
from operator import xor


def calculate_checksum(data: bytes) -> int:
    """Return the XOR of every byte in ``data`` (0 for empty input).

    Example:
        >>> hex(calculate_checksum(bytes([0x12, 0x34, 0x56])))
        '0x70'
    """
    return reduce(xor, data, 0)
