"""Session key derivation and AES-128 frame encryption.

Every exchange after the gateway-id handshake is encrypted with AES-128-CBC
under a per-hub key and a fixed IV. The key is derived from the hub's 6-byte
identifier by patching four bytes of ``BASE_KEY`` and running eight chained
AES-128-ECB passes keyed by consecutive 16-byte slices of ``PRIVATE_KEY``.

Messages are padded with random bytes to the block size; the receiver drops
the padding by reading the frame length out of the decrypted header.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Final

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from smartika_hub.protocol.exceptions import FormatError, InvalidInputError
from smartika_hub.protocol.packet_types import (
    HUB_ID_LENGTH,
    MIN_FRAME_LENGTH,
    START_MARK_REQUEST,
    START_MARK_RESPONSE,
)

logger = logging.getLogger(__name__)

BLOCK_SIZE: Final = 16
KEY_DERIVATION_PASSES: Final = 8

PRIVATE_KEY: Final = bytes(
    [
        0x42, 0x6B, 0xD6, 0xCD, 0x00, 0x59, 0x5B, 0x03, 0xFC, 0xCB, 0xF4, 0xDD, 0x09, 0x25, 0x85, 0x1B,
        0x3F, 0x91, 0x93, 0x81, 0xB3, 0x19, 0xB2, 0xD1, 0x41, 0x5B, 0xF7, 0x7D, 0xFD, 0x4F, 0x4C, 0xD3,
        0x5E, 0x00, 0xE1, 0xC0, 0x89, 0xA1, 0x94, 0xD4, 0xF6, 0xEA, 0x77, 0xAA, 0xC5, 0x1B, 0x66, 0x67,
        0xEE, 0x96, 0xCD, 0x6E, 0xC3, 0x7D, 0x8A, 0xF1, 0xD0, 0x2A, 0x10, 0x98, 0xA7, 0xF5, 0xB1, 0xC3,
        0x90, 0x3A, 0x4A, 0xB7, 0xB9, 0xE5, 0x0E, 0x47, 0xE5, 0xA0, 0xD2, 0x1B, 0x17, 0xD0, 0x8B, 0x5A,
        0x55, 0x7C, 0x50, 0xBA, 0x02, 0x66, 0xA7, 0xC1, 0xCC, 0x4D, 0x67, 0x3E, 0xD1, 0xB7, 0xEE, 0xC0,
        0xE3, 0x34, 0x00, 0x1F, 0x89, 0x7A, 0x0E, 0xC7, 0xC0, 0x49, 0x2F, 0xEE, 0x01, 0x7B, 0x94, 0x52,
        0x93, 0x22, 0xC0, 0xB9, 0xBB, 0x2C, 0x46, 0xD1, 0xBD, 0x65, 0x5F, 0x91, 0x56, 0x4B, 0x17, 0xCD,
    ]
)  # fmt: skip

BASE_KEY: Final = bytes(
    [0xB9, 0x43, 0x34, 0xB5, 0xBE, 0xDE, 0x9E, 0x05, 0x58, 0xE2, 0xE6, 0xD8, 0xCE, 0xBA, 0x7E, 0x47]
)

IV: Final = bytes(
    [0xA7, 0x2D, 0xD1, 0x29, 0x20, 0xDF, 0xAD, 0x61, 0x82, 0x03, 0x98, 0xFA, 0x9E, 0xEF, 0x59, 0x20]
)

# base_key position <- hub_id index
_KEY_SEED_POSITIONS: Final = ((9, 0), (7, 3), (13, 4), (3, 5))

_IDENTIFIER_SEPARATORS = re.compile(r"[:-]")
_HEX_IDENTIFIER = re.compile(r"[0-9A-Fa-f]{12}")


def _ecb_encrypt_block(block: bytes, key: bytes) -> bytes:
    encryptor = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return encryptor.update(block) + encryptor.finalize()


def derive_key(hub_id: bytes) -> bytes:
    """Derive the 16-byte session key from a 6-byte hub identifier.

    Args:
        hub_id: Hub MAC address (6 bytes)

    Returns:
        16-byte AES key

    Raises:
        InvalidInputError: If hub_id is not exactly 6 bytes

    Example:
        >>> derive_key(bytes.fromhex("00124B3289BB")).hex().upper()
        '2159E82A784EB15A4E1C25E11C687826'
    """
    if len(hub_id) != HUB_ID_LENGTH:
        reason = f"hub identifier must be {HUB_ID_LENGTH} bytes, got {len(hub_id)}"
        raise InvalidInputError(reason)

    seeded = bytearray(BASE_KEY)
    for position, index in _KEY_SEED_POSITIONS:
        seeded[position] = hub_id[index]

    result = bytes(seeded)
    for i in range(KEY_DERIVATION_PASSES):
        pass_key = PRIVATE_KEY[i * BLOCK_SIZE : (i + 1) * BLOCK_SIZE]
        result = _ecb_encrypt_block(result, pass_key)
    return result


def pad(message: bytes) -> bytes:
    """Pad ``message`` with random bytes up to the next block boundary.

    Aligned messages are returned unchanged.
    """
    remainder = len(message) % BLOCK_SIZE
    if remainder == 0:
        return message
    return message + os.urandom(BLOCK_SIZE - remainder)


def _check_key(key: bytes) -> None:
    if len(key) != BLOCK_SIZE:
        reason = f"key must be {BLOCK_SIZE} bytes, got {len(key)}"
        raise InvalidInputError(reason)


def encrypt(message: bytes, key: bytes) -> bytes:
    """Encrypt a frame with AES-128-CBC under ``key`` and the fixed IV.

    The output length is always a multiple of 16.
    """
    _check_key(key)
    encryptor = Cipher(algorithms.AES(key), modes.CBC(IV)).encryptor()
    return encryptor.update(pad(message)) + encryptor.finalize()


def decrypt_blocks(ciphertext: bytes, key: bytes) -> bytes:
    """Decrypt block-aligned ciphertext without touching the padding."""
    _check_key(key)
    if len(ciphertext) % BLOCK_SIZE:
        reason = f"ciphertext length {len(ciphertext)} is not a multiple of {BLOCK_SIZE}"
        raise InvalidInputError(reason)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(IV)).decryptor()
    return decryptor.update(ciphertext) + decryptor.finalize()


def decrypt(ciphertext: bytes, key: bytes) -> bytes:
    """Decrypt a response and strip the random padding.

    The true length is read from the decrypted header (``11 + data_len``).
    When the header carries no known start mark, or announces more bytes than
    were decrypted, the whole decrypted buffer is returned and the codec is
    left to reject it.
    """
    decrypted = decrypt_blocks(ciphertext, key)

    if len(decrypted) > MIN_FRAME_LENGTH:
        start_mark = int.from_bytes(decrypted[0:2], "big")
        if start_mark in (START_MARK_REQUEST, START_MARK_RESPONSE):
            frame_length = MIN_FRAME_LENGTH + int.from_bytes(decrypted[4:6], "big")
            if frame_length <= len(decrypted):
                return decrypted[:frame_length]
            logger.debug(
                "Decrypted header announces %d bytes, only %d available",
                frame_length,
                len(decrypted),
            )

    return decrypted


def parse_identifier(text: str) -> bytes:
    """Parse ``00:12:4B:32:89:BB``, ``00-12-4B-32-89-BB`` or ``00124B3289BB``.

    Raises:
        FormatError: Unless exactly 12 hex digits remain after removing separators
    """
    hex_digits = _IDENTIFIER_SEPARATORS.sub("", text.strip())
    if not _HEX_IDENTIFIER.fullmatch(hex_digits):
        reason = "hub identifier must be 12 hex digits"
        raise FormatError(reason, text)
    return bytes.fromhex(hex_digits)


def format_identifier(hub_id: bytes) -> str:
    """Render a hub identifier as colon-separated upper-case hex."""
    return ":".join(f"{b:02X}" for b in hub_id)
