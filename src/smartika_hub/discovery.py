"""Hub discovery over UDP broadcast.

Hubs announce themselves roughly every ten seconds on UDP port 4156 with a
text datagram ``SMARTIKA HUB - <ID>`` (or ``SMARTIKA HUB - BOOTLOADER - <ID>``
while in the bootloader). ``<ID>`` is 12 or 16 hex digits; the last 12 are the
hub MAC, which is also the key-derivation identifier.
"""

from __future__ import annotations

import asyncio
import logging
import re
import socket
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import override

from smartika_hub.protocol.cipher import format_identifier
from smartika_hub.protocol.packet_types import DISCOVERY_PORT

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 15.0

_ANNOUNCEMENT = re.compile(r"^SMARTIKA HUB(?: - BOOTLOADER)? - ([0-9A-F]{12,16})", re.IGNORECASE)


@dataclass
class DiscoveredHub:
    """A hub seen on the network.

    Attributes:
        hub_id: Announced identifier, upper-case hex (12 or 16 digits)
        mac: Colon-separated MAC (last 12 digits of hub_id)
        mac_bytes: MAC as 6 raw bytes, usable with derive_key()
        ip: Source address of the latest announcement
        port: Source port of the latest announcement
        bootloader: Hub is running its bootloader
        last_seen: Time of the latest announcement
    """

    hub_id: str
    mac: str
    mac_bytes: bytes
    ip: str
    port: int
    bootloader: bool = False
    last_seen: datetime = field(default_factory=lambda: datetime.now(UTC))


def parse_announcement(data: bytes, addr: tuple[str, int]) -> DiscoveredHub | None:
    """Parse one broadcast datagram; returns None for anything that is not a hub announcement."""
    message = data.decode("utf-8", errors="replace").replace("\x00", "").strip()
    match = _ANNOUNCEMENT.match(message)
    if match is None:
        return None

    hub_id = match.group(1).upper()
    mac_bytes = bytes.fromhex(hub_id[-12:])
    return DiscoveredHub(
        hub_id=hub_id,
        mac=format_identifier(mac_bytes),
        mac_bytes=mac_bytes,
        ip=addr[0],
        port=addr[1],
        bootloader="BOOTLOADER" in message.upper(),
    )


class HubDiscoveryProtocol(asyncio.DatagramProtocol):
    """Collects hub announcements, keyed by hub id."""

    def __init__(self) -> None:
        self.hubs: dict[str, DiscoveredHub] = {}

    @override
    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        hub = parse_announcement(data, addr)
        if hub is None:
            logger.debug("Ignoring datagram from %s:%d", addr[0], addr[1])
            return

        existing = self.hubs.get(hub.hub_id)
        if existing is None:
            self.hubs[hub.hub_id] = hub
            logger.info(
                "Discovered hub %s at %s",
                hub.hub_id,
                hub.ip,
                extra={"hub_id": hub.hub_id, "ip": hub.ip, "bootloader": hub.bootloader},
            )
        else:
            existing.ip = hub.ip
            existing.port = hub.port
            existing.last_seen = hub.last_seen

    @override
    def error_received(self, exc: Exception) -> None:
        logger.warning("Discovery socket error: %s", exc)


def _open_listener(port: int) -> socket.socket:
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    s.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
    s.bind(("", port))
    s.setblocking(False)
    return s


async def discover_hubs(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    port: int = DISCOVERY_PORT,
) -> list[DiscoveredHub]:
    """Listen for hub announcements for ``timeout`` seconds.

    Raises:
        OSError: The discovery port could not be bound
    """
    loop = asyncio.get_running_loop()
    sock = _open_listener(port)
    logger.debug("Discovery listening on UDP port %d", port, extra={"port": port, "timeout": timeout})
    transport, protocol = await loop.create_datagram_endpoint(HubDiscoveryProtocol, sock=sock)
    try:
        await asyncio.sleep(timeout)
    finally:
        transport.close()
    return list(protocol.hubs.values())
