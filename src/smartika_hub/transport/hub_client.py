"""High-level hub client: command surface, status polling and group topology."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import override

from smartika_hub.correlation import ensure_correlation_id
from smartika_hub.metrics import registry
from smartika_hub.protocol.exceptions import HubProtocolError
from smartika_hub.protocol.hub_protocol import HubProtocol
from smartika_hub.protocol.packet_types import (
    HUB_PORT,
    Device,
    FirmwareVersion,
    Group,
    JoinResult,
    PingResult,
)
from smartika_hub.transport.connection_manager import ConnectionManager
from smartika_hub.transport.retry_policy import ReconnectPolicy, TimeoutConfig
from smartika_hub.transport.socket_abstraction import TCPConnection
from smartika_hub.transport.types import HubEvent

logger = logging.getLogger(__name__)

_POLL_TASK = "poll"


class SmartikaHub(ConnectionManager):
    """Smartika hub client.

    Every command method sends one request and returns the decoded response.
    They raise HubConnectionError subclasses for connection problems and
    PacketDecodeError for malformed responses.

    Example:
        hub = SmartikaHub("192.168.1.50")
        await hub.connect()
        await hub.set_device_power(True, [0x28CF])
        await hub.disconnect()
    """

    def __init__(
        self,
        host: str,
        port: int = HUB_PORT,
        timeout_config: TimeoutConfig | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
        connection: TCPConnection | None = None,
    ) -> None:
        super().__init__(host, port, timeout_config, reconnect_policy, connection)
        self.polling_interval: float = self.timeout_config.polling_interval_seconds
        self._polling_requested: bool = False

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------

    async def ping(self) -> PingResult:
        return await self.execute(HubProtocol.encode_ping_request(), HubProtocol.decode_ping_response)

    async def get_firmware_version(self) -> FirmwareVersion:
        return await self.execute(
            HubProtocol.encode_firmware_version_request(),
            HubProtocol.decode_firmware_version_response,
        )

    async def enable_pairing(self, duration: int = 0) -> JoinResult:
        """Open the Zigbee network for new devices (``duration`` 0 = hub default)."""
        return await self.execute(
            HubProtocol.encode_join_enable_request(duration),
            HubProtocol.decode_join_enable_response,
        )

    async def disable_pairing(self) -> None:
        await self.execute(HubProtocol.encode_join_disable_request(), HubProtocol.decode_join_disable_response)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def discover_devices(self) -> list[Device]:
        """List devices currently visible on the Zigbee network, paired or not."""
        return await self.execute(
            HubProtocol.encode_device_discovery_request(),
            HubProtocol.decode_device_discovery_response,
        )

    async def list_device_ids(self) -> list[int]:
        """Short addresses stored in the hub database."""
        return await self.execute(
            HubProtocol.encode_db_list_device_request(),
            HubProtocol.decode_db_list_device_response,
        )

    async def list_devices(self) -> list[Device]:
        """Devices stored in the hub database, with type and MAC."""
        return await self.execute(
            HubProtocol.encode_db_list_device_full_request(),
            HubProtocol.decode_db_list_device_full_response,
        )

    async def get_device_status(self, device_ids: Sequence[int] | None = None) -> list[Device]:
        """Live state of ``device_ids`` (every device when omitted)."""
        return await self.execute(
            HubProtocol.encode_device_status_request(device_ids),
            HubProtocol.decode_device_status_response,
        )

    async def set_device_power(self, on: bool, device_ids: Sequence[int]) -> list[int]:
        return await self.execute(
            HubProtocol.encode_device_switch_request(on, device_ids),
            HubProtocol.decode_device_switch_response,
        )

    async def set_light_brightness(self, brightness: int, device_ids: Sequence[int]) -> list[int]:
        return await self.execute(
            HubProtocol.encode_light_dim_request(brightness, device_ids),
            HubProtocol.decode_light_dim_response,
        )

    async def set_light_temperature(self, temperature: int, device_ids: Sequence[int]) -> list[int]:
        return await self.execute(
            HubProtocol.encode_light_temperature_request(temperature, device_ids),
            HubProtocol.decode_light_temperature_response,
        )

    async def set_fan_speed(self, speed: int, device_ids: Sequence[int]) -> list[int]:
        return await self.execute(
            HubProtocol.encode_fan_control_request(speed, device_ids),
            HubProtocol.decode_fan_control_response,
        )

    async def set_light_brightness_batch(self, entries: Sequence[tuple[int, int]]) -> list[int]:
        """Set a different brightness per device in one request: ``[(device_id, brightness), ...]``."""
        return await self.execute(
            HubProtocol.encode_light_dim_batch_request(entries),
            HubProtocol.decode_light_dim_batch_response,
        )

    async def set_light_temperature_batch(self, entries: Sequence[tuple[int, int]]) -> list[int]:
        return await self.execute(
            HubProtocol.encode_light_temperature_batch_request(entries),
            HubProtocol.decode_light_temperature_batch_response,
        )

    async def add_devices(self, device_ids: Sequence[int]) -> list[int]:
        """Add devices to the hub database; returns the ids that failed."""
        return await self.execute(
            HubProtocol.encode_db_add_device_request(device_ids),
            HubProtocol.decode_db_add_device_response,
        )

    async def remove_devices(self, device_ids: Sequence[int]) -> list[int]:
        """Remove devices from the hub database; returns the ids that failed."""
        return await self.execute(
            HubProtocol.encode_db_remove_device_request(device_ids),
            HubProtocol.decode_db_remove_device_response,
        )

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def list_groups(self) -> list[int]:
        return await self.execute(HubProtocol.encode_group_list_request(), HubProtocol.decode_group_list_response)

    async def read_group(self, group_id: int) -> Group:
        return await self.execute(
            HubProtocol.encode_group_read_request(group_id),
            HubProtocol.decode_group_read_response,
        )

    async def create_group(self, device_ids: Sequence[int]) -> Group:
        """Create a group; check ``Group.success`` for the hub's verdict."""
        return await self.execute(
            HubProtocol.encode_group_create_request(device_ids),
            HubProtocol.decode_group_create_response,
        )

    async def update_group(self, group_id: int, device_ids: Sequence[int]) -> Group:
        return await self.execute(
            HubProtocol.encode_group_update_request(group_id, device_ids),
            HubProtocol.decode_group_update_response,
        )

    async def delete_groups(self, group_ids: Sequence[int]) -> list[int]:
        """Delete groups; returns the ids that failed."""
        return await self.execute(
            HubProtocol.encode_group_delete_request(group_ids),
            HubProtocol.decode_group_delete_response,
        )

    async def resolve_group_membership(self) -> set[int]:
        """Return the short addresses that belong to at least one group.

        A group that cannot be read is left out; if the group list itself
        cannot be fetched the result is empty.
        """
        try:
            group_ids = await self.list_groups()
        except HubProtocolError as e:
            logger.warning("Group list failed: %s", e, extra={"hub": self.host})
            return set()

        members: set[int] = set()
        for group_id in group_ids:
            try:
                group = await self.read_group(group_id)
            except HubProtocolError as e:
                logger.warning(
                    "Group 0x%04x read failed: %s",
                    group_id,
                    e,
                    extra={"hub": self.host, "group_id": group_id},
                )
                continue
            members.update(group.device_ids)
        return members

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def start_polling(self, interval: float | None = None) -> None:
        """Poll every device's status now and then every ``interval`` seconds.

        Each successful poll emits DEVICE_STATUS_UPDATE. Polling survives
        reconnects and stops on stop_polling() or disconnect().
        """
        if interval is not None:
            self.polling_interval = interval
        self._polling_requested = True
        if self.is_connected:
            self._restart_polling()

    def stop_polling(self) -> None:
        self._polling_requested = False
        task = self._tasks.pop(_POLL_TASK, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            _ = task.cancel()

    def _restart_polling(self) -> None:
        task = self._tasks.get(_POLL_TASK)
        if task is not None and not task.done():
            _ = task.cancel()
        self._start_task(_POLL_TASK, self._poll_loop())

    async def _poll_loop(self) -> None:
        ensure_correlation_id()
        logger.debug("Polling every %.1fs", self.polling_interval, extra={"hub": self.host})
        try:
            while self._owns_task(_POLL_TASK):
                await self._poll_once()
                await asyncio.sleep(self.polling_interval)
        except asyncio.CancelledError:
            logger.debug("Polling cancelled")
            raise

    async def _poll_once(self) -> None:
        """One status poll; failures are logged and never raised."""
        try:
            devices = await self.get_device_status()
        except HubProtocolError as e:
            registry.record_poll(self.host, "failure")
            logger.warning("Status poll failed: %s", e, extra={"hub": self.host})
            return
        except Exception as e:
            registry.record_poll(self.host, "failure")
            logger.exception(
                "Status poll failed (unexpected error)",
                extra={"hub": self.host, "error_type": type(e).__name__},
            )
            return
        registry.record_poll(self.host, "success")
        self._emit(HubEvent.DEVICE_STATUS_UPDATE, devices)

    @override
    def _on_ready(self) -> None:
        if self._polling_requested:
            self._restart_polling()

    @override
    async def disconnect(self) -> None:
        self._polling_requested = False
        await super().disconnect()
