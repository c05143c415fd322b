"""Command-line tool for a Smartika hub.

Usage:
    smartika-hub hub-discover [--timeout 10]
    smartika-hub --host 192.168.1.50 status all
    smartika-hub --host 192.168.1.50 dim 50% 0x28cf 0x28d0
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from pathlib import Path

import uvloop

from smartika_hub import __version__
from smartika_hub.config import HubConfig, load_config
from smartika_hub.discovery import discover_hubs
from smartika_hub.logging_abstraction import configure_logging
from smartika_hub.metrics import start_metrics_server
from smartika_hub.protocol.cipher import derive_key, format_identifier
from smartika_hub.protocol.exceptions import HubProtocolError
from smartika_hub.protocol.packet_types import DEVICE_ID_BROADCAST, Device, DeviceCategory
from smartika_hub.transport.hub_client import SmartikaHub
from smartika_hub.transport.retry_policy import TimeoutConfig
from smartika_hub.transport.types import HubEvent


Handler = Callable[[SmartikaHub, argparse.Namespace], Awaitable[None]]


# ----------------------------------------------------------------------
# Argument types
# ----------------------------------------------------------------------


def parse_device_id(text: str) -> int:
    """``all`` → broadcast, ``0x28cf`` → hex, anything else decimal."""
    if text.casefold() == "all":
        return DEVICE_ID_BROADCAST
    try:
        value = int(text, 16) if text.casefold().startswith("0x") else int(text, 10)
    except ValueError as e:
        msg = f"invalid device id: {text}"
        raise argparse.ArgumentTypeError(msg) from e
    if not 0 <= value <= 0xFFFF:
        msg = f"device id out of range: {text}"
        raise argparse.ArgumentTypeError(msg)
    return value


def parse_level(text: str) -> int:
    """0-255, or a percentage such as ``50%``."""
    try:
        if text.endswith("%"):
            value = round(int(text[:-1]) / 100 * 255)
        else:
            value = int(text)
    except ValueError as e:
        msg = f"invalid level: {text}"
        raise argparse.ArgumentTypeError(msg) from e
    if not 0 <= value <= 0xFF:
        msg = f"level must be 0-255 or 0-100%, got {text}"
        raise argparse.ArgumentTypeError(msg)
    return value


def format_device_id(device_id: int) -> str:
    return f"0x{device_id:04x}"


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------


def print_device_table(devices: Sequence[Device], show_mac: bool = False) -> None:
    if not devices:
        print("  No devices found.")
        return

    type_width = max(12, *(len(d.type_name) for d in devices)) + 2
    header = f"  {'#':<4}{'Address':<10}{'Type':<{type_width}}{'Category':<12}"
    if show_mac:
        header += "MAC Address"
    print(header)
    print("  " + "-" * (len(header) + (17 if show_mac else 0)))
    for index, device in enumerate(devices, start=1):
        row = f"  {index:<4}{format_device_id(device.short_address):<10}{device.type_name:<{type_width}}{device.category:<12}"
        if show_mac and device.mac_address:
            row += ":".join(device.mac_address[i : i + 2] for i in range(0, len(device.mac_address), 2))
        print(row)


def print_status(devices: Sequence[Device]) -> None:
    if not devices:
        print("  No devices found.")
        return

    for index, device in enumerate(devices, start=1):
        print(f"  [{index}] {device.type_name} ({format_device_id(device.short_address)})")
        if device.on is not None:
            print(f"      Power:       {'ON' if device.on else 'OFF'}")
        if device.brightness is not None:
            print(f"      Brightness:  {round(device.brightness / 255 * 100)}%")
        if device.temperature is not None:
            label = "warm" if device.temperature < 85 else "neutral" if device.temperature < 170 else "cool"
            print(f"      Temperature: {device.temperature} ({label})")
        if device.speed is not None:
            print(f"      Speed:       {device.speed}")
        if device.raw_state:
            print(f"      Raw State:   {device.raw_state}")


def print_ids(label: str, ids: Sequence[int]) -> None:
    print(f"{label} ({len(ids)}): {', '.join(format_device_id(i) for i in ids) or '-'}")


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------


async def cmd_hub_info(hub: SmartikaHub, _args: argparse.Namespace) -> None:
    firmware = await hub.get_firmware_version()
    hub_id = hub.hub_id or b""
    print(f"Hub ID:         {format_identifier(hub_id)}")
    print(f"Firmware:       {firmware.version}")
    print(f"Encryption key: {derive_key(hub_id).hex().upper()}")


async def cmd_ping(hub: SmartikaHub, _args: argparse.Namespace) -> None:
    result = await hub.ping()
    print(f"Pong (alarm {'set' if result.alarm_set else 'not set'})")


async def cmd_firmware(hub: SmartikaHub, _args: argparse.Namespace) -> None:
    print(f"Firmware version: {(await hub.get_firmware_version()).version}")


async def cmd_join_enable(hub: SmartikaHub, args: argparse.Namespace) -> None:
    result = await hub.enable_pairing(args.duration)
    print(f"Pairing enabled for {result.duration or 'default'} seconds")


async def cmd_join_disable(hub: SmartikaHub, _args: argparse.Namespace) -> None:
    await hub.disable_pairing()
    print("Pairing disabled")


async def cmd_discover(hub: SmartikaHub, _args: argparse.Namespace) -> None:
    print_device_table(await hub.discover_devices(), show_mac=True)


async def cmd_status(hub: SmartikaHub, args: argparse.Namespace) -> None:
    print_status(await hub.get_device_status(args.device_ids or None))


async def cmd_on(hub: SmartikaHub, args: argparse.Namespace) -> None:
    print_ids("Switched on", await hub.set_device_power(True, args.device_ids))


async def cmd_off(hub: SmartikaHub, args: argparse.Namespace) -> None:
    print_ids("Switched off", await hub.set_device_power(False, args.device_ids))


async def cmd_dim(hub: SmartikaHub, args: argparse.Namespace) -> None:
    print_ids(f"Brightness {args.level}", await hub.set_light_brightness(args.level, args.device_ids))


async def cmd_temp(hub: SmartikaHub, args: argparse.Namespace) -> None:
    print_ids(f"Temperature {args.level}", await hub.set_light_temperature(args.level, args.device_ids))


async def cmd_fan(hub: SmartikaHub, args: argparse.Namespace) -> None:
    print_ids(f"Fan speed {args.level}", await hub.set_fan_speed(args.level, args.device_ids))


async def cmd_list(hub: SmartikaHub, _args: argparse.Namespace) -> None:
    print_device_table(await hub.list_devices(), show_mac=True)


async def cmd_db_add(hub: SmartikaHub, args: argparse.Namespace) -> None:
    failed = await hub.add_devices(args.device_ids)
    if failed:
        print_ids("Failed to add", failed)
    else:
        print("All devices added")


async def cmd_db_remove(hub: SmartikaHub, args: argparse.Namespace) -> None:
    failed = await hub.remove_devices(args.device_ids)
    if failed:
        print_ids("Failed to remove", failed)
    else:
        print("All devices removed")


async def cmd_groups(hub: SmartikaHub, _args: argparse.Namespace) -> None:
    print_ids("Groups", await hub.list_groups())


async def cmd_group_read(hub: SmartikaHub, args: argparse.Namespace) -> None:
    group = await hub.read_group(args.group_id)
    print_ids(f"Group {format_device_id(group.group_id)} members", group.device_ids)


async def cmd_group_create(hub: SmartikaHub, args: argparse.Namespace) -> None:
    group = await hub.create_group(args.device_ids)
    if group.success:
        print(f"Created group {format_device_id(group.group_id)}")
    else:
        print("Failed to create group: hub returned no group id")


async def cmd_group_update(hub: SmartikaHub, args: argparse.Namespace) -> None:
    group = await hub.update_group(args.group_id, args.device_ids)
    if group.success:
        print(f"Updated group {format_device_id(group.group_id)}")
    else:
        print("Failed to update group")


async def cmd_group_delete(hub: SmartikaHub, args: argparse.Namespace) -> None:
    failed = await hub.delete_groups(args.group_ids)
    if failed:
        print_ids("Failed to delete", failed)
    else:
        print("All groups deleted")


async def cmd_grouped(hub: SmartikaHub, _args: argparse.Namespace) -> None:
    """Show which devices stand alone and which are covered by a group."""
    devices = await hub.list_devices()
    grouped = await hub.resolve_group_membership()

    standalone = [d for d in devices if d.category is not DeviceCategory.REMOTE and d.short_address not in grouped]
    print(f"Devices in hub:    {len(devices)}")
    print(f"Devices in groups: {len(grouped)}")
    print("Standalone devices:")
    print_device_table(standalone)


async def cmd_watch(hub: SmartikaHub, args: argparse.Namespace) -> None:
    """Poll device status until interrupted."""
    hub.add_listener(HubEvent.DEVICE_STATUS_UPDATE, print_status)
    hub.start_polling(args.interval)
    await asyncio.Event().wait()


# ----------------------------------------------------------------------
# Parser / entry point
# ----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="smartika-hub", description="Smartika hub local control")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", help="Hub IP address (default: SMARTIKA_HOST)")
    parser.add_argument("--port", type=int, help="Hub TCP port (default: 1234)")
    parser.add_argument("--config", type=Path, help="YAML config file")
    parser.add_argument("--timeout", type=float, default=10.0, help="Command timeout in seconds")
    parser.add_argument("-D", "--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True, metavar="command")

    discover = sub.add_parser("hub-discover", help="Discover hubs via UDP broadcast")
    discover.add_argument("--timeout", dest="discover_timeout", type=float, default=10.0)

    def add(name: str, handler: Handler, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.set_defaults(handler=handler)
        return p

    add("hub-info", cmd_hub_info, "Hub ID, firmware and encryption key")
    add("ping", cmd_ping, "Send a keep-alive ping")
    add("firmware", cmd_firmware, "Hub firmware version")
    add("join-enable", cmd_join_enable, "Enable device pairing").add_argument(
        "duration", nargs="?", type=int, default=0, help="Seconds (0 = hub default)"
    )
    add("join-disable", cmd_join_disable, "Disable device pairing")
    add("discover", cmd_discover, "Devices visible on the network")
    add("status", cmd_status, "Device status").add_argument(
        "device_ids", nargs="*", type=parse_device_id, metavar="device-id"
    )
    for name, handler, help_text in (
        ("on", cmd_on, "Turn devices on"),
        ("off", cmd_off, "Turn devices off"),
        ("db-add", cmd_db_add, "Add devices to the hub database"),
        ("db-remove", cmd_db_remove, "Remove devices from the hub database"),
        ("group-create", cmd_group_create, "Create a group"),
    ):
        add(name, handler, help_text).add_argument("device_ids", nargs="+", type=parse_device_id, metavar="device-id")
    for name, handler, help_text in (
        ("dim", cmd_dim, "Set light brightness"),
        ("temp", cmd_temp, "Set light colour temperature (0 warm, 255 cool)"),
        ("fan", cmd_fan, "Set fan speed"),
    ):
        p = add(name, handler, help_text)
        p.add_argument("level", type=parse_level)
        p.add_argument("device_ids", nargs="+", type=parse_device_id, metavar="device-id")
    add("list", cmd_list, "Devices stored in the hub database")
    add("groups", cmd_groups, "List groups")
    add("group-read", cmd_group_read, "Group members").add_argument("group_id", type=parse_device_id)
    update = add("group-update", cmd_group_update, "Replace group members")
    update.add_argument("group_id", type=parse_device_id)
    update.add_argument("device_ids", nargs="+", type=parse_device_id, metavar="device-id")
    add("group-delete", cmd_group_delete, "Delete groups").add_argument(
        "group_ids", nargs="+", type=parse_device_id, metavar="group-id"
    )
    add("grouped", cmd_grouped, "Standalone vs grouped devices")
    add("watch", cmd_watch, "Poll device status until interrupted").add_argument(
        "--interval", type=float, default=None, help="Seconds between polls"
    )
    return parser


async def run_discover(timeout: float) -> int:
    print(f"Listening for hubs for {timeout:.0f}s...")
    hubs = await discover_hubs(timeout)
    if not hubs:
        print("No hubs found.")
        return 0
    for hub in hubs:
        mode = " (bootloader)" if hub.bootloader else ""
        print(f"  {hub.hub_id}  {hub.ip}  MAC {hub.mac}{mode}")
    return 0


async def run_command(config: HubConfig, args: argparse.Namespace) -> int:
    if not config.host:
        print("Error: hub address required (--host or SMARTIKA_HOST)", file=sys.stderr)
        return 2

    timeouts = TimeoutConfig(command_timeout=args.timeout, polling_interval=config.polling_interval)
    hub = SmartikaHub(config.host, config.port, timeout_config=timeouts)
    try:
        await hub.connect()
        await args.handler(hub, args)
    finally:
        await hub.disconnect()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``smartika-hub`` console script."""
    args = build_parser().parse_args(argv)

    overrides = {k: v for k, v in (("host", args.host), ("port", args.port)) if v is not None}
    try:
        config = replace(load_config(args.config), **overrides)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    debug = args.debug or config.debug
    configure_logging(level=logging.DEBUG if debug else logging.WARNING)
    if config.metrics_port:
        start_metrics_server(config.metrics_port)

    try:
        if args.command == "hub-discover":
            return uvloop.run(run_discover(args.discover_timeout))
        return uvloop.run(run_command(config, args))
    except HubProtocolError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
