"""Connection management with state machine, handshake, and response routing.

This module implements the ConnectionManager class which owns the hub socket:
the gateway-id handshake and key derivation, the single outstanding command,
response reassembly, keep-alive, reconnection and event notification.

State machine::

    DISCONNECTED → CONNECTING → HANDSHAKING → READY
                       ↑                        │ transport loss
                       └──── RECONNECTING ◄─────┘

Only READY accepts commands. An explicit disconnect() always lands in
DISCONNECTED and never reconnects.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import struct
import time
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from smartika_hub.correlation import correlation_context, ensure_correlation_id, generate_correlation_id
from smartika_hub.metrics import registry
from smartika_hub.protocol.cipher import BLOCK_SIZE, decrypt, decrypt_blocks, derive_key, encrypt, format_identifier
from smartika_hub.protocol.exceptions import HubProtocolError, PacketDecodeError
from smartika_hub.protocol.hub_protocol import HubProtocol
from smartika_hub.protocol.packet_types import HUB_PORT, Command, GatewayId
from smartika_hub.transport.exceptions import (
    CommandBusyError,
    CommandTimeoutError,
    HandshakeError,
    HubConnectionError,
    NotConnectedError,
    TransportError,
)
from smartika_hub.transport.retry_policy import ReconnectPolicy, TimeoutConfig
from smartika_hub.transport.socket_abstraction import TCPConnection
from smartika_hub.transport.types import ConnectionState, HubEvent, PendingCommand

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[..., Awaitable[None] | None]

_READER_TASK = "reader"
_KEEPALIVE_TASK = "keepalive"
_RECONNECT_TASK = "reconnect"


def _command_name(cmd_id: int) -> str:
    try:
        return Command(cmd_id).name.lower()
    except ValueError:
        return f"0x{cmd_id:04x}"


class ConnectionManager:
    """Manages connection lifecycle, handshake, keep-alive, and response routing.

    **Single outstanding command**: the hub answers requests strictly in order
    and carries no request id, so at most one command may be in flight. A
    second caller gets CommandBusyError before anything is written.

    **Task model**: a reader task owns the socket read side for the lifetime
    of a READY connection; keep-alive, polling (see SmartikaHub) and reconnect
    run as named tasks in ``_tasks``. Transport loss cancels everything but
    the reconnect task; disconnect() cancels everything.
    """

    def __init__(
        self,
        host: str,
        port: int = HUB_PORT,
        timeout_config: TimeoutConfig | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
        connection: TCPConnection | None = None,
    ) -> None:
        """Initialize connection manager.

        Args:
            host: Hub address
            port: Hub TCP port (default 1234)
            timeout_config: Timer configuration (defaults to TimeoutConfig() if None)
            reconnect_policy: Reconnect delay policy (defaults to ReconnectPolicy() if None)
            connection: TCP connection abstraction (created from host/port if None)
        """
        self.host: str = host
        self.port: int = port
        self.timeout_config: TimeoutConfig = timeout_config or TimeoutConfig()
        self.reconnect_policy: ReconnectPolicy = reconnect_policy or ReconnectPolicy()
        self.conn: TCPConnection = connection or TCPConnection(
            host,
            port,
            connect_timeout=self.timeout_config.connect_timeout_seconds,
            io_timeout=self.timeout_config.command_timeout_seconds,
        )
        self.state: ConnectionState = ConnectionState.DISCONNECTED
        self.hub_id: bytes | None = None

        self._key: bytes | None = None
        self._pending: PendingCommand | None = None
        self._rx_buffer: bytearray = bytearray()
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._listener_tasks: set[asyncio.Task[Any]] = set()
        self._listeners: dict[HubEvent, list[Listener]] = {event: [] for event in HubEvent}
        self._closing: bool = False

    # ------------------------------------------------------------------
    # State and task bookkeeping
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Check if the connection is READY (best effort, may be stale)."""
        return self.state is ConnectionState.READY

    @property
    def reconnect_task(self) -> asyncio.Task[Any] | None:
        return self._tasks.get(_RECONNECT_TASK)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug(
            "State %s → %s",
            self.state.value,
            state.value,
            extra={"hub": self.host, "from_state": self.state.value, "to_state": state.value},
        )
        self.state = state
        registry.record_connection_state(self.host, state.value)

    def _start_task(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"smartika-{name}")
        self._tasks[name] = task
        return task

    def _owns_task(self, name: str) -> bool:
        """True while the calling task is still the registered ``name`` task."""
        return self.state is ConnectionState.READY and self._tasks.get(name) is asyncio.current_task()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _stop_tasks(self, keep: tuple[str, ...] = ()) -> list[asyncio.Task[Any]]:
        """Cancel managed tasks except ``keep`` and the calling task.

        Returns the tasks that were cancelled so callers able to await can
        wait for them to finish.
        """
        current = asyncio.current_task()
        cancelled: list[asyncio.Task[Any]] = []
        for name in [n for n in self._tasks if n not in keep]:
            task = self._tasks.pop(name)
            if task is not current and not task.done():
                _ = task.cancel()
                cancelled.append(task)
        for task in list(self._background_tasks):
            if task is not current and not task.done():
                _ = task.cancel()
                cancelled.append(task)
        return cancelled

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, event: HubEvent, callback: Listener) -> None:
        """Register ``callback`` for ``event``; coroutine functions are scheduled as tasks."""
        self._listeners[event].append(callback)

    def remove_listener(self, event: HubEvent, callback: Listener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners[event].remove(callback)

    def _emit(self, event: HubEvent, *args: object) -> None:
        for callback in list(self._listeners[event]):
            try:
                result = callback(*args)
            except Exception:
                # Listener failures must never reach the connection
                logger.exception("Listener for %s failed", event.value, extra={"hub": self.host})
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(self._await_listener(event, result))
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_tasks.discard)

    async def _await_listener(self, event: HubEvent, result: Awaitable[None]) -> None:
        try:
            await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Listener for %s failed", event.value, extra={"hub": self.host})

    # ------------------------------------------------------------------
    # Connect / handshake
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket, run the gateway-id handshake and derive the session key.

        No-op when already READY. On failure the socket is closed and the state
        returns to DISCONNECTED (RECONNECTING inside a reconnect cycle).

        Raises:
            TransportError: TCP connect failed or the socket closed mid-handshake
            HandshakeError: No valid gateway-id response within handshake_timeout
            HubConnectionError: Another connect is already in progress
        """
        if self.state is ConnectionState.READY:
            return
        if self.state in (ConnectionState.CONNECTING, ConnectionState.HANDSHAKING):
            reason = "connect_in_progress"
            raise HubConnectionError(reason, self.state.value)

        fallback = (
            ConnectionState.RECONNECTING
            if self.state is ConnectionState.RECONNECTING
            else ConnectionState.DISCONNECTED
        )

        logger.info("→ Connecting to hub", extra={"hub": self.host, "port": self.port})
        self._set_state(ConnectionState.CONNECTING)
        if not await self.conn.connect():
            self._set_state(fallback)
            registry.record_handshake(self.host, "connect_failed")
            reason = f"connect failed: {self.conn.last_error or 'unknown'}"
            raise TransportError(reason, ConnectionState.CONNECTING.value)

        self._set_state(ConnectionState.HANDSHAKING)
        try:
            gateway = await self._handshake()
        except HubConnectionError:
            registry.record_handshake(self.host, "failure")
            await self.conn.close()
            self._set_state(fallback)
            raise

        self.hub_id = gateway.hub_id
        self._key = derive_key(gateway.hub_id)
        self._rx_buffer.clear()
        self._set_state(ConnectionState.READY)
        registry.record_handshake(self.host, "success")

        self._start_task(_READER_TASK, self._reader())
        self._start_task(_KEEPALIVE_TASK, self._keepalive())
        self._on_ready()

        logger.info(
            "✓ Connected to hub",
            extra={"hub": self.host, "hub_id": format_identifier(gateway.hub_id)},
        )
        self._emit(HubEvent.CONNECTED)

    async def _handshake(self) -> GatewayId:
        """Send the clear-text gateway-id request and read the reply."""
        if not await self.conn.send(HubProtocol.encode_gateway_id_request()):
            reason = f"handshake send failed: {self.conn.last_error or 'unknown'}"
            raise TransportError(reason, ConnectionState.HANDSHAKING.value)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_config.handshake_timeout_seconds
        buffer = bytearray()
        while True:
            remaining = deadline - loop.time()
            chunk = await self.conn.recv(timeout=remaining) if remaining > 0 else None
            if chunk is None:
                reason = "timeout"
                raise HandshakeError(reason)
            if not chunk:
                reason = f"connection closed during handshake: {self.conn.last_error or 'eof'}"
                raise TransportError(reason, ConnectionState.HANDSHAKING.value)

            buffer += chunk
            frame_length = HubProtocol.frame_length(buffer)
            if frame_length is None and len(buffer) >= 6:
                reason = f"unexpected response {bytes(buffer[:2]).hex()}"
                raise HandshakeError(reason)
            if frame_length is not None and len(buffer) >= frame_length:
                break

        try:
            return HubProtocol.decode_gateway_id_response(bytes(buffer[:frame_length]))
        except PacketDecodeError as e:
            registry.record_decode_error(self.host, e.reason.split(" ")[0])
            raise HandshakeError(e.reason) from e

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_command(self, request: bytes, timeout: float | None = None) -> bytes:
        """Encrypt and send ``request``, then wait for the decrypted response frame.

        Args:
            request: Clear-text frame from HubProtocol.encode_*
            timeout: Response deadline (default: TimeoutConfig.command_timeout_seconds)

        Returns:
            Decrypted response frame, padding removed

        Raises:
            NotConnectedError: Connection is not READY
            CommandBusyError: Another command is awaiting its response (nothing written)
            CommandTimeoutError: No complete response before the deadline
            TransportError: Socket failed or connection closed while waiting
        """
        if self.state is not ConnectionState.READY or self._key is None:
            raise NotConnectedError(self.state.value)
        if self._pending is not None:
            raise CommandBusyError(self._pending.cmd_id, self.state.value)

        if timeout is None:
            timeout = self.timeout_config.command_timeout_seconds
        key = self._key
        cmd_id = int.from_bytes(request[2:4], "big")
        command = _command_name(cmd_id)
        loop = asyncio.get_running_loop()

        correlation_id = generate_correlation_id()
        with correlation_context(correlation_id):
            pending = PendingCommand(cmd_id=cmd_id, future=loop.create_future(), correlation_id=correlation_id)
            self._pending = pending
            self._rx_buffer.clear()
            pending.timeout_handle = loop.call_later(timeout, self._expire_pending, pending, timeout)

            try:
                logger.debug(
                    "→ Sending %s",
                    command,
                    extra={"hub": self.host, "command": command, "request": request.hex()},
                )
                pending.sent_at = time.perf_counter()
                if not await self.conn.send(encrypt(request, key)):
                    self._handle_transport_loss(
                        "write_failed",
                        TransportError(f"write failed: {self.conn.last_error or 'unknown'}", self.state.value),
                    )
                response = await pending.future
            except HubConnectionError as e:
                outcome = "timeout" if isinstance(e, CommandTimeoutError) else "error"
                registry.record_command(self.host, command, outcome)
                logger.warning(
                    "✗ %s failed: %s",
                    command,
                    e,
                    extra={"hub": self.host, "command": command, "reason": e.reason},
                )
                raise
            finally:
                pending.cancel_timer()
                if self._pending is pending:
                    self._pending = None

            latency = time.perf_counter() - pending.sent_at
            registry.record_command(self.host, command, "success")
            registry.record_command_latency(self.host, command, latency)
            logger.debug(
                "✓ %s answered in %.1fms",
                command,
                latency * 1000,
                extra={"hub": self.host, "command": command, "response": response.hex()},
            )
            return response

    async def execute(self, request: bytes, decoder: Callable[[bytes], T], timeout: float | None = None) -> T:
        """Send ``request`` and decode the response with ``decoder``.

        Raises:
            PacketDecodeError: Response could not be decoded (connection stays up)
        """
        response = await self.send_command(request, timeout)
        try:
            return decoder(response)
        except PacketDecodeError as e:
            self._record_decode_error(e)
            raise
        except (IndexError, ValueError, struct.error) as e:
            error = PacketDecodeError(f"malformed_payload: {e}", response)
            self._record_decode_error(error)
            raise error from e

    def _record_decode_error(self, error: PacketDecodeError) -> None:
        registry.record_decode_error(self.host, error.reason.split(" ")[0].rstrip(":"))
        logger.warning(
            "Response decode failed: %s",
            error.reason,
            extra={"hub": self.host, "data_preview": error.data_preview.hex()},
        )

    def _expire_pending(self, pending: PendingCommand, timeout: float) -> None:
        if self._pending is not pending or pending.future.done():
            return
        self._pending = None
        self._rx_buffer.clear()
        pending.timeout_handle = None
        pending.future.set_exception(CommandTimeoutError(pending.cmd_id, timeout, pending.correlation_id))

    def _fail_pending(self, error: HubConnectionError) -> None:
        pending = self._pending
        self._pending = None
        self._rx_buffer.clear()
        if pending is None:
            return
        pending.cancel_timer()
        if not pending.future.done():
            pending.future.set_exception(error)

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _reader(self) -> None:
        """Read the socket until EOF, routing bytes to the pending command.

        An idle read timeout sends an opportunistic ping; EOF or a socket
        error tears the connection down and schedules a reconnect.
        """
        try:
            while True:
                chunk = await self.conn.recv(timeout=self.timeout_config.idle_timeout_seconds)
                if chunk is None:
                    self._spawn(self._ping_quietly("idle"))
                    continue
                if not chunk:
                    error = TransportError(self.conn.last_error, self.state.value) if self.conn.last_error else None
                    self._handle_transport_loss(self.conn.last_error or "eof", error)
                    return
                self._on_data(chunk)
        except asyncio.CancelledError:
            logger.debug("Reader cancelled (clean shutdown)")
            raise
        except Exception as e:
            # The reader is the only consumer of the socket; losing it means losing the connection
            logger.exception("Reader crashed", extra={"hub": self.host, "error": str(e)})
            self._handle_transport_loss("reader_crash", e)

    def _on_data(self, chunk: bytes) -> None:
        pending = self._pending
        if pending is None or pending.future.done():
            logger.debug(
                "Discarding %d unsolicited bytes",
                len(chunk),
                extra={"hub": self.host, "bytes": len(chunk)},
            )
            self._rx_buffer.clear()
            return

        self._rx_buffer += chunk
        response = self._extract_response()
        if response is None:
            return
        self._rx_buffer.clear()
        pending.future.set_result(response)

    def _extract_response(self) -> bytes | None:
        """Return the decrypted response once its block-aligned frame is buffered.

        The first block is decrypted on its own to read the announced frame
        length; CBC decryption of the full frame yields the same first block.
        """
        key = self._key
        if key is None or len(self._rx_buffer) < BLOCK_SIZE:
            return None

        header = decrypt_blocks(bytes(self._rx_buffer[:BLOCK_SIZE]), key)
        frame_length = HubProtocol.frame_length(header)
        if frame_length is None:
            # Unknown start mark: hand over what we have and let the decoder reject it
            aligned = len(self._rx_buffer) - len(self._rx_buffer) % BLOCK_SIZE
            return decrypt_blocks(bytes(self._rx_buffer[:aligned]), key)

        needed = -(-frame_length // BLOCK_SIZE) * BLOCK_SIZE
        if len(self._rx_buffer) < needed:
            return None
        return decrypt(bytes(self._rx_buffer[:needed]), key)

    # ------------------------------------------------------------------
    # Keep-alive
    # ------------------------------------------------------------------

    async def _keepalive(self) -> None:
        ensure_correlation_id()
        try:
            while self._owns_task(_KEEPALIVE_TASK):
                await asyncio.sleep(self.timeout_config.ping_interval_seconds)
                await self._ping_quietly("keepalive")
        except asyncio.CancelledError:
            logger.debug("Keep-alive cancelled")
            raise

    async def _ping_quietly(self, reason: str) -> None:
        """Ping the hub; failures are logged at debug level and never raised."""
        if self.state is not ConnectionState.READY or self._pending is not None:
            return
        try:
            _ = await self.execute(HubProtocol.encode_ping_request(), HubProtocol.decode_ping_response)
        except HubProtocolError as e:
            registry.record_keepalive(self.host, "failure")
            logger.debug("Ping (%s) failed: %s", reason, e, extra={"hub": self.host, "reason": reason})
        else:
            registry.record_keepalive(self.host, "success")

    # ------------------------------------------------------------------
    # Loss / reconnect / disconnect
    # ------------------------------------------------------------------

    def _handle_transport_loss(self, reason: str, error: Exception | None = None) -> None:
        """Tear down a READY connection after EOF or a socket error."""
        if self.state is not ConnectionState.READY:
            return

        logger.warning("Connection to hub lost: %s", reason, extra={"hub": self.host, "reason": reason})
        self._set_state(ConnectionState.DISCONNECTED)
        self._key = None
        self._fail_pending(TransportError(f"connection lost: {reason}", ConnectionState.READY.value))
        _ = self._stop_tasks(keep=(_RECONNECT_TASK,))

        if error is not None:
            self._emit(HubEvent.ERROR, error)
        self._emit(HubEvent.DISCONNECTED)
        self._trigger_reconnect(reason)

    def _trigger_reconnect(self, reason: str) -> None:
        """Trigger reconnection if not already in progress.

        Prevents multiple concurrent reconnection attempts. If a reconnection
        is already running, logs and skips the new trigger.
        """
        if self._closing:
            return
        task = self.reconnect_task
        if task is None or task.done():
            logger.info("Triggering reconnection", extra={"hub": self.host, "reason": reason})
            self._start_task(_RECONNECT_TASK, self.reconnect(reason))
        else:
            logger.debug("Reconnection already in progress", extra={"hub": self.host, "reason": reason})

    async def reconnect(self, reason: str = "unknown") -> None:
        """Retry connect() after a fixed delay until it succeeds or disconnect() is called."""
        logger.info("→ Starting reconnection", extra={"hub": self.host, "reason": reason})
        await self.conn.close()

        attempt = 0
        while self.reconnect_policy.should_retry(attempt):
            self._set_state(ConnectionState.RECONNECTING)
            await asyncio.sleep(self.reconnect_policy.get_delay(attempt))
            attempt += 1
            registry.record_reconnection(self.host, reason)
            try:
                await self.connect()
            except HubConnectionError as e:
                logger.warning(
                    "Reconnect attempt %d failed: %s",
                    attempt,
                    e,
                    extra={"hub": self.host, "attempt": attempt, "reason": e.reason},
                )
                continue

            logger.info("✓ Reconnection successful", extra={"hub": self.host, "attempts": attempt})
            return

        self._set_state(ConnectionState.DISCONNECTED)
        logger.error("✗ Reconnection abandoned", extra={"hub": self.host, "attempts": attempt})

    def _on_ready(self) -> None:
        """Hook for subclasses to start per-connection activity after each handshake."""

    async def disconnect(self) -> None:
        """Close the connection and stop every task. Idempotent; never reconnects."""
        logger.info("Disconnecting...", extra={"hub": self.host})
        was_ready = self.state is ConnectionState.READY
        self._closing = True
        try:
            self._set_state(ConnectionState.DISCONNECTED)
            self._key = None
            self._fail_pending(TransportError("disconnected", ConnectionState.DISCONNECTED.value))
            for task in self._stop_tasks():
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            await self.conn.close()
        finally:
            self._closing = False
            self._rx_buffer.clear()

        if was_ready:
            self._emit(HubEvent.DISCONNECTED)
        logger.info("Disconnect complete", extra={"hub": self.host})

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.host}:{self.port}, {self.state.value})"
