"""Unit tests for connection manager."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from smartika_hub.protocol.cipher import encrypt
from smartika_hub.protocol.exceptions import BadStartMarkError, PacketDecodeError, UnexpectedCommandError
from smartika_hub.protocol.hub_protocol import HubProtocol
from smartika_hub.protocol.packet_types import Command
from smartika_hub.transport.connection_manager import ConnectionManager
from smartika_hub.transport.exceptions import (
    CommandBusyError,
    CommandTimeoutError,
    HandshakeError,
    HubConnectionError,
    NotConnectedError,
    TransportError,
)
from smartika_hub.transport.retry_policy import ReconnectPolicy, TimeoutConfig
from smartika_hub.transport.types import ConnectionState, HubEvent, PendingCommand
from tests.fixtures.hub_packets import (
    GATEWAY_ID_REQUEST,
    HUB_ID,
    PING_REQUEST,
    response,
    status_entry,
)
from tests.helpers.expectations import expect_async_exception
from tests.helpers.fake_hub import FakeHubConnection

# Test constants
HUB_HOST = "192.0.2.10"
PING_RESPONSE = response(Command.PING, b"\x00")
FAST_TIMEOUTS = TimeoutConfig(
    connect_timeout=0.5,
    handshake_timeout=0.2,
    command_timeout=0.5,
    ping_interval=60.0,
    idle_timeout=60.0,
)


class ConnectionManagerTestHarness(ConnectionManager):
    """Expose protected helpers for testing."""

    @property
    def pending(self) -> PendingCommand | None:
        return self._pending

    @property
    def managed_tasks(self) -> dict[str, asyncio.Task[Any]]:
        return dict(self._tasks)

    def trigger_reconnect(self, reason: str) -> None:
        self._trigger_reconnect(reason)

    def set_closing(self, closing: bool) -> None:
        self._closing = closing


def make_manager(
    conn: FakeHubConnection,
    timeout_config: TimeoutConfig = FAST_TIMEOUTS,
    reconnect_policy: ReconnectPolicy | None = None,
) -> ConnectionManagerTestHarness:
    return ConnectionManagerTestHarness(
        HUB_HOST,
        timeout_config=timeout_config,
        reconnect_policy=reconnect_policy or ReconnectPolicy(delay_seconds=0.01),
        connection=conn,  # type: ignore[arg-type]
    )


@contextlib.asynccontextmanager
async def connected(mgr: ConnectionManager) -> AsyncIterator[ConnectionManager]:
    await mgr.connect()
    try:
        yield mgr
    finally:
        await mgr.disconnect()


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def answer_pings(request: bytes) -> bytes | None:
    if request == PING_REQUEST:
        return PING_RESPONSE
    return None


@pytest.fixture
def fake_conn() -> FakeHubConnection:
    return FakeHubConnection()


class TestConnectionState:
    """Tests for ConnectionState enum."""

    def test_connection_state_values(self):
        assert ConnectionState.DISCONNECTED.value == "disconnected"
        assert ConnectionState.CONNECTING.value == "connecting"
        assert ConnectionState.HANDSHAKING.value == "handshaking"
        assert ConnectionState.READY.value == "ready"
        assert ConnectionState.RECONNECTING.value == "reconnecting"


class TestConnectionManagerInit:
    """Tests for ConnectionManager initialization."""

    def test_init_defaults(self, fake_conn: FakeHubConnection):
        mgr = ConnectionManagerTestHarness(HUB_HOST, connection=fake_conn)  # type: ignore[arg-type]

        assert mgr.port == 1234
        assert mgr.state is ConnectionState.DISCONNECTED
        assert mgr.is_connected is False
        assert mgr.hub_id is None
        assert mgr.pending is None
        assert mgr.timeout_config.command_timeout_seconds == 10.0
        assert mgr.reconnect_policy.delay_seconds == 5.0

    def test_init_builds_tcp_connection(self):
        mgr = ConnectionManager(HUB_HOST, 4321, timeout_config=TimeoutConfig(connect_timeout=3.0))

        assert mgr.conn.host == HUB_HOST
        assert mgr.conn.port == 4321
        assert mgr.conn.connect_timeout == 3.0

    def test_repr(self, fake_conn: FakeHubConnection):
        assert repr(make_manager(fake_conn)) == f"ConnectionManagerTestHarness({HUB_HOST}:1234, disconnected)"


class TestConnectionManagerConnect:
    """Tests for ConnectionManager.connect()."""

    @pytest.mark.asyncio
    async def test_connect_success(self, fake_conn: FakeHubConnection):
        """Handshake sends the clear gateway-id request and derives the key."""
        mgr = make_manager(fake_conn)
        on_connected = MagicMock()
        mgr.add_listener(HubEvent.CONNECTED, on_connected)

        async with connected(mgr):
            assert mgr.state is ConnectionState.READY
            assert mgr.hub_id == HUB_ID
            assert fake_conn.sent == [GATEWAY_ID_REQUEST]
            assert {"reader", "keepalive"} <= set(mgr.managed_tasks)
            on_connected.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_connect_when_ready_is_noop(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            await mgr.connect()
            assert fake_conn.connect_calls == 1

    @pytest.mark.asyncio
    async def test_connect_while_connecting(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)
        mgr.state = ConnectionState.HANDSHAKING

        error = await expect_async_exception(mgr.connect, HubConnectionError)

        assert error.reason == "connect_in_progress"
        assert fake_conn.connect_calls == 0

    @pytest.mark.asyncio
    async def test_connect_refused(self, fake_conn: FakeHubConnection):
        fake_conn.connect_result = False
        mgr = make_manager(fake_conn)

        error = await expect_async_exception(mgr.connect, TransportError)

        assert "Connection refused" in error.reason
        assert mgr.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, fake_conn: FakeHubConnection):
        fake_conn.gateway_response = None
        mgr = make_manager(fake_conn)

        error = await expect_async_exception(mgr.connect, HandshakeError)

        assert "timeout" in error.reason
        assert mgr.state is ConnectionState.DISCONNECTED
        assert fake_conn.close_calls == 1

    @pytest.mark.asyncio
    async def test_handshake_wrong_command(self, fake_conn: FakeHubConnection):
        fake_conn.gateway_response = PING_RESPONSE
        mgr = make_manager(fake_conn)

        error = await expect_async_exception(mgr.connect, HandshakeError)

        assert "unexpected_command" in error.reason
        assert mgr.hub_id is None

    @pytest.mark.asyncio
    async def test_handshake_garbage(self, fake_conn: FakeHubConnection):
        fake_conn.gateway_response = b"\x12\x34" + bytes(9)
        mgr = make_manager(fake_conn)

        error = await expect_async_exception(mgr.connect, HandshakeError)

        assert "unexpected response" in error.reason

    @pytest.mark.asyncio
    async def test_handshake_split_response(self, fake_conn: FakeHubConnection):
        """The gateway-id reply may arrive in several reads."""
        reply = fake_conn.gateway_response
        assert reply is not None
        fake_conn.gateway_response = None
        fake_conn.feed(reply[:4])
        fake_conn.feed(reply[4:15])
        fake_conn.feed(reply[15:])
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            assert mgr.hub_id == HUB_ID

    @pytest.mark.asyncio
    async def test_handshake_eof(self, fake_conn: FakeHubConnection):
        fake_conn.gateway_response = None
        fake_conn.drop()
        mgr = make_manager(fake_conn)

        error = await expect_async_exception(mgr.connect, TransportError)

        assert "closed during handshake" in error.reason


class TestSendCommand:
    """Tests for the single outstanding command."""

    @pytest.mark.asyncio
    async def test_not_connected(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)

        error = await expect_async_exception(mgr.send_command, NotConnectedError, PING_REQUEST)

        assert error.state == "disconnected"
        assert fake_conn.sent == []

    @pytest.mark.asyncio
    async def test_round_trip(self, fake_conn: FakeHubConnection):
        fake_conn.responder = answer_pings
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            result = await mgr.send_command(PING_REQUEST)

        assert result == PING_RESPONSE
        assert fake_conn.requests == [PING_REQUEST]
        assert len(fake_conn.sent[1]) == 16

    @pytest.mark.asyncio
    async def test_execute_decodes(self, fake_conn: FakeHubConnection):
        fake_conn.responder = answer_pings
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            result = await mgr.execute(PING_REQUEST, HubProtocol.decode_ping_response)

        assert result.alarm_set is False

    @pytest.mark.asyncio
    async def test_busy_without_write(self, fake_conn: FakeHubConnection):
        """A second command fails immediately and writes nothing."""
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            first = asyncio.create_task(mgr.send_command(PING_REQUEST, timeout=5.0))
            await wait_until(lambda: mgr.pending is not None)
            sent_before = len(fake_conn.sent)

            error = await expect_async_exception(mgr.send_command, CommandBusyError, PING_REQUEST)

            assert error.pending_command == Command.PING
            assert len(fake_conn.sent) == sent_before
            first.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await first
            assert mgr.pending is None

    @pytest.mark.asyncio
    async def test_timeout_clears_slot(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            error = await expect_async_exception(mgr.send_command, CommandTimeoutError, PING_REQUEST, 0.05)
            assert error.cmd_id == Command.PING
            assert mgr.pending is None
            assert mgr.state is ConnectionState.READY

            fake_conn.responder = answer_pings
            assert await mgr.send_command(PING_REQUEST) == PING_RESPONSE

    @pytest.mark.asyncio
    async def test_response_split_across_reads(self, fake_conn: FakeHubConnection):
        """Ciphertext is reassembled until the announced frame is complete."""
        frame = response(
            Command.DEVICE_STATUS,
            status_entry(0x0001, 0x00000007, b"\x01") + status_entry(0x0002, 0x00000007, b"\x00"),
            2,
        )
        data = encrypt(frame, fake_conn.key)
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            task = asyncio.create_task(mgr.send_command(HubProtocol.encode_device_status_request()))
            await wait_until(lambda: mgr.pending is not None and len(fake_conn.requests) == 1)
            for chunk in (data[:5], data[5:20], data[20:]):
                fake_conn.feed(chunk)
                await asyncio.sleep(0.01)

            assert await task == frame

    @pytest.mark.asyncio
    async def test_unsolicited_bytes_discarded(self, fake_conn: FakeHubConnection):
        fake_conn.responder = answer_pings
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            fake_conn.feed(bytes(range(16)))
            await asyncio.sleep(0.01)

            assert await mgr.send_command(PING_REQUEST) == PING_RESPONSE

    @pytest.mark.asyncio
    async def test_decode_error_keeps_connection(self, fake_conn: FakeHubConnection):
        fake_conn.responder = lambda _request: response(Command.FIRMWARE_VERSION, b"\x01\x02\x03")
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            await expect_async_exception(
                mgr.execute,
                UnexpectedCommandError,
                PING_REQUEST,
                HubProtocol.decode_ping_response,
            )
            assert mgr.state is ConnectionState.READY
            assert mgr.pending is None

    @pytest.mark.asyncio
    async def test_unknown_start_mark_reaches_decoder(self, fake_conn: FakeHubConnection):
        fake_conn.responder = lambda _request: bytes(range(16))
        mgr = make_manager(fake_conn)

        async with connected(mgr):
            await expect_async_exception(
                mgr.execute,
                BadStartMarkError,
                PING_REQUEST,
                HubProtocol.decode_ping_response,
            )

    @pytest.mark.asyncio
    async def test_decoder_crash_becomes_decode_error(self, fake_conn: FakeHubConnection):
        """A decoder that trips over a short payload surfaces as PacketDecodeError."""
        fake_conn.responder = answer_pings
        mgr = make_manager(fake_conn)

        def truncated(_frame: bytes) -> None:
            raise IndexError("index out of range")

        async with connected(mgr):
            error = await expect_async_exception(mgr.execute, PacketDecodeError, PING_REQUEST, truncated)

            assert error.reason.startswith("malformed_payload")
            assert isinstance(error.__cause__, IndexError)
            assert mgr.state is ConnectionState.READY


class TestConnectionLoss:
    """Tests for transport loss, reconnect and disconnect."""

    @pytest.mark.asyncio
    async def test_eof_fails_pending_and_reconnects(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)
        on_connected = MagicMock()
        on_disconnected = MagicMock()
        mgr.add_listener(HubEvent.CONNECTED, on_connected)
        mgr.add_listener(HubEvent.DISCONNECTED, on_disconnected)

        async with connected(mgr):
            task = asyncio.create_task(mgr.send_command(PING_REQUEST, timeout=5.0))
            await wait_until(lambda: mgr.pending is not None)

            fake_conn.drop()

            error = await expect_async_exception(lambda: task, TransportError)
            assert "connection lost" in error.reason
            await wait_until(lambda: on_connected.call_count == 2)
            assert mgr.state is ConnectionState.READY
            assert fake_conn.connect_calls == 2
            on_disconnected.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_write_failure(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn, reconnect_policy=ReconnectPolicy(delay_seconds=0.01, max_attempts=0))
        on_error = MagicMock()
        mgr.add_listener(HubEvent.ERROR, on_error)

        async with connected(mgr):
            fake_conn.send_result = False

            error = await expect_async_exception(mgr.send_command, TransportError, PING_REQUEST)

            assert "write_failed" in error.reason
            assert isinstance(on_error.call_args.args[0], TransportError)
            await wait_until(lambda: mgr.reconnect_task is not None and mgr.reconnect_task.done())
            assert mgr.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_reader_crash_ends_task_cleanly(self, fake_conn: FakeHubConnection):
        """An unexpected reader error becomes a connection loss, not a failed task."""
        mgr = make_manager(fake_conn, reconnect_policy=ReconnectPolicy(delay_seconds=10.0))
        on_error = MagicMock()
        mgr.add_listener(HubEvent.ERROR, on_error)
        await mgr.connect()
        reader = mgr.managed_tasks["reader"]
        try:
            with patch.object(mgr, "_on_data", side_effect=RuntimeError("boom")):
                fake_conn.feed(b"\x00")
                await wait_until(reader.done)

            assert reader.exception() is None
            assert isinstance(on_error.call_args.args[0], RuntimeError)
            assert mgr.reconnect_task is not None
            assert mgr.is_connected is False
        finally:
            await mgr.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect_retries_until_hub_returns(self, fake_conn: FakeHubConnection):
        fake_conn.connect_result = False
        mgr = make_manager(fake_conn)

        mgr.trigger_reconnect("test")
        await wait_until(lambda: fake_conn.connect_calls >= 3)
        assert mgr.state is ConnectionState.RECONNECTING
        fake_conn.connect_result = True
        await wait_until(lambda: mgr.state is ConnectionState.READY)

        await mgr.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect_guard(self, fake_conn: FakeHubConnection):
        """A second trigger while reconnecting does not start another task."""
        mgr = make_manager(fake_conn, reconnect_policy=ReconnectPolicy(delay_seconds=10.0))

        mgr.trigger_reconnect("first")
        task = mgr.reconnect_task
        mgr.trigger_reconnect("second")

        assert task is not None
        assert mgr.reconnect_task is task
        await mgr.disconnect()
        assert task.cancelled()
        assert mgr.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_no_reconnect_while_closing(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)
        mgr.set_closing(True)

        mgr.trigger_reconnect("test")

        assert mgr.reconnect_task is None

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)
        on_disconnected = MagicMock()
        mgr.add_listener(HubEvent.DISCONNECTED, on_disconnected)
        await mgr.connect()
        reader = mgr.managed_tasks["reader"]

        await mgr.disconnect()
        await mgr.disconnect()

        assert mgr.state is ConnectionState.DISCONNECTED
        assert reader.cancelled()
        assert mgr.managed_tasks == {}
        on_disconnected.assert_called_once_with()
        await expect_async_exception(mgr.send_command, NotConnectedError, PING_REQUEST)

    @pytest.mark.asyncio
    async def test_disconnect_fails_pending(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)
        await mgr.connect()
        task = asyncio.create_task(mgr.send_command(PING_REQUEST, timeout=5.0))
        await wait_until(lambda: mgr.pending is not None)

        await mgr.disconnect()

        error = await expect_async_exception(lambda: task, TransportError)
        assert error.reason == "disconnected"
        assert mgr.reconnect_task is None


class TestBackgroundActivity:
    """Tests for keep-alive and idle pings."""

    @pytest.mark.asyncio
    async def test_keepalive_pings(self, fake_conn: FakeHubConnection):
        fake_conn.responder = answer_pings
        mgr = make_manager(fake_conn, timeout_config=TimeoutConfig(handshake_timeout=0.2, ping_interval=0.02))

        async with connected(mgr):
            await wait_until(lambda: fake_conn.requests.count(PING_REQUEST) >= 2)

    @pytest.mark.asyncio
    async def test_idle_read_sends_ping(self, fake_conn: FakeHubConnection):
        fake_conn.responder = answer_pings
        mgr = make_manager(fake_conn, timeout_config=TimeoutConfig(handshake_timeout=0.2, idle_timeout=0.02))

        async with connected(mgr):
            await wait_until(lambda: PING_REQUEST in fake_conn.requests)

    @pytest.mark.asyncio
    async def test_failed_keepalive_is_quiet(self, fake_conn: FakeHubConnection):
        """Unanswered pings time out without disturbing the connection."""
        mgr = make_manager(
            fake_conn,
            timeout_config=TimeoutConfig(handshake_timeout=0.2, command_timeout=0.02, ping_interval=0.01),
        )

        async with connected(mgr):
            await wait_until(lambda: fake_conn.requests.count(PING_REQUEST) >= 2)
            assert mgr.state is ConnectionState.READY


class TestListeners:
    """Tests for event listeners."""

    @pytest.mark.asyncio
    async def test_listener_errors_are_swallowed(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)
        calls: list[str] = []

        def broken_sync() -> None:
            calls.append("sync")
            raise RuntimeError("listener bug")

        async def broken_async() -> None:
            calls.append("async")
            raise RuntimeError("listener bug")

        mgr.add_listener(HubEvent.CONNECTED, broken_sync)
        mgr.add_listener(HubEvent.CONNECTED, broken_async)

        async with connected(mgr):
            await wait_until(lambda: len(calls) == 2)
            assert mgr.state is ConnectionState.READY

    @pytest.mark.asyncio
    async def test_remove_listener(self, fake_conn: FakeHubConnection):
        mgr = make_manager(fake_conn)
        on_connected = MagicMock()
        mgr.add_listener(HubEvent.CONNECTED, on_connected)
        mgr.remove_listener(HubEvent.CONNECTED, on_connected)
        mgr.remove_listener(HubEvent.CONNECTED, on_connected)

        async with connected(mgr):
            on_connected.assert_not_called()
