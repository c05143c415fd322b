"""TCP stream to a Smartika hub.

``TCPConnection`` never raises for socket trouble: ``connect()`` and
``send()`` return False and ``recv()`` returns ``b""``, with the cause kept in
``last_error`` for the connection manager to report.
"""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)

READ_CHUNK = 4096


class TCPConnection:
    """One persistent TCP stream with connect and write deadlines."""

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 30.0,
        io_timeout: float = 10.0,
        max_read_size: int = READ_CHUNK,
    ):
        """
        Args:
            host: Hub address
            port: Hub port
            connect_timeout: Seconds allowed for the TCP connect
            io_timeout: Seconds allowed for a write to drain
            max_read_size: Upper bound for a single read
        """
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self.max_read_size = max_read_size
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None
        self.last_error: str | None = None
        self.bytes_sent = 0
        self.bytes_received = 0
        self._connected = False

    @property
    def peer(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _fail(self, operation: str, error: str, started: float | None = None) -> None:
        self.last_error = error
        context: dict[str, object] = {"peer": self.peer, "operation": operation, "error": error}
        if started is not None:
            context["elapsed_ms"] = round((time.perf_counter() - started) * 1000, 1)
        logger.warning("%s %s failed: %s", operation, self.peer, error, extra=context)

    async def connect(self) -> bool:
        """Open the stream within connect_timeout; False on failure (see last_error)."""
        self.last_error = None
        started = time.perf_counter()
        logger.debug(
            "Opening %s (timeout %.1fs)",
            self.peer,
            self.connect_timeout,
            extra={"peer": self.peer, "timeout": self.connect_timeout},
        )
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except TimeoutError:
            self._fail("connect", "timeout", started)
            return False
        except OSError as e:
            self._fail("connect", str(e), started)
            return False

        self._connected = True
        self.bytes_sent = 0
        self.bytes_received = 0
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "TCP link to %s up in %.1fms",
            self.peer,
            elapsed_ms,
            extra={"peer": self.peer, "elapsed_ms": round(elapsed_ms, 1)},
        )
        return True

    async def send(self, data: bytes) -> bool:
        """Write ``data`` and wait for it to drain within io_timeout."""
        if not self._connected or self.writer is None:
            self._fail("send", "not_connected")
            return False

        try:
            self.writer.write(data)
            await asyncio.wait_for(self.writer.drain(), timeout=self.io_timeout)
        except TimeoutError:
            self._fail("send", "timeout")
            return False
        except OSError as e:
            self._fail("send", str(e))
            return False

        self.bytes_sent += len(data)
        logger.debug("%d bytes → %s", len(data), self.peer, extra={"peer": self.peer, "bytes": len(data)})
        return True

    async def recv(self, timeout: float | None = None) -> bytes | None:
        """Read whatever the hub has sent.

        Returns the bytes read, None when ``timeout`` passed in silence, or
        ``b""`` once the stream is gone (EOF, socket error, never opened).
        """
        if not self._connected or self.reader is None:
            self.last_error = "not_connected"
            return b""

        try:
            data = await asyncio.wait_for(self.reader.read(self.max_read_size), timeout=timeout)
        except TimeoutError:
            return None
        except OSError as e:
            self._connected = False
            self._fail("recv", str(e))
            return b""

        if not data:
            self._connected = False
            logger.info("%s closed the connection", self.peer, extra={"peer": self.peer})
            return b""

        self.bytes_received += len(data)
        logger.debug("%d bytes ← %s", len(data), self.peer, extra={"peer": self.peer, "bytes": len(data)})
        return data

    async def close(self) -> None:
        """Close the stream. Safe to call repeatedly."""
        writer = self.writer
        self.writer = None
        self.reader = None
        self._connected = False
        if writer is None:
            return

        logger.debug(
            "Closing %s",
            self.peer,
            extra={"peer": self.peer, "sent": self.bytes_sent, "received": self.bytes_received},
        )
        try:
            writer.close()
            await writer.wait_closed()
        except OSError as e:
            logger.debug("Close of %s reported %s", self.peer, e, extra={"peer": self.peer, "error": str(e)})

    def __repr__(self) -> str:
        status = "connected" if self._connected else "disconnected"
        return f"TCPConnection({self.peer}, {status})"
