"""In-memory stand-in for TCPConnection that answers like a hub."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from smartika_hub.protocol.cipher import decrypt, derive_key, encrypt
from smartika_hub.protocol.hub_protocol import HubProtocol
from tests.fixtures.hub_packets import GATEWAY_ID_RESPONSE, HUB_ID

Responder = Callable[[bytes], bytes | None]


class FakeHubConnection:
    """Implements the TCPConnection surface used by ConnectionManager.

    The clear-text gateway-id request is answered with ``gateway_response``
    (None = never answer). Encrypted requests are decrypted and handed to
    ``responder``; a returned frame is encrypted and queued for recv().
    """

    def __init__(self, hub_id: bytes = HUB_ID) -> None:
        self.host = "192.0.2.10"
        self.port = 1234
        self.key = derive_key(hub_id)
        self.gateway_response: bytes | None = GATEWAY_ID_RESPONSE
        self.responder: Responder | None = None
        self.connect_result = True
        self.send_result = True
        self.last_error: str | None = None
        self.sent: list[bytes] = []
        self.requests: list[bytes] = []
        self.connect_calls = 0
        self.close_calls = 0
        self._inbox: asyncio.Queue[bytes] = asyncio.Queue()

    async def connect(self) -> bool:
        self.connect_calls += 1
        if not self.connect_result:
            self.last_error = "Connection refused"
        return self.connect_result

    async def send(self, data: bytes) -> bool:
        if not self.send_result:
            self.last_error = "Broken pipe"
            return False
        self.sent.append(data)
        if data == HubProtocol.encode_gateway_id_request():
            if self.gateway_response is not None:
                self.feed(self.gateway_response)
            return True

        request = decrypt(data, self.key)
        self.requests.append(request)
        if self.responder is not None:
            reply = self.responder(request)
            if reply is not None:
                self.feed(encrypt(reply, self.key))
        return True

    async def recv(self, timeout: float | None = None) -> bytes | None:
        try:
            return await asyncio.wait_for(self._inbox.get(), timeout=timeout)
        except TimeoutError:
            return None

    async def close(self) -> None:
        self.close_calls += 1

    @property
    def is_connected(self) -> bool:
        return True

    def feed(self, data: bytes) -> None:
        """Queue raw bytes for the next recv()."""
        self._inbox.put_nowait(data)

    def drop(self, error: str | None = None) -> None:
        """Simulate the hub closing the socket."""
        self.last_error = error
        self._inbox.put_nowait(b"")
