"""In-memory transport pair.

Two linked MemoryTransport ends pass encoded message bodies through
asyncio queues. No sockets, no framing. Used for tests and for
embedding a server in the same process.

Usage:
    client_end, server_end = create_memory_pair()
    await client_end.open()
    await server_end.open()
    await client_end.send(JsonRpcNotification(method="initialized"))
    message = await server_end.receive()
"""

from __future__ import annotations

import asyncio

from ..errors import DialFailure, TransportError
from .base import BaseTransport, TransportState


class MemoryTransport(BaseTransport):
    """One end of an in-memory duplex pipe."""

    network = "memory"

    def __init__(self, name: str = "memory") -> None:
        super().__init__()
        self.name = name
        self._inbox: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._peer: MemoryTransport | None = None

    @property
    def address(self) -> str:
        return self.name

    def attach(self, peer: MemoryTransport) -> None:
        """Link this end to its peer (both directions)."""
        self._peer = peer
        peer._peer = self

    async def inject_raw(self, body: bytes) -> None:
        """Deliver a raw, unvalidated body to the peer (for malformed-input tests)."""
        if not self.is_connected:
            raise TransportError("Transport not connected")
        await self._send_body(body)

    async def _do_open(self) -> None:
        if self._peer is None:
            raise DialFailure(self.network, self.address, "no peer attached")
        if self._peer.state == TransportState.CLOSED:
            raise DialFailure(self.network, self.address, "peer already closed")

    async def _do_close(self) -> None:
        # EOF for both readers
        self._inbox.put_nowait(None)
        if self._peer is not None:
            self._peer._inbox.put_nowait(None)

    async def _send_body(self, body: bytes) -> None:
        if self._peer is None or self._peer.state == TransportState.CLOSED:
            raise ConnectionResetError("Peer closed")
        self._peer._inbox.put_nowait(body)

    async def _receive_body(self) -> bytes | None:
        return await self._inbox.get()


def create_memory_pair(
    client_name: str = "client", server_name: str = "server"
) -> tuple[MemoryTransport, MemoryTransport]:
    """Create two linked, unopened transport ends."""
    client_end = MemoryTransport(client_name)
    server_end = MemoryTransport(server_name)
    client_end.attach(server_end)
    return client_end, server_end
