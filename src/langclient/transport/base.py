"""Client transport abstraction.

A transport moves whole JSON-RPC messages between the client and one
server over a duplex byte stream. The correlation engine depends only
on the Transport protocol below; framing and connection management are
transport-internal.

Contract:
- open(): establish the connection (raises DialFailure)
- send(message): write one message (raises TransportError)
- receive(): read one message, None on EOF
  (raises TransportError, MalformedMessageError)
- close(): release the connection, idempotent
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Protocol, runtime_checkable

from ..errors import DialFailure, TransportError
from ..protocol.messages import Message, decode_message, encode_message

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@runtime_checkable
class Transport(Protocol):
    """Protocol for client transports."""

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        ...

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        ...

    async def open(self) -> None:
        """Establish the connection.

        Raises:
            DialFailure: If the connection cannot be established
        """
        ...

    async def send(self, message: Message) -> None:
        """Write one message.

        Raises:
            TransportError: If the transport is not connected or the write fails
        """
        ...

    async def receive(self) -> Message | None:
        """Read one message, or None when the peer closed the stream.

        Raises:
            TransportError: On I/O failure or unrecoverable framing corruption
            MalformedMessageError: If a frame does not hold a valid message
        """
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


class BaseTransport(ABC):
    """Base class for transports with common functionality.

    Provides:
    - State management
    - Message encoding/decoding around raw message bodies
    - A single write lock so concurrent senders never interleave frames
    """

    network: str = "unknown"

    def __init__(self) -> None:
        self._state = TransportState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == TransportState.CLOSED

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    @property
    @abstractmethod
    def address(self) -> str:
        """Human-readable target of this transport."""

    async def open(self) -> None:
        """Establish the connection."""
        async with self._lock:
            if self._state == TransportState.CONNECTED:
                return
            if self._state == TransportState.CLOSED:
                raise DialFailure(self.network, self.address, "transport already closed")

            self._state = TransportState.CONNECTING
            try:
                await self._do_open()
            except DialFailure:
                self._state = TransportState.DISCONNECTED
                raise
            except OSError as e:
                self._state = TransportState.DISCONNECTED
                raise DialFailure(self.network, self.address, str(e)) from e

            self._state = TransportState.CONNECTED
            logger.info(f"{self.__class__.__name__} connected to {self.network} {self.address}")

    async def send(self, message: Message) -> None:
        """Encode and write one message."""
        if not self.is_connected:
            raise TransportError(f"Transport not connected (state: {self._state.value})")

        body = encode_message(message)
        async with self._write_lock:
            try:
                await self._send_body(body)
            except (OSError, RuntimeError) as e:
                raise TransportError(f"Send failed: {e}") from e

    async def receive(self) -> Message | None:
        """Read and decode one message."""
        if self._state == TransportState.CLOSED:
            return None
        try:
            body = await self._receive_body()
        except OSError as e:
            raise TransportError(f"Receive failed: {e}") from e
        if body is None:
            return None
        return decode_message(body)

    async def close(self) -> None:
        """Close the connection."""
        async with self._lock:
            if self._state == TransportState.CLOSED:
                return
            was_connected = self._state == TransportState.CONNECTED
            self._state = TransportState.CLOSED

            if was_connected:
                try:
                    await self._do_close()
                except OSError as e:
                    logger.warning(f"{self.__class__.__name__} close failed: {e}")
            logger.info(f"{self.__class__.__name__} closed")

    # Abstract methods for subclasses
    @abstractmethod
    async def _do_open(self) -> None:
        """Implementation-specific connection logic."""
        ...

    @abstractmethod
    async def _do_close(self) -> None:
        """Implementation-specific disconnection logic."""
        ...

    @abstractmethod
    async def _send_body(self, body: bytes) -> None:
        """Write one encoded message body."""
        ...

    @abstractmethod
    async def _receive_body(self) -> bytes | None:
        """Read one message body, None on EOF."""
        ...

    async def __aenter__(self) -> BaseTransport:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
