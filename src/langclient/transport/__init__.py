"""Transport abstraction layer.

Provides the byte-stream side of the client:
- TCP and Unix socket connections to a running server
- stdio - launch the server as a subprocess
- in-memory pairs for tests and embedding

Framing (Content-Length headers or JSON lines) is transport-internal;
the correlation engine only sees whole JSON-RPC messages.
"""

from .base import BaseTransport, Transport, TransportState
from .framing import ContentLengthFraming, Framing, JsonLinesFraming, get_framing
from .memory import MemoryTransport, create_memory_pair
from .stream import (
    StreamTransport,
    SubprocessTransport,
    TcpTransport,
    UnixTransport,
    create_transport,
    open_transport,
    parse_tcp_address,
)

__all__ = [
    # Base abstractions
    "BaseTransport",
    "Transport",
    "TransportState",
    # Framing
    "ContentLengthFraming",
    "Framing",
    "JsonLinesFraming",
    "get_framing",
    # Stream implementations
    "StreamTransport",
    "SubprocessTransport",
    "TcpTransport",
    "UnixTransport",
    "create_transport",
    "open_transport",
    "parse_tcp_address",
    # In-memory implementation
    "MemoryTransport",
    "create_memory_pair",
]
