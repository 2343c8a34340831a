"""Message framing over byte streams.

Two framings are supported:
- content-length: `Content-Length: N\\r\\n\\r\\n` header block followed by N
  bytes of JSON (the language-server base protocol)
- jsonl: one JSON object per line

Framing corruption cannot be resynchronized and raises TransportError.
Undecodable JSON inside a well-formed frame is the caller's concern.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from ..errors import ConfigError, TransportError

HEADER_ENCODING = "ascii"
CONTENT_LENGTH = "content-length"


class Framing(ABC):
    """Splits a byte stream into message bodies."""

    name: str

    @abstractmethod
    def encode(self, body: bytes) -> bytes:
        """Wrap one message body for the wire."""

    @abstractmethod
    async def read(self, reader: asyncio.StreamReader) -> bytes | None:
        """Read one message body. Returns None on clean EOF."""


class ContentLengthFraming(Framing):
    """Header-delimited framing used by language servers."""

    name = "content-length"

    def encode(self, body: bytes) -> bytes:
        header = f"Content-Length: {len(body)}\r\n\r\n".encode(HEADER_ENCODING)
        return header + body

    async def read(self, reader: asyncio.StreamReader) -> bytes | None:
        content_length: int | None = None
        seen_header = False

        while True:
            line = await reader.readline()
            if not line:
                if not seen_header:
                    return None
                raise TransportError("Connection closed inside message header")

            if line in (b"\r\n", b"\n"):
                if seen_header:
                    break
                # Tolerate stray blank lines between frames
                continue

            seen_header = True
            name, sep, value = line.decode(HEADER_ENCODING, errors="replace").partition(":")
            if not sep:
                raise TransportError(f"Corrupt frame header: {line[:50]!r}")
            if name.strip().lower() == CONTENT_LENGTH:
                try:
                    content_length = int(value.strip())
                except ValueError as e:
                    raise TransportError(f"Invalid Content-Length header: {value.strip()}") from e
                if content_length < 0:
                    raise TransportError(f"Invalid Content-Length header: {content_length}")

        if content_length is None:
            raise TransportError("Missing Content-Length header")

        try:
            return await reader.readexactly(content_length)
        except asyncio.IncompleteReadError as e:
            raise TransportError(
                f"Connection closed inside message body "
                f"(expected {content_length} bytes, got {len(e.partial)})"
            ) from e


class JsonLinesFraming(Framing):
    """Newline-delimited JSON framing."""

    name = "jsonl"

    def encode(self, body: bytes) -> bytes:
        return body + b"\n"

    async def read(self, reader: asyncio.StreamReader) -> bytes | None:
        while True:
            try:
                line = await reader.readline()
            except ValueError as e:
                # StreamReader raises ValueError when a line exceeds its limit
                raise TransportError(f"Message line too long: {e}") from e
            if not line:
                return None
            stripped = line.strip()
            if stripped:
                return stripped


_FRAMINGS: dict[str, type[Framing]] = {
    ContentLengthFraming.name: ContentLengthFraming,
    JsonLinesFraming.name: JsonLinesFraming,
}


def get_framing(name: str) -> Framing:
    """Look up a framing by name."""
    try:
        return _FRAMINGS[name]()
    except KeyError:
        raise ConfigError(
            f"Unknown framing '{name}' (expected one of: {', '.join(sorted(_FRAMINGS))})"
        ) from None
