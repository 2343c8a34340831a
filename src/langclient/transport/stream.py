"""Byte-stream transports.

- TcpTransport: socket connection to `host:port`
- UnixTransport: Unix domain socket connection
- SubprocessTransport: launch the server and talk over its stdin/stdout

All three share StreamTransport, which applies a Framing on top of an
asyncio StreamReader/StreamWriter pair.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
from typing import TYPE_CHECKING

from ..errors import ConfigError, DialFailure
from .base import BaseTransport
from .framing import Framing, get_framing

if TYPE_CHECKING:
    from ..config import SessionConfig

logger = logging.getLogger(__name__)

# StreamReader line limit; jsonl frames can be large
STREAM_LIMIT = 16 * 1024 * 1024


class StreamTransport(BaseTransport):
    """Transport over an asyncio stream pair with pluggable framing."""

    def __init__(self, framing: Framing | str = "content-length") -> None:
        super().__init__()
        self.framing = get_framing(framing) if isinstance(framing, str) else framing
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    async def _send_body(self, body: bytes) -> None:
        if self._writer is None:
            raise ConnectionError("Stream not open")
        self._writer.write(self.framing.encode(body))
        await self._writer.drain()

    async def _receive_body(self) -> bytes | None:
        if self._reader is None:
            raise ConnectionError("Stream not open")
        return await self.framing.read(self._reader)

    async def _do_close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(ConnectionError):
                await self._writer.wait_closed()
            self._writer = None
        self._reader = None


class TcpTransport(StreamTransport):
    """Transport over a TCP socket."""

    network = "tcp"

    def __init__(self, host: str, port: int, framing: Framing | str = "content-length") -> None:
        super().__init__(framing)
        self.host = host
        self.port = port

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def _do_open(self) -> None:
        self._reader, self._writer = await asyncio.open_connection(
            self.host, self.port, limit=STREAM_LIMIT
        )


class UnixTransport(StreamTransport):
    """Transport over a Unix domain socket."""

    network = "unix"

    def __init__(self, path: str, framing: Framing | str = "content-length") -> None:
        super().__init__(framing)
        self.path = path

    @property
    def address(self) -> str:
        return self.path

    async def _do_open(self) -> None:
        self._reader, self._writer = await asyncio.open_unix_connection(
            self.path, limit=STREAM_LIMIT
        )


class SubprocessTransport(StreamTransport):
    """Transport over a server subprocess's stdin/stdout.

    The server is launched on open() and terminated on close().
    Its stderr is forwarded to the log at DEBUG level.
    """

    network = "stdio"

    def __init__(
        self,
        command: list[str],
        framing: Framing | str = "content-length",
        working_directory: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        super().__init__(framing)
        if not command:
            raise ConfigError("Subprocess transport requires a command")
        self.command = command
        self.working_directory = working_directory
        self.env = env
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @property
    def address(self) -> str:
        return shlex.join(self.command)

    async def _do_open(self) -> None:
        """Launch subprocess and establish communication."""
        env = None
        if self.env:
            env = {**os.environ, **self.env}

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_directory,
                env=env,
                limit=STREAM_LIMIT,
            )
        except (OSError, ValueError) as e:
            raise DialFailure(self.network, self.address, str(e)) from e

        self._reader = self._process.stdout
        self._writer = self._process.stdin
        self._stderr_task = asyncio.create_task(self._read_stderr())

        logger.info(f"Launched server subprocess: {self.address} (pid={self._process.pid})")

    async def _do_close(self) -> None:
        """Close stdin, then terminate the subprocess."""
        await super()._do_close()

        if self._stderr_task:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
            self._stderr_task = None

        if self._process:
            if self._process.returncode is None:
                self._process.terminate()
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=5.0)
                except TimeoutError:
                    self._process.kill()
                    await self._process.wait()
            logger.info(
                f"Server subprocess exited (pid={self._process.pid}, "
                f"returncode={self._process.returncode})"
            )
            self._process = None

    async def _read_stderr(self) -> None:
        """Read and log stderr output."""
        if not self._process or not self._process.stderr:
            return

        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            logger.debug(f"[server stderr] {line.decode('utf-8', errors='replace').rstrip()}")


# Factory functions


def parse_tcp_address(address: str) -> tuple[str, int]:
    """Split `host:port` (or `[v6]:port`) into its parts."""
    host, sep, port_str = address.rpartition(":")
    if not sep or not host:
        raise ConfigError(f"TCP address must be host:port, got '{address}'")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(f"Invalid port in TCP address '{address}'") from None
    if not 0 < port < 65536:
        raise ConfigError(f"Port out of range in TCP address '{address}'")
    return host, port


def create_transport(
    network: str,
    address: str,
    framing: str = "content-length",
    working_directory: str | None = None,
) -> StreamTransport:
    """Create an unopened transport for a network kind and address.

    Args:
        network: "tcp", "unix" or "stdio"
        address: `host:port`, socket path, or server command line
        framing: "content-length" or "jsonl"
        working_directory: CWD for the server subprocess (stdio only)
    """
    if network == "tcp":
        host, port = parse_tcp_address(address)
        return TcpTransport(host, port, framing)
    if network == "unix":
        return UnixTransport(address, framing)
    if network == "stdio":
        return SubprocessTransport(shlex.split(address), framing, working_directory)
    raise ConfigError(f"Unknown network '{network}' (expected tcp, unix or stdio)")


async def open_transport(config: SessionConfig) -> StreamTransport:
    """Create and open the transport described by a session config."""
    transport = create_transport(config.network, config.address, config.framing)
    await transport.open()
    return transport
