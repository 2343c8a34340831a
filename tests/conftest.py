"""Pytest configuration and shared fixtures.

StubPeer plays the server side of a connection: it records every
message the client sends, answers requests from per-method handlers,
and can push its own notifications and requests to the client.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any

import pytest
import pytest_asyncio

from langclient.config import SessionConfig
from langclient.errors import TransportError
from langclient.protocol.messages import (
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Message,
    create_error_response,
)
from langclient.transport.base import BaseTransport
from langclient.transport.memory import MemoryTransport, create_memory_pair
from langclient.transport.stream import StreamTransport

Handler = Callable[[Any], Any]

SERVER_INFO = {"name": "stub-server", "version": "1.0.0"}

COMPLETION_RESULT = {
    "isIncomplete": False,
    "items": [
        {"label": "Println", "kind": 3, "insertText": "Println"},
        {"label": "Printf", "kind": 3, "detail": "func(format string, a ...any)"},
    ],
}


def default_handlers() -> dict[str, Handler]:
    """Handlers that make StubPeer behave like a well-mannered server."""
    return {
        "initialize": lambda params: {
            "capabilities": {
                "completionProvider": {"triggerCharacters": ["."]},
                "hoverProvider": True,
                "executeCommandProvider": {"commands": ["stub.echo"]},
            },
            "serverInfo": SERVER_INFO,
        },
        "shutdown": lambda params: None,
        "textDocument/completion": lambda params: COMPLETION_RESULT,
        "textDocument/hover": lambda params: {"contents": {"kind": "plaintext", "value": "func main()"}},
        "workspace/executeCommand": lambda params: {
            "command": params["command"],
            "arguments": params.get("arguments"),
        },
    }


class StubPeer:
    """Scripted server end of a transport.

    Handlers receive the request params and return the result. Returning
    a JsonRpcError sends an error response instead. Handlers may be async.
    Methods listed in `hold` are recorded but never answered.
    """

    def __init__(self, transport: BaseTransport) -> None:
        self.transport = transport
        self.handlers: dict[str, Handler] = default_handlers()
        self.hold: set[str] = set()
        self.received: list[Message] = []
        self.client_responses: asyncio.Queue[JsonRpcResponse] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._replies: set[asyncio.Task[None]] = set()

    def start(self) -> None:
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        for task in [self._task, *self._replies]:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        await self.transport.close()

    async def _loop(self) -> None:
        while True:
            try:
                message = await self.transport.receive()
            except TransportError:
                return
            if message is None:
                return
            self.received.append(message)
            if isinstance(message, JsonRpcResponse):
                self.client_responses.put_nowait(message)
            elif isinstance(message, JsonRpcRequest) and message.method not in self.hold:
                task = asyncio.create_task(self._reply(message))
                self._replies.add(task)
                task.add_done_callback(self._replies.discard)

    async def _reply(self, request: JsonRpcRequest) -> None:
        handler = self.handlers.get(request.method)
        if handler is None:
            response = create_error_response(
                request.id, JsonRpcErrorCode.METHOD_NOT_FOUND, f"Unknown method: {request.method}"
            )
        else:
            result = handler(request.params)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, JsonRpcError):
                response = JsonRpcResponse(id=request.id, error=result)
            else:
                response = JsonRpcResponse(id=request.id, result=result)
        with contextlib.suppress(TransportError):
            await self.transport.send(response)

    # Server-initiated traffic

    async def respond(self, request_id: int | str, result: Any) -> None:
        await self.transport.send(JsonRpcResponse(id=request_id, result=result))

    async def notify(self, method: str, params: Any | None = None) -> None:
        await self.transport.send(JsonRpcNotification(method=method, params=params))

    async def request(self, method: str, params: Any | None = None, request_id: int | str = "srv-1") -> JsonRpcResponse:
        """Send a request to the client and wait for its answer."""
        await self.transport.send(JsonRpcRequest(id=request_id, method=method, params=params))
        return await asyncio.wait_for(self.client_responses.get(), timeout=2.0)

    # Inspection

    def methods(self) -> list[str]:
        """Methods of every request and notification received, in order."""
        return [m.method for m in self.received if not isinstance(m, JsonRpcResponse)]

    def messages(self, method: str) -> list[JsonRpcRequest | JsonRpcNotification]:
        return [m for m in self.received if not isinstance(m, JsonRpcResponse) and m.method == method]

    async def wait_for(self, predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        """Yield to the loop until `predicate()` holds."""

        async def poll() -> None:
            while not predicate():
                await asyncio.sleep(0.005)

        await asyncio.wait_for(poll(), timeout=timeout)


class AcceptedStreamTransport(StreamTransport):
    """Server side of an accepted stream connection."""

    network = "accepted"

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        framing: str = "content-length",
    ) -> None:
        super().__init__(framing)
        self._reader = reader
        self._writer = writer

    @property
    def address(self) -> str:
        return "accepted"

    async def _do_open(self) -> None:
        pass


class MemoryTransportFactory:
    """Session transport factory handing out one end of a memory pair."""

    def __init__(self, transport: MemoryTransport) -> None:
        self.transport = transport
        self.calls = 0

    async def __call__(self, config: SessionConfig) -> MemoryTransport:
        self.calls += 1
        await self.transport.open()
        return self.transport


class StubTcpServer:
    """asyncio TCP server that runs a StubPeer per connection."""

    def __init__(self, framing: str = "content-length") -> None:
        self.framing = framing
        self.peers: list[StubPeer] = []
        self.handlers: dict[str, Handler] = {}
        self._server: asyncio.Server | None = None

    @property
    def address(self) -> str:
        assert self._server is not None
        host, port = self._server.sockets[0].getsockname()[:2]
        return f"{host}:{port}"

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._accept, "127.0.0.1", 0)

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        transport = AcceptedStreamTransport(reader, writer, self.framing)
        await transport.open()
        peer = StubPeer(transport)
        peer.handlers.update(self.handlers)
        self.peers.append(peer)
        peer.start()

    async def stop(self) -> None:
        for peer in self.peers:
            await peer.stop()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """Undo configure_logging() calls made by a test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest_asyncio.fixture
async def memory_pair() -> AsyncIterator[tuple[MemoryTransport, MemoryTransport]]:
    """Linked client/server memory transports; the server end is open."""
    client_end, server_end = create_memory_pair()
    await server_end.open()
    yield client_end, server_end
    await client_end.close()
    await server_end.close()


@pytest_asyncio.fixture
async def stub_peer(memory_pair: tuple[MemoryTransport, MemoryTransport]) -> AsyncIterator[StubPeer]:
    _, server_end = memory_pair
    peer = StubPeer(server_end)
    peer.start()
    yield peer
    await peer.stop()


@pytest.fixture
def transport_factory(memory_pair: tuple[MemoryTransport, MemoryTransport]) -> MemoryTransportFactory:
    client_end, _ = memory_pair
    return MemoryTransportFactory(client_end)


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        network="tcp",
        address="127.0.0.1:9877",
        client_name="test-client",
        client_version="9.9",
        workspace_name="test",
        workspace_uri="file:///home/user/test/",
        request_timeout=2.0,
        shutdown_timeout=0.5,
    )


@pytest_asyncio.fixture
async def tcp_server() -> AsyncIterator[StubTcpServer]:
    server = StubTcpServer()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def jsonl_server() -> AsyncIterator[StubTcpServer]:
    server = StubTcpServer(framing="jsonl")
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def threaded_server() -> Iterator[StubTcpServer]:
    """StubTcpServer on its own loop thread, for synchronous CLI tests."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    server = StubTcpServer()
    asyncio.run_coroutine_threadsafe(server.start(), loop).result(timeout=5)
    yield server
    asyncio.run_coroutine_threadsafe(server.stop(), loop).result(timeout=5)
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()
