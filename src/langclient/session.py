"""Language server session.

A Session is one logical connection to one server instance:
- Owns its lifecycle state, transport and correlation engine
- Runs the two-step handshake before normal operation
- Exposes document, command and query operations
- Guarantees a one-time, orderly startup and shutdown

Lifecycle (forward only, never reused after CLOSED):

    UNSTARTED --start()--> STARTED --handshake()--> READY
         any of STARTED / READY --shutdown()--> SHUTTING_DOWN --> CLOSED
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import SessionConfig
from .correlation import CorrelationEngine
from .errors import (
    LifecycleError,
    MalformedMessageError,
    NotReadyError,
    NotStartedError,
    SessionClosedError,
    SessionError,
)
from .observer import LoggingObserver, Observer
from .protocol.lsp import CompletionItem, Hover, InitializeResult, ServerInfo
from .sequencer import OperationSequencer
from .transport.base import Transport
from .transport.stream import open_transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[SessionConfig], Awaitable[Transport]]


class SessionState(str, Enum):
    """Session lifecycle states."""

    UNSTARTED = "unstarted"
    STARTED = "started"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


_ORDER = {state: index for index, state in enumerate(SessionState)}


@dataclass
class DocumentHandle:
    """A document the server has been told about. Text is never cached."""

    uri: str
    language_id: str
    version: int = 0


class Session:
    """One client connection to a language server.

    Usage:
        config = SessionConfig(network="tcp", address="127.0.0.1:9877")
        async with Session(config) as session:
            await session.handshake("client", "1.0", "ws", "file:///ws")
            await session.open_document("file:///ws/a.go", "go", text)
            items = await session.query_completion("file:///ws/a.go", 7, 5)

    Args:
        config: Connection target, identity and timeouts
        observer: Receives server-originated requests and notifications
            (default: LoggingObserver)
        transport_factory: Coroutine opening the transport for a config
            (default: open_transport)
        capabilities: Client capabilities sent with initialize
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        observer: Observer | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        capabilities: dict[str, Any] | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self._observer = observer if observer is not None else LoggingObserver()
        self._transport_factory = transport_factory or open_transport
        self._capabilities = capabilities

        self._state = SessionState.UNSTARTED
        self._lock = asyncio.Lock()
        self._handshake_lock = asyncio.Lock()

        self._transport: Transport | None = None
        self._engine: CorrelationEngine | None = None
        self._sequencer: OperationSequencer | None = None
        self._documents: dict[str, DocumentHandle] = {}
        # Set when the server accepted initialize but its result was unusable
        self._handshake_error: str | None = None

        # Set by handshake
        self.server_info: ServerInfo | None = None
        self.server_capabilities: dict[str, Any] = {}
        self.workspace_name: str | None = None
        self.workspace_uri: str | None = None

    @property
    def state(self) -> SessionState:
        """Current lifecycle state."""
        return self._state

    @property
    def engine(self) -> CorrelationEngine | None:
        """The correlation engine, once started."""
        return self._engine

    @property
    def documents(self) -> dict[str, DocumentHandle]:
        """Open documents by URI (copy)."""
        return dict(self._documents)

    def _transition(self, target: SessionState) -> None:
        """Move forward to `target`. Caller must hold the lock."""
        if _ORDER[target] <= _ORDER[self._state]:
            raise LifecycleError(f"Invalid session transition {self._state.value} -> {target.value}")
        logger.debug(f"Session state {self._state.value} -> {target.value}")
        self._state = target

    def _require(self, *allowed: SessionState) -> OperationSequencer:
        """Fail fast unless the session is in one of `allowed` states."""
        state = self._state
        if state == SessionState.UNSTARTED:
            raise NotStartedError("Session not started; call start() first")
        if state in (SessionState.SHUTTING_DOWN, SessionState.CLOSED):
            raise SessionClosedError(f"Session is {state.value}")
        if state not in allowed or self._sequencer is None:
            raise NotReadyError(f"Session is {state.value}; complete the handshake first")
        return self._sequencer

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Open the transport and start the dispatch loop.

        Calling start() on a started session is a no-op.

        Raises:
            DialFailure: The transport could not be established
            SessionClosedError: The session was already shut down
        """
        async with self._lock:
            if self._state in (SessionState.STARTED, SessionState.READY):
                logger.info("Session start requested, session already started")
                return
            if self._state in (SessionState.SHUTTING_DOWN, SessionState.CLOSED):
                raise SessionClosedError("Session is closed and cannot be restarted")

            logger.info(f"Session starting: {self.config.network} {self.config.address}")
            transport = await self._transport_factory(self.config)

            engine = CorrelationEngine(
                transport,
                self._observer,
                default_timeout=self.config.request_timeout,
                trace=self.config.trace,
            )
            engine.start()

            self._transport = transport
            self._engine = engine
            self._sequencer = OperationSequencer(engine, self._capabilities)
            self._transition(SessionState.STARTED)
            logger.info("Session started")

    async def handshake(
        self,
        client_name: str | None = None,
        client_version: str | None = None,
        workspace_name: str | None = None,
        workspace_uri: str | None = None,
    ) -> InitializeResult:
        """Negotiate with the server: initialize, then initialized.

        Arguments default to the values in the session config. If
        initialize fails the session stays STARTED and the error
        propagates; the caller decides whether to retry. A malformed
        initialize result leaves the server initialized, so it cannot
        be retried; shut the session down instead.

        Returns:
            The server's initialize result
        """
        async with self._handshake_lock:
            if self._state == SessionState.READY:
                raise LifecycleError("Handshake already completed")
            sequencer = self._require(SessionState.STARTED)
            if self._handshake_error is not None:
                raise LifecycleError(f"Handshake cannot be retried: {self._handshake_error}")

            ws_name = workspace_name or self.config.workspace_name
            ws_uri = workspace_uri or self.config.workspace_uri
            logger.info(f"Handshake start. workspace name:{ws_name}, uri:{ws_uri}")

            try:
                result = await sequencer.handshake(
                    client_name or self.config.client_name,
                    client_version or self.config.client_version,
                    ws_name,
                    ws_uri,
                )
            except MalformedMessageError as e:
                # The server is initialized; a second initialize would be a protocol error
                self._handshake_error = str(e)
                logger.error(f"Handshake failed: {e}")
                raise

            async with self._lock:
                if self._state != SessionState.STARTED:
                    raise SessionClosedError(f"Session {self._state.value} during handshake")
                self.server_info = result.serverInfo
                self.server_capabilities = result.capabilities
                self.workspace_name = ws_name
                self.workspace_uri = ws_uri
                self._transition(SessionState.READY)

            server = result.serverInfo.name if result.serverInfo else "unknown server"
            logger.info(f"Handshake complete with {server}")
            return result

    async def shutdown(self) -> None:
        """Shut the session down. Idempotent once started.

        Outstanding calls fail with SessionClosedError and the transport
        is closed exactly once. When the session is READY and
        `graceful_exit` is set, the server is first sent shutdown/exit.

        Raises:
            NotStartedError: The session was never started
        """
        async with self._lock:
            if self._state == SessionState.UNSTARTED:
                raise NotStartedError("Session not started; nothing to shut down")
            if self._state in (SessionState.SHUTTING_DOWN, SessionState.CLOSED):
                logger.debug("Session shutdown requested, session already closed")
                return

            was_ready = self._state == SessionState.READY
            self._transition(SessionState.SHUTTING_DOWN)
            logger.info("Session shutting down")

            try:
                assert self._engine is not None and self._sequencer is not None
                if was_ready and self.config.graceful_exit and not self._engine.closed:
                    try:
                        await self._sequencer.shutdown_server(timeout=self.config.shutdown_timeout)
                    except SessionError as e:
                        logger.warning(f"Server did not acknowledge shutdown: {e}")

                await self._engine.shutdown()
            finally:
                try:
                    if self._transport is not None:
                        await self._transport.close()
                finally:
                    self._documents.clear()
                    self._transition(SessionState.CLOSED)
            logger.info("Session closed")

    async def __aenter__(self) -> Session:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._state in (SessionState.STARTED, SessionState.READY):
            await self.shutdown()

    # =========================================================================
    # Documents
    # =========================================================================

    async def open_document(self, uri: str, language_id: str, text: str) -> DocumentHandle:
        """Tell the server about a document (version 0)."""
        sequencer = self._require(SessionState.READY)
        logger.info(f"Open document: {uri} ({language_id})")
        await sequencer.open_document(uri, language_id, text, version=0)

        handle = DocumentHandle(uri=uri, language_id=language_id, version=0)
        self._documents[uri] = handle
        return handle

    async def change_document(self, uri: str, text: str) -> DocumentHandle:
        """Replace the full text of an open document, bumping its version."""
        sequencer = self._require(SessionState.READY)
        handle = self._documents.get(uri)
        if handle is None:
            raise LifecycleError(f"Document not open: {uri}")

        version = handle.version + 1
        await sequencer.change_document(uri, version, text)
        handle.version = version
        return handle

    async def save_document(self, uri: str, text: str) -> None:
        """Notify the server that a document was saved with `text`."""
        sequencer = self._require(SessionState.READY)
        logger.info(f"Save document: {uri}")
        await sequencer.save_document(uri, text)
        handle = self._documents.get(uri)
        if handle is not None:
            handle.version += 1

    async def close_document(self, uri: str) -> None:
        """Tell the server a document is no longer open."""
        sequencer = self._require(SessionState.READY)
        await sequencer.close_document(uri)
        self._documents.pop(uri, None)

    # =========================================================================
    # Commands and queries
    # =========================================================================

    async def execute_command(
        self,
        command: str,
        arguments: Sequence[Any] | Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Run a server command; arguments and result are opaque payloads."""
        sequencer = self._require(SessionState.READY)
        logger.info(f"Execute command: {command}")
        return await sequencer.execute_command(command, arguments, timeout=timeout)

    async def query_completion(
        self, uri: str, line: int, character: int, *, timeout: float | None = None
    ) -> list[CompletionItem]:
        """Completion candidates at a zero-based position."""
        sequencer = self._require(SessionState.READY)
        return await sequencer.completion(uri, line, character, timeout=timeout)

    async def hover(
        self, uri: str, line: int, character: int, *, timeout: float | None = None
    ) -> Hover | None:
        """Hover information at a zero-based position, if any."""
        sequencer = self._require(SessionState.READY)
        return await sequencer.hover(uri, line, character, timeout=timeout)

    async def request(
        self, method: str, params: Any | None = None, *, timeout: float | None = None
    ) -> Any:
        """Send an arbitrary request and return its raw result."""
        self._require(SessionState.READY)
        assert self._engine is not None
        return await self._engine.call(method, params, timeout=timeout)

    async def notify(self, method: str, params: Any | None = None) -> None:
        """Send an arbitrary notification."""
        self._require(SessionState.READY)
        assert self._engine is not None
        await self._engine.notify(method, params)
