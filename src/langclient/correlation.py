"""Request/response correlation over one connection.

The engine lets many logical calls share a single transport:
- call(): allocate an id, send a Request, await the matching Response
- notify(): send a Notification, nothing to await
- a background dispatch loop reads every inbound message, completes the
  pending call a Response belongs to, and hands server-originated
  Requests/Notifications to the observer via a separate delivery task
- shutdown(): stop both tasks and fail every outstanding call

Pending calls and the closed flag are only touched on the event loop,
so every mutation between two awaits is atomic.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import (
    CallAbortedError,
    CallTimeoutError,
    MalformedMessageError,
    ProtocolError,
    SessionClosedError,
    SessionError,
    TransportError,
)
from .observer import Observer
from .protocol.lsp import Method
from .protocol.messages import (
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Message,
    create_error_response,
)
from .transport.base import Transport

logger = logging.getLogger(__name__)


@dataclass
class PendingCall:
    """Bookkeeping for one request awaiting its response."""

    id: int
    method: str
    future: asyncio.Future[Any] = field(repr=False)
    sent: bool = False
    cancelled: bool = False


class CorrelationEngine:
    """Multiplexes calls and notifications over one transport.

    Usage:
        engine = CorrelationEngine(transport, observer=LoggingObserver())
        engine.start()
        result = await engine.call("initialize", params, timeout=10.0)
        await engine.notify("initialized", {})
        await engine.shutdown()
    """

    def __init__(
        self,
        transport: Transport,
        observer: Observer | None = None,
        *,
        default_timeout: float | None = None,
        trace: bool = False,
    ) -> None:
        self._transport = transport
        self._observer = observer
        self.default_timeout = default_timeout
        self._trace = trace

        self._ids = itertools.count(1)
        self._pending: dict[int, PendingCall] = {}
        self._inbox: asyncio.Queue[JsonRpcRequest | JsonRpcNotification] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._delivery_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()

        self._closed = False
        self._close_reason = ""

    @property
    def is_running(self) -> bool:
        """True while the dispatch loop is reading."""
        return self._reader_task is not None and not self._reader_task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        """Launch the dispatch loop and the observer delivery task."""
        if self._closed:
            raise SessionClosedError(f"Engine closed: {self._close_reason}")
        if self._reader_task is not None:
            raise RuntimeError("Dispatch loop already running")

        self._reader_task = asyncio.create_task(self._dispatch_loop(), name="langclient-dispatch")
        self._delivery_task = asyncio.create_task(self._delivery_loop(), name="langclient-observer")
        logger.debug("Correlation engine started")

    # =========================================================================
    # Outbound
    # =========================================================================

    async def call(self, method: str, params: Any | None = None, *, timeout: float | None = None) -> Any:
        """Send a request and wait for its result.

        Args:
            method: Protocol method name
            params: JSON-serializable parameters
            timeout: Seconds to wait; falls back to default_timeout

        Returns:
            The decoded `result` of the matching response

        Raises:
            ProtocolError: The server answered with an error envelope
            CallAbortedError: cancel() was called for this call
            CallTimeoutError: The deadline elapsed
            SessionClosedError: The engine shut down or lost its connection
            TransportError: The request could not be sent
        """
        if self._closed:
            raise SessionClosedError(f"Cannot call {method}: {self._close_reason}")

        call_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        pending = PendingCall(id=call_id, method=method, future=future)
        self._pending[call_id] = pending

        deadline = timeout if timeout is not None else self.default_timeout
        try:
            await self._send(JsonRpcRequest(id=call_id, method=method, params=params))
            pending.sent = True
            if pending.cancelled:
                # cancel() ran while the request was waiting for the wire
                self._schedule_cancel_request(call_id)
            if deadline is None:
                return await future
            return await asyncio.wait_for(future, timeout=deadline)
        except TimeoutError:
            if future.done() and not future.cancelled():
                # The future itself carried a TimeoutError subclass
                raise
            self._abandon(pending)
            logger.warning(f"Call {call_id} ({method}) timed out after {deadline}s")
            raise CallTimeoutError(call_id, method, deadline or 0.0) from None
        except asyncio.CancelledError:
            self._abandon(pending)
            raise
        finally:
            self._pending.pop(call_id, None)

    async def notify(self, method: str, params: Any | None = None) -> None:
        """Send a notification. Returns once the message is written."""
        if self._closed:
            raise SessionClosedError(f"Cannot notify {method}: {self._close_reason}")
        await self._send(JsonRpcNotification(method=method, params=params))

    def cancel(self, call_id: int) -> bool:
        """Abort one outstanding call.

        The waiting caller receives CallAbortedError; a response that
        arrives later for this id is dropped as unmatched.

        Returns:
            True if a pending call was found and aborted
        """
        pending = self._pending.get(call_id)
        if pending is None or pending.future.done():
            return False
        pending.future.set_exception(CallAbortedError(call_id, pending.method))
        self._abandon(pending)
        return True

    async def _send(self, message: Message) -> None:
        if self._trace:
            logger.debug(f"--> {json.dumps(message.to_wire(), default=str)}")
        await self._transport.send(message)

    def _abandon(self, pending: PendingCall) -> None:
        """Drop a pending call and tell the server we no longer want it."""
        if pending.cancelled:
            return
        pending.cancelled = True
        self._pending.pop(pending.id, None)
        # Nothing to cancel if the request never reached the wire
        if pending.sent:
            self._schedule_cancel_request(pending.id)

    def _schedule_cancel_request(self, call_id: int) -> None:
        if self._closed:
            return
        task = asyncio.create_task(self._send_cancel_request(call_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_cancel_request(self, call_id: int) -> None:
        try:
            await self.notify(Method.CANCEL_REQUEST.value, {"id": call_id})
        except SessionError as e:
            logger.debug(f"Could not send cancel request for call {call_id}: {e}")

    # =========================================================================
    # Inbound
    # =========================================================================

    async def _dispatch_loop(self) -> None:
        """Background task reading messages and routing them."""
        reason = "Connection closed by server"
        try:
            while True:
                try:
                    message = await self._transport.receive()
                except MalformedMessageError as e:
                    logger.warning(f"Dropping malformed message: {e}")
                    continue

                if message is None:
                    logger.info("Server closed the connection")
                    break

                if self._trace:
                    logger.debug(f"<-- {json.dumps(message.to_wire(), default=str)}")
                self._dispatch(message)
        except asyncio.CancelledError:
            reason = "Session shut down"
            raise
        except TransportError as e:
            reason = f"Transport error: {e}"
            logger.error(f"Dispatch loop stopped: {e}")
        finally:
            self._mark_closed(reason)

    def _dispatch(self, message: Message) -> None:
        if isinstance(message, JsonRpcResponse):
            self._handle_response(message)
        else:
            # Observer work runs on the delivery task, never on the read path
            self._inbox.put_nowait(message)

    def _handle_response(self, response: JsonRpcResponse) -> None:
        """Complete the pending call a response belongs to."""
        if response.id is None:
            error = response.error.message if response.error else "no error"
            logger.warning(f"Dropping response without id: {error}")
            return

        pending = self._pending.pop(response.id, None)  # type: ignore[arg-type]
        if pending is None or pending.future.done():
            logger.warning(f"Dropping response for unknown or abandoned call id: {response.id}")
            return

        if response.error is not None:
            pending.future.set_exception(
                ProtocolError(
                    code=response.error.code,
                    message=response.error.message,
                    data=response.error.data,
                )
            )
        else:
            pending.future.set_result(response.result)

    async def _delivery_loop(self) -> None:
        """Background task handing server messages to the observer in order."""
        while True:
            message = await self._inbox.get()
            try:
                if isinstance(message, JsonRpcRequest):
                    await self._answer_request(message)
                else:
                    await self._deliver_notification(message)
            except Exception:
                logger.exception(f"Failed delivering {message.method}")

    async def _deliver_notification(self, notification: JsonRpcNotification) -> None:
        if self._observer is None:
            logger.debug(f"Unobserved notification: {notification.method}")
            return
        try:
            await self._observer.on_notification(notification.method, notification.params)
        except Exception:
            logger.exception(f"Observer failed handling notification {notification.method}")

    async def _answer_request(self, request: JsonRpcRequest) -> None:
        if self._observer is None:
            response = create_error_response(
                request.id,
                JsonRpcErrorCode.METHOD_NOT_FOUND,
                f"No handler for method: {request.method}",
            )
        else:
            try:
                result = await self._observer.on_request(request.method, request.params)
                response = JsonRpcResponse(id=request.id, result=result)
            except Exception as e:
                logger.exception(f"Observer failed handling request {request.method}")
                response = create_error_response(
                    request.id, JsonRpcErrorCode.INTERNAL_ERROR, str(e)
                )

        if self._closed:
            return
        try:
            await self._send(response)
        except MalformedMessageError as e:
            logger.error(f"Observer answer to {request.method} is not serializable: {e}")
            await self._send_quietly(
                create_error_response(request.id, JsonRpcErrorCode.INTERNAL_ERROR, str(e)), request.method
            )
        except TransportError as e:
            logger.warning(f"Could not answer server request {request.method}: {e}")

    async def _send_quietly(self, response: JsonRpcResponse, method: str) -> None:
        try:
            await self._send(response)
        except SessionError as e:
            logger.warning(f"Could not answer server request {method}: {e}")

    # =========================================================================
    # Shutdown
    # =========================================================================

    def _mark_closed(self, reason: str) -> None:
        """Close the engine and fail every outstanding call. Idempotent."""
        if not self._closed:
            self._closed = True
            self._close_reason = reason

        if self._pending:
            logger.info(f"Failing {len(self._pending)} pending call(s): {self._close_reason}")
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(
                    SessionClosedError(f"Call {pending.id} ({pending.method}) failed: {self._close_reason}")
                )
        self._pending.clear()

    async def shutdown(self) -> None:
        """Stop the dispatch loop, then fail every outstanding call."""
        tasks = [t for t in (self._reader_task, self._delivery_task, *self._background) if t]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception(f"Background task {task.get_name()} failed")

        self._mark_closed("Session shut down")
        logger.debug("Correlation engine stopped")
