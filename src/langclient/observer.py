"""Observers for peer-originated messages.

The server sends notifications (log lines, progress, diagnostics) and
occasional requests to the client. The correlation engine forwards them
to an Observer supplied by the caller at construction time. Observers
run on a delivery task separate from the read loop; any exception they
raise is logged by the engine and never reaches the connection.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from .protocol.lsp import Method, MessageType

logger = logging.getLogger(__name__)

_LEVELS = {
    MessageType.ERROR: logging.ERROR,
    MessageType.WARNING: logging.WARNING,
    MessageType.INFO: logging.INFO,
    MessageType.LOG: logging.INFO,
    MessageType.DEBUG: logging.DEBUG,
}


@runtime_checkable
class Observer(Protocol):
    """Receives requests and notifications initiated by the server."""

    async def on_notification(self, method: str, params: Any | None) -> None:
        """Handle a server notification."""
        ...

    async def on_request(self, method: str, params: Any | None) -> Any:
        """Handle a server request. The return value is sent back as the result."""
        ...


def extract_message(params: Any | None) -> str | None:
    """Pull the human-readable `message` field out of a payload, if any."""
    if isinstance(params, dict):
        message = params.get("message")
        if message is not None:
            return str(message)
    return None


def _level_for(method: str, params: Any | None) -> int:
    if method in (Method.LOG_MESSAGE.value, Method.SHOW_MESSAGE.value) and isinstance(
        params, dict
    ):
        try:
            return _LEVELS[MessageType(params.get("type"))]
        except ValueError:
            pass
    return logging.INFO


class LoggingObserver:
    """Observer that writes every inbound message to a logger.

    Payloads are not decoded beyond the `message` field. Requests are
    answered with a null result.
    """

    def __init__(self, sink: logging.Logger | None = None) -> None:
        self._sink = sink or logger

    async def on_notification(self, method: str, params: Any | None) -> None:
        self._sink.log(
            _level_for(method, params),
            f"method:{method}, message:{extract_message(params)}",
        )

    async def on_request(self, method: str, params: Any | None) -> Any:
        self._sink.info(f"server request method:{method}, message:{extract_message(params)}")
        return None
