"""Error types for the language server client.

Every failure the client surfaces derives from SessionError so callers
can catch one base class and still branch on the specific kind:

- DialFailure: the transport could not be opened (fatal to start)
- TransportError: I/O failure on an open transport
- MalformedMessageError: a frame could not be decoded or a message encoded
- LifecycleError: operation attempted in the wrong session state
- ProtocolError: the peer answered a call with an error envelope
- CallAbortedError / CallTimeoutError: the caller gave up on a call
"""

from __future__ import annotations

from typing import Any


class SessionError(Exception):
    """Base class for all client errors."""


class ConfigError(SessionError):
    """Invalid client configuration."""


class DialFailure(SessionError):
    """The transport to the server could not be established."""

    def __init__(self, network: str, address: str, reason: str | None = None) -> None:
        message = f"Failed to dial {network} {address}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.network = network
        self.address = address


class TransportError(SessionError):
    """I/O failure on an open transport."""


class MalformedMessageError(SessionError):
    """A frame was not a valid JSON-RPC message, or a payload could not be encoded."""


class LifecycleError(SessionError):
    """Operation attempted out of lifecycle order."""


class NotStartedError(LifecycleError):
    """Operation attempted before the session was started."""


class NotReadyError(LifecycleError):
    """Operation attempted before the handshake completed."""


class SessionClosedError(LifecycleError):
    """Operation attempted during or after shutdown, or the connection was lost."""


class ProtocolError(SessionError):
    """The peer returned an error envelope for a call.

    The peer's code, message and data are carried verbatim.
    """

    def __init__(self, code: int, message: str, data: Any | None = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class CallAbortedError(SessionError):
    """A pending call was cancelled before its response arrived."""

    def __init__(self, call_id: int, method: str) -> None:
        super().__init__(f"Call {call_id} ({method}) aborted")
        self.call_id = call_id
        self.method = method


class CallTimeoutError(SessionError, TimeoutError):
    """A pending call exceeded its deadline."""

    def __init__(self, call_id: int, method: str, timeout: float) -> None:
        super().__init__(f"Call {call_id} ({method}) timed out after {timeout}s")
        self.call_id = call_id
        self.method = method
        self.timeout = timeout
