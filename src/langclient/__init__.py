"""Asyncio client for language servers.

Drives an external language server over a JSON-RPC connection:
handshake, document synchronization, commands, completion and hover.

Usage:
    from langclient import Session, SessionConfig

    async with Session(SessionConfig(address="127.0.0.1:9877")) as session:
        await session.handshake()
        await session.open_document(uri, "go", text)
        items = await session.query_completion(uri, 7, 5)
"""

from .config import SessionConfig, load_config
from .correlation import CorrelationEngine
from .errors import (
    CallAbortedError,
    CallTimeoutError,
    ConfigError,
    DialFailure,
    LifecycleError,
    MalformedMessageError,
    NotReadyError,
    NotStartedError,
    ProtocolError,
    SessionClosedError,
    SessionError,
    TransportError,
)
from .observer import LoggingObserver, Observer
from .session import DocumentHandle, Session, SessionState

__version__ = "0.1.0"

__all__ = [
    # Session
    "DocumentHandle",
    "Session",
    "SessionConfig",
    "SessionState",
    "load_config",
    # Plumbing
    "CorrelationEngine",
    "LoggingObserver",
    "Observer",
    # Errors
    "CallAbortedError",
    "CallTimeoutError",
    "ConfigError",
    "DialFailure",
    "LifecycleError",
    "MalformedMessageError",
    "NotReadyError",
    "NotStartedError",
    "ProtocolError",
    "SessionClosedError",
    "SessionError",
    "TransportError",
    "__version__",
]
