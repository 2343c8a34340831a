"""Language-server protocol vocabulary used by the client.

Only the payloads the client sends or decodes are modelled here; the
server's command catalog and capability tree stay opaque.

Note: Field names use camelCase to match the wire format.
This is required for wire compatibility - do not change to snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Method(str, Enum):
    """Protocol method names."""

    # Lifecycle
    INITIALIZE = "initialize"
    INITIALIZED = "initialized"
    SHUTDOWN = "shutdown"
    EXIT = "exit"

    # Document synchronization
    DID_OPEN = "textDocument/didOpen"
    DID_CHANGE = "textDocument/didChange"
    DID_SAVE = "textDocument/didSave"
    DID_CLOSE = "textDocument/didClose"

    # Language features
    COMPLETION = "textDocument/completion"
    HOVER = "textDocument/hover"
    EXECUTE_COMMAND = "workspace/executeCommand"

    # Server-originated
    LOG_MESSAGE = "window/logMessage"
    SHOW_MESSAGE = "window/showMessage"

    # Either direction
    CANCEL_REQUEST = "$/cancelRequest"


class MessageType(int, Enum):
    """Severity carried by window/logMessage and window/showMessage."""

    ERROR = 1
    WARNING = 2
    INFO = 3
    LOG = 4
    DEBUG = 5


DEFAULT_CLIENT_CAPABILITIES: dict[str, Any] = {
    "workspace": {
        "workspaceFolders": True,
        "executeCommand": {"dynamicRegistration": False},
    },
    "textDocument": {
        "synchronization": {"didSave": True, "dynamicRegistration": False},
        "completion": {"completionItem": {"snippetSupport": False}},
        "hover": {"contentFormat": ["plaintext", "markdown"]},
    },
    "window": {"workDoneProgress": True},
}


class LspModel(BaseModel):
    """Base model for protocol payloads."""

    model_config = ConfigDict(populate_by_name=True)

    def to_params(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


# =============================================================================
# Handshake
# =============================================================================


class ClientInfo(LspModel):
    """Information about the client."""

    name: str
    version: str | None = None


class ServerInfo(LspModel):
    """Information about the server, as reported by initialize."""

    name: str
    version: str | None = None


class WorkspaceFolder(LspModel):
    """A workspace root the server should analyse."""

    name: str
    uri: str


class InitializeParams(LspModel):
    """Parameters of the initialize request."""

    processId: int | None = None
    clientInfo: ClientInfo
    rootUri: str | None = None
    workspaceFolders: list[WorkspaceFolder] = Field(default_factory=list)
    capabilities: dict[str, Any] = Field(default_factory=dict)


class InitializeResult(LspModel):
    """Result of the initialize request."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    capabilities: dict[str, Any] = Field(default_factory=dict)
    serverInfo: ServerInfo | None = None


# =============================================================================
# Documents
# =============================================================================


class TextDocumentIdentifier(LspModel):
    uri: str


class VersionedTextDocumentIdentifier(LspModel):
    uri: str
    version: int


class TextDocumentItem(LspModel):
    """A document transferred on open."""

    uri: str
    languageId: str
    version: int = 0
    text: str


class Position(LspModel):
    """Zero-based line and character offset."""

    line: int = Field(ge=0)
    character: int = Field(ge=0)


class TextDocumentContentChangeEvent(LspModel):
    """Full-text replacement (no range)."""

    text: str


class DidOpenTextDocumentParams(LspModel):
    textDocument: TextDocumentItem


class DidChangeTextDocumentParams(LspModel):
    textDocument: VersionedTextDocumentIdentifier
    contentChanges: list[TextDocumentContentChangeEvent]


class DidSaveTextDocumentParams(LspModel):
    textDocument: TextDocumentIdentifier
    text: str | None = None


class DidCloseTextDocumentParams(LspModel):
    textDocument: TextDocumentIdentifier


# =============================================================================
# Commands and queries
# =============================================================================


class ExecuteCommandParams(LspModel):
    """Arguments are opaque payloads defined by each server command."""

    command: str
    arguments: list[Any] = Field(default_factory=list)
    workDoneToken: str | None = None


class TextDocumentPositionParams(LspModel):
    """Position query shared by completion and hover."""

    textDocument: TextDocumentIdentifier
    position: Position
    workDoneToken: str | None = None


class CompletionItem(LspModel):
    """One completion candidate. Unknown fields are preserved."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    label: str
    kind: int | None = None
    detail: str | None = None
    documentation: Any | None = None
    insertText: str | None = None
    sortText: str | None = None
    filterText: str | None = None


class CompletionList(LspModel):
    isIncomplete: bool = False
    items: list[CompletionItem] = Field(default_factory=list)


class Hover(LspModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    contents: Any
    range: dict[str, Any] | None = None
