"""Operation sequencer.

Maps each client intent to the protocol method, parameter shape and
call/notify kind the server expects, and decodes typed results. It has
no lifecycle knowledge of its own; the Session checks state before
delegating here.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Mapping, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .correlation import CorrelationEngine
from .errors import MalformedMessageError
from .protocol.lsp import (
    DEFAULT_CLIENT_CAPABILITIES,
    ClientInfo,
    CompletionItem,
    CompletionList,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DidSaveTextDocumentParams,
    ExecuteCommandParams,
    Hover,
    InitializeParams,
    InitializeResult,
    Method,
    Position,
    TextDocumentContentChangeEvent,
    TextDocumentIdentifier,
    TextDocumentItem,
    TextDocumentPositionParams,
    VersionedTextDocumentIdentifier,
    WorkspaceFolder,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def new_progress_token() -> str:
    """Fresh work-done progress token for one call."""
    return uuid.uuid4().hex


def decode_result(model: type[ModelT], result: Any, method: str) -> ModelT:
    """Validate a call result against its model.

    Raises:
        MalformedMessageError: If the result does not have the expected shape
    """
    try:
        return model.model_validate(result)
    except ValidationError as e:
        raise MalformedMessageError(f"Malformed {method} result: {e}") from e


def decode_completions(result: Any) -> list[CompletionItem]:
    """Decode a completion result.

    The server may answer with a CompletionList, a bare array of items,
    or null.
    """
    method = Method.COMPLETION.value
    if result is None:
        return []
    if isinstance(result, list):
        return [decode_result(CompletionItem, item, method) for item in result]
    return decode_result(CompletionList, result, method).items


def _as_arguments(arguments: Sequence[Any] | Mapping[str, Any] | None) -> list[Any]:
    if arguments is None:
        return []
    if isinstance(arguments, Mapping):
        return [dict(arguments)]
    if isinstance(arguments, (str, bytes)):
        return [arguments]
    return list(arguments)


class OperationSequencer:
    """Encodes client operations as engine calls and notifications."""

    def __init__(
        self,
        engine: CorrelationEngine,
        capabilities: dict[str, Any] | None = None,
    ) -> None:
        self._engine = engine
        self._capabilities = capabilities if capabilities is not None else DEFAULT_CLIENT_CAPABILITIES

    # =========================================================================
    # Handshake
    # =========================================================================

    async def handshake(
        self,
        client_name: str,
        client_version: str,
        workspace_name: str,
        workspace_uri: str,
        *,
        timeout: float | None = None,
    ) -> InitializeResult:
        """Run initialize, then initialized.

        `initialized` is only sent after `initialize` succeeded; an
        initialize failure propagates and nothing else is sent.

        Raises:
            MalformedMessageError: The initialize result could not be decoded
        """
        params = InitializeParams(
            processId=os.getpid(),
            clientInfo=ClientInfo(name=client_name, version=client_version),
            rootUri=workspace_uri,
            workspaceFolders=[WorkspaceFolder(name=workspace_name, uri=workspace_uri)],
            capabilities=self._capabilities,
        )
        result = await self._engine.call(
            Method.INITIALIZE.value, params.to_params(), timeout=timeout
        )
        initialize_result = decode_result(InitializeResult, result or {}, Method.INITIALIZE.value)

        await self._engine.notify(Method.INITIALIZED.value, {})
        return initialize_result

    # =========================================================================
    # Document synchronization
    # =========================================================================

    async def open_document(self, uri: str, language_id: str, text: str, version: int = 0) -> None:
        params = DidOpenTextDocumentParams(
            textDocument=TextDocumentItem(uri=uri, languageId=language_id, version=version, text=text)
        )
        await self._engine.notify(Method.DID_OPEN.value, params.to_params())

    async def change_document(self, uri: str, version: int, text: str) -> None:
        """Send a full-text replacement."""
        params = DidChangeTextDocumentParams(
            textDocument=VersionedTextDocumentIdentifier(uri=uri, version=version),
            contentChanges=[TextDocumentContentChangeEvent(text=text)],
        )
        await self._engine.notify(Method.DID_CHANGE.value, params.to_params())

    async def save_document(self, uri: str, text: str | None) -> None:
        params = DidSaveTextDocumentParams(textDocument=TextDocumentIdentifier(uri=uri), text=text)
        await self._engine.notify(Method.DID_SAVE.value, params.to_params())

    async def close_document(self, uri: str) -> None:
        params = DidCloseTextDocumentParams(textDocument=TextDocumentIdentifier(uri=uri))
        await self._engine.notify(Method.DID_CLOSE.value, params.to_params())

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
        """Run a server command. Arguments and result are opaque."""
        params = ExecuteCommandParams(command=command, workDoneToken=new_progress_token()).to_params()
        # Arguments pass through untouched
        params["arguments"] = _as_arguments(arguments)
        return await self._engine.call(Method.EXECUTE_COMMAND.value, params, timeout=timeout)

    async def completion(
        self, uri: str, line: int, character: int, *, timeout: float | None = None
    ) -> list[CompletionItem]:
        params = TextDocumentPositionParams(
            textDocument=TextDocumentIdentifier(uri=uri),
            position=Position(line=line, character=character),
            workDoneToken=new_progress_token(),
        )
        result = await self._engine.call(Method.COMPLETION.value, params.to_params(), timeout=timeout)
        items = decode_completions(result)
        logger.debug(f"Completion at {uri}:{line}:{character} returned {len(items)} item(s)")
        return items

    async def hover(
        self, uri: str, line: int, character: int, *, timeout: float | None = None
    ) -> Hover | None:
        params = TextDocumentPositionParams(
            textDocument=TextDocumentIdentifier(uri=uri),
            position=Position(line=line, character=character),
            workDoneToken=new_progress_token(),
        )
        result = await self._engine.call(Method.HOVER.value, params.to_params(), timeout=timeout)
        if result is None:
            return None
        return decode_result(Hover, result, Method.HOVER.value)

    # =========================================================================
    # Exit
    # =========================================================================

    async def shutdown_server(self, *, timeout: float | None = None) -> None:
        """Ask the server to shut down, then tell it to exit."""
        await self._engine.call(Method.SHUTDOWN.value, timeout=timeout)
        await self._engine.notify(Method.EXIT.value)
