"""Wire protocol layer.

- messages: JSON-RPC 2.0 envelopes (request, notification, response)
- lsp: language-server method names and payload models
"""

from .lsp import (
    DEFAULT_CLIENT_CAPABILITIES,
    ClientInfo,
    CompletionItem,
    CompletionList,
    Hover,
    InitializeParams,
    InitializeResult,
    Method,
    MessageType,
    Position,
    ServerInfo,
    WorkspaceFolder,
)
from .messages import (
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Message,
    create_error_response,
    decode_message,
    encode_message,
    parse_message,
)

__all__ = [
    # Envelopes
    "JsonRpcError",
    "JsonRpcErrorCode",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "Message",
    "create_error_response",
    "decode_message",
    "encode_message",
    "parse_message",
    # Language-server vocabulary
    "DEFAULT_CLIENT_CAPABILITIES",
    "ClientInfo",
    "CompletionItem",
    "CompletionList",
    "Hover",
    "InitializeParams",
    "InitializeResult",
    "Method",
    "MessageType",
    "Position",
    "ServerInfo",
    "WorkspaceFolder",
]
