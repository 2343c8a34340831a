"""JSON-RPC 2.0 envelopes.

Three message shapes travel over the connection:
- Request: has `id` and `method`, expects a Response
- Notification: has `method` but no `id`, no reply
- Response: has `id` and exactly one of `result` / `error`

Transports move these as whole messages; framing is their concern.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from ..errors import MalformedMessageError

JSONRPC_VERSION = "2.0"


class JsonRpcErrorCode:
    """Standard JSON-RPC 2.0 and language-server error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    SERVER_NOT_INITIALIZED = -32002
    UNKNOWN_ERROR_CODE = -32001
    REQUEST_CANCELLED = -32800
    CONTENT_MODIFIED = -32801


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str
    method: str
    params: Any | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification (no response expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Any | None = None

    def to_wire(self) -> dict[str, Any]:
        # Params are opaque payloads and pass through untouched
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str | None
    result: Any | None = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        # `result` must be present (possibly null) on success
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            data["error"] = self.error.model_dump(exclude_none=True)
        else:
            data["result"] = self.result
        return data


Message = JsonRpcRequest | JsonRpcNotification | JsonRpcResponse


def parse_message(data: Any) -> Message:
    """Classify and validate a decoded JSON value as a JSON-RPC message.

    Raises:
        MalformedMessageError: If the value is not a well-formed envelope
    """
    if not isinstance(data, dict):
        raise MalformedMessageError(f"Expected a JSON object, got {type(data).__name__}")

    try:
        if "method" in data:
            if data.get("id") is not None:
                return JsonRpcRequest.model_validate(data)
            return JsonRpcNotification.model_validate(data)

        has_result = "result" in data
        has_error = "error" in data
        if has_result and has_error:
            raise MalformedMessageError("Response carries both 'result' and 'error'")
        if not has_result and not has_error:
            raise MalformedMessageError("Message has neither 'method' nor 'result'/'error'")
        if "id" not in data:
            raise MalformedMessageError("Response is missing 'id'")
        return JsonRpcResponse.model_validate(data)
    except ValidationError as e:
        raise MalformedMessageError(f"Invalid JSON-RPC message: {e}") from e


def decode_message(body: bytes | str) -> Message:
    """Decode one framed message body."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessageError(f"Parse error: {e}") from e
    return parse_message(data)


def encode_message(message: Message) -> bytes:
    """Encode a message body as compact UTF-8 JSON.

    Raises:
        MalformedMessageError: If the payload is not JSON-serializable
    """
    try:
        text = json.dumps(message.to_wire(), ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"Cannot encode message: {e}") from e
    return text.encode("utf-8")


def create_error_response(
    request_id: int | str | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> JsonRpcResponse:
    """Create a JSON-RPC error response."""
    return JsonRpcResponse(
        id=request_id,
        error=JsonRpcError(code=code, message=message, data=data),
    )
