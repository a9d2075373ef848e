"""
JSON-RPC 2.0 codec.

Encodes and decodes the three frame kinds used by MCP (request, notification,
response) and defines the standard error-code table. ``decode`` accepts raw
text, bytes, or an already-parsed object (the in-process transport hands over
decoded frames).
"""
import json
from enum import IntEnum
from typing import Any, Union

from pydantic import BaseModel, JsonValue, ValidationError

from ..exceptions import MCPProtocolError, ProtocolErrorKind

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]
Params = Union[dict[str, JsonValue], list[JsonValue], None]


class ErrorCode(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class JsonRpcError(BaseModel):
    """A JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: JsonValue = None


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request; always carries an id and expects exactly one response."""

    jsonrpc: str = JSONRPC_VERSION
    id: RequestId
    method: str
    params: Params = None


class JsonRpcNotification(BaseModel):
    """A JSON-RPC 2.0 notification (no id, no response)."""

    jsonrpc: str = JSONRPC_VERSION
    method: str
    params: Params = None


class JsonRpcResponse(BaseModel):
    """A JSON-RPC 2.0 response. Exactly one of ``result``/``error`` is meaningful:
    a response whose ``error`` is None is a success, even when ``result`` is null."""

    jsonrpc: str = JSONRPC_VERSION
    id: RequestId | None = None
    result: JsonValue = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


JsonRpcMessage = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcResponse]


def make_request(request_id: RequestId, method: str, params: Params = None) -> JsonRpcRequest:
    return JsonRpcRequest(id=request_id, method=method, params=params)


def make_notification(method: str, params: Params = None) -> JsonRpcNotification:
    return JsonRpcNotification(method=method, params=params)


def success_response(request_id: RequestId | None, result: JsonValue) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, result=result)


def error_response(
    request_id: RequestId | None,
    code: int,
    message: str,
    data: JsonValue = None,
) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=JsonRpcError(code=int(code), message=message, data=data))


def to_payload(message: JsonRpcMessage) -> dict[str, Any]:
    """Builds the wire dictionary for a message. Optional members are omitted, never sent as null,
    except ``result`` which is always present on a success response."""
    payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
    if isinstance(message, JsonRpcResponse):
        payload["id"] = message.id
        if message.error is not None:
            error: dict[str, Any] = {"code": message.error.code, "message": message.error.message}
            if message.error.data is not None:
                error["data"] = message.error.data
            payload["error"] = error
        else:
            payload["result"] = message.result
        return payload

    if isinstance(message, JsonRpcRequest):
        payload["id"] = message.id
    payload["method"] = message.method
    if message.params is not None:
        payload["params"] = message.params
    return payload


def encode(message: JsonRpcMessage) -> str:
    """Serializes a message to compact JSON text (a single line, safe for newline-delimited stdio)."""
    return json.dumps(to_payload(message), separators=(",", ":"), ensure_ascii=False)


def _invalid(message: str) -> MCPProtocolError:
    return MCPProtocolError(
        message,
        kind=ProtocolErrorKind.INVALID_REQUEST,
        error_code=ErrorCode.INVALID_REQUEST,
    )


def parse_json(raw: str | bytes | bytearray) -> Any:
    """Parses raw frame text. Raises MCPProtocolError(PARSE_ERROR) on malformed input."""
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MCPProtocolError(
            f"Parse error: {e}",
            kind=ProtocolErrorKind.PARSE_ERROR,
            error_code=ErrorCode.PARSE_ERROR,
        ) from e


def decode(raw: str | bytes | bytearray | dict[str, Any]) -> JsonRpcMessage:
    """Decodes a frame into a request, notification or response model."""
    obj = raw if isinstance(raw, dict) else parse_json(raw)

    if not isinstance(obj, dict):
        raise _invalid(f"Invalid Request: expected a JSON object, got {type(obj).__name__}")

    version = obj.get("jsonrpc", JSONRPC_VERSION)
    if version != JSONRPC_VERSION:
        raise _invalid(f"Invalid Request: unsupported jsonrpc version {version!r}")

    try:
        if "method" in obj:
            if not isinstance(obj["method"], str):
                raise _invalid("Invalid Request: 'method' must be a string")
            if "id" in obj and obj["id"] is not None:
                return JsonRpcRequest.model_validate(obj)
            return JsonRpcNotification.model_validate({k: v for k, v in obj.items() if k != "id"})

        has_result = "result" in obj
        has_error = "error" in obj and obj["error"] is not None
        if has_result and has_error:
            raise _invalid("Invalid Response: both 'result' and 'error' present")
        if not has_result and not has_error:
            raise _invalid("Invalid Request: missing 'method' (request) or 'result'/'error' (response)")
        return JsonRpcResponse.model_validate(obj)
    except ValidationError as e:
        raise _invalid(f"Invalid Request: {e.errors(include_url=False)}") from e


def decode_request(raw: str | bytes | bytearray | dict[str, Any]) -> JsonRpcRequest | JsonRpcNotification:
    message = decode(raw)
    if isinstance(message, JsonRpcResponse):
        raise _invalid("Invalid Request: expected a request, got a response")
    return message


def decode_response(raw: str | bytes | bytearray | dict[str, Any]) -> JsonRpcResponse:
    message = decode(raw)
    if not isinstance(message, JsonRpcResponse):
        raise _invalid("Invalid Response: expected a response, got a request")
    return message
