"""
JSON-RPC 2.0 framing and MCP method constants.
"""
from . import methods
from .codec import (
    ErrorCode,
    JsonRpcError,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    decode,
    decode_request,
    decode_response,
    encode,
    error_response,
    make_notification,
    make_request,
    success_response,
)

__all__ = [
    "ErrorCode",
    "JsonRpcError",
    "JsonRpcMessage",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "decode",
    "decode_request",
    "decode_response",
    "encode",
    "error_response",
    "make_notification",
    "make_request",
    "methods",
    "success_response",
]
