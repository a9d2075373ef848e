"""
Exception taxonomy for the MCP orchestration layer.

Tool execution failures are not exceptions: they travel as successful
``tools/call`` results with ``isError`` set, so they can be fed back to a model.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ProtocolErrorKind(str, Enum):
    PARSE_ERROR = "parse_error"
    INVALID_REQUEST = "invalid_request"
    HANDSHAKE_MISMATCH = "handshake_mismatch"
    RPC_ERROR = "rpc_error"  # Peer answered with a JSON-RPC error object


class TransportErrorKind(str, Enum):
    CONNECT_FAILED = "connect_failed"
    TIMEOUT = "timeout"
    DISCONNECTED = "disconnected"
    PROCESS_TERMINATED = "process_terminated"
    CLOSED = "closed"


class MCPClientError(Exception):
    """Base class for all MCP orchestration errors."""
    pass


class MCPProtocolError(MCPClientError):
    """Raised for malformed frames, handshake mismatches and JSON-RPC error responses."""
    def __init__(
        self,
        message: str,
        kind: ProtocolErrorKind = ProtocolErrorKind.INVALID_REQUEST,
        error_code: Optional[int] = None,
        error_data: Optional[Any] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.error_code = error_code
        self.error_data = error_data


class MCPTransportError(MCPClientError):
    """Raised when frames cannot be moved between the client and the tool provider.
    The transport layer never retries on its own; callers decide."""
    def __init__(self, message: str, kind: TransportErrorKind = TransportErrorKind.DISCONNECTED):
        super().__init__(message)
        self.kind = kind


class MCPConnectionError(MCPTransportError):
    """Raised when a transport cannot be started (process launch or HTTP connect failure)."""
    def __init__(self, message: str):
        super().__init__(message, kind=TransportErrorKind.CONNECT_FAILED)


class MCPTimeoutError(MCPTransportError):
    """Raised when a request does not receive its response within the configured timeout."""
    def __init__(self, message: str):
        super().__init__(message, kind=TransportErrorKind.TIMEOUT)


class MCPStateError(MCPClientError):
    """Raised when an operation is attempted before ``initialize()`` succeeded."""
    NOT_INITIALIZED = "not_initialized"

    def __init__(self, message: str = "Client not initialized", kind: str = NOT_INITIALIZED):
        super().__init__(message)
        self.kind = kind


class MCPNotFoundError(MCPClientError):
    """Raised when a tool, server or session id is unknown."""
    pass


class MCPConfigurationError(MCPClientError):
    """Raised for invalid server configuration (unknown transport kind, mismatched connection config)."""
    def __init__(self, message: str, server_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.server_id = server_id
        self.details = details or {}


class ModelAPIError(Exception):
    """Raised when the model endpoint rejects a request or reports an error mid-stream."""
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
