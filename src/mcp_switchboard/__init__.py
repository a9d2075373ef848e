"""MCP Switchboard - Model Context Protocol orchestration for streaming LLM conversations.

Speaks JSON-RPC 2.0 to tool servers over subprocess stdio, HTTP+SSE and in-process
transports, merges their tools into one catalog, and drives the multi-round tool
call loop of a streaming model conversation.
"""

__version__ = "0.1.0"

from .config import Config
from .exceptions import (
    MCPClientError,
    MCPConfigurationError,
    MCPConnectionError,
    MCPNotFoundError,
    MCPProtocolError,
    MCPStateError,
    MCPTimeoutError,
    MCPTransportError,
    ModelAPIError,
)
from .manager import McpManager
from .mcp_client import McpClient

__all__ = [
    "Config",
    "MCPClientError",
    "MCPConfigurationError",
    "MCPConnectionError",
    "MCPNotFoundError",
    "MCPProtocolError",
    "MCPStateError",
    "MCPTimeoutError",
    "MCPTransportError",
    "McpClient",
    "McpManager",
    "ModelAPIError",
]
