"""
MCP Protocol Client Implementation.

This module provides the JSON-RPC 2.0 client for interacting with MCP servers
over any transport adapter (subprocess stdio, HTTP+SSE, in-process).
"""

from ..exceptions import (
    MCPClientError,
    MCPConnectionError,
    MCPProtocolError,
    MCPStateError,
    MCPTimeoutError,
    MCPTransportError,
)
from .client import McpClient, NotificationListener

__all__ = [
    "MCPClientError",
    "MCPConnectionError",
    "MCPProtocolError",
    "MCPStateError",
    "MCPTimeoutError",
    "MCPTransportError",
    "McpClient",
    "NotificationListener",
]
