"""
Pydantic models for the MCP switchboard.
"""
from .common import (
    BasePydanticModel,
    CollisionPolicy,
    ContentType,
    ServerStatus,
    TransportKind,
    WireModel,
)
from .mcp import (
    CallToolResult,
    ClientCapabilities,
    Implementation,
    InitializeResult,
    LocalConnection,
    McpPrompt,
    McpPromptArgument,
    McpResource,
    McpServerConfig,
    McpTool,
    PromptsCapability,
    RemoteConnection,
    ResourcesCapability,
    ServerCapabilities,
    ServerState,
    SubprocessConnection,
    ToolCallRecord,
    ToolContent,
    ToolsCapability,
)

__all__ = [
    "BasePydanticModel",
    "CallToolResult",
    "ClientCapabilities",
    "CollisionPolicy",
    "ContentType",
    "Implementation",
    "InitializeResult",
    "LocalConnection",
    "McpPrompt",
    "McpPromptArgument",
    "McpResource",
    "McpServerConfig",
    "McpTool",
    "PromptsCapability",
    "RemoteConnection",
    "ResourcesCapability",
    "ServerCapabilities",
    "ServerState",
    "ServerStatus",
    "SubprocessConnection",
    "ToolCallRecord",
    "ToolContent",
    "ToolsCapability",
    "TransportKind",
    "WireModel",
]
