from datetime import datetime, timezone
from typing import Any

from pydantic import Field, JsonValue

from .common import (
    BasePydanticModel,
    ContentType,
    ServerStatus,
    TransportKind,
    WireModel,
)


class Implementation(WireModel):
    name: str
    version: str

class ToolsCapability(WireModel):
    list_changed: bool = Field(default=False, alias="listChanged")

class ResourcesCapability(WireModel):
    subscribe: bool = False
    list_changed: bool = Field(default=False, alias="listChanged")

class PromptsCapability(WireModel):
    list_changed: bool = Field(default=False, alias="listChanged")

class ServerCapabilities(WireModel):
    experimental: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None
    prompts: PromptsCapability | None = None
    resources: ResourcesCapability | None = None
    tools: ToolsCapability | None = None

class ClientCapabilities(WireModel):
    experimental: dict[str, Any] | None = None
    sampling: dict[str, Any] | None = None
    roots: dict[str, Any] | None = None

class InitializeResult(WireModel):
    protocol_version: str = Field(..., alias="protocolVersion")
    capabilities: ServerCapabilities = Field(default_factory=ServerCapabilities)
    server_info: Implementation = Field(..., alias="serverInfo")
    instructions: str | None = None

class McpTool(WireModel):
    name: str = Field(..., description="Name of the tool, unique within the MCP server.")
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="inputSchema",
        description="JSON Schema for the tool's input parameters.",
    )

    @property
    def required_parameters(self) -> list[str]:
        return list(self.input_schema.get("required", []))

class McpResource(WireModel):
    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")

class McpPromptArgument(WireModel):
    name: str
    description: str | None = None
    required: bool = False

class McpPrompt(WireModel):
    name: str
    description: str | None = None
    arguments: list[McpPromptArgument] = Field(default_factory=list)

class ToolContent(WireModel):
    type: str = ContentType.TEXT.value # "text", "image", "resource"
    text: str | None = None
    data: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")

class CallToolResult(WireModel):
    content: list[ToolContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def from_text(cls, text: str, is_error: bool = False) -> "CallToolResult":
        return cls(content=[ToolContent(type=ContentType.TEXT.value, text=text)], is_error=is_error)

    @property
    def text(self) -> str:
        """Concatenated text items, the form a model consumes."""
        return "\n".join(item.text for item in self.content if item.type == ContentType.TEXT and item.text is not None)

# Connection configs are told apart by shape (extra="forbid" on each).
class SubprocessConnection(BasePydanticModel):
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict) # Overlaid on the parent environment
    cwd: str | None = None

class RemoteConnection(BasePydanticModel):
    base_url: str = Field(..., description="Server root; /sse and /message are resolved against it.")
    headers: dict[str, str] = Field(default_factory=dict)

class LocalConnection(BasePydanticModel):
    provider: str | None = Field(default=None, description="Registered in-process provider name; defaults to the server id.")

class McpServerConfig(BasePydanticModel):
    id: str
    name: str
    transport_kind: TransportKind
    connection: SubprocessConnection | RemoteConnection | LocalConnection | None = None
    enabled: bool = True

class ServerState(BasePydanticModel):
    """Read-only snapshot of one configured server, as reported by the manager."""
    config: McpServerConfig
    status: ServerStatus
    tools: list[McpTool] = Field(default_factory=list)
    server_info: Implementation | None = None
    last_error: str | None = None

class ToolCallRecord(BasePydanticModel):
    tool_name: str
    arguments: dict[str, JsonValue] = Field(default_factory=dict)
    result: CallToolResult
    is_error: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
