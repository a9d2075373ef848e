"""Configuration management for MCP Switchboard."""

import json
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.common import CollisionPolicy
from .models.mcp import McpServerConfig


class LoggingConfig(BaseModel): # Remains BaseModel
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format ('json' or 'console')")
    file: Optional[Path] = Field(default=None, description="Log file path; stderr when unset")

class MCPClientConfig(BaseModel):
    """Configuration for the MCP client and its transports."""
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="Default timeout for individual requests to an MCP server.")
    connect_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for establishing an HTTP/SSE connection to an MCP server.")
    startup_delay_seconds: float = Field(default=0.5, ge=0, description="Warm-up delay after spawning a subprocess server before it is considered started.")
    inbound_queue_size: int = Field(default=256, ge=1, description="Capacity of each transport's inbound frame queue. Producers wait when it is full.")
    max_line_bytes: int = Field(default=4 * 1024 * 1024, ge=1024, description="Largest single stdio frame accepted from a subprocess server.")
    client_name: str = Field(default="mcp-switchboard", description="clientInfo.name sent during the initialize handshake.")
    client_version: str = Field(default="0.1.0", description="clientInfo.version sent during the initialize handshake.")

class ManagerConfig(BaseModel):
    """Configuration for the multi-server manager."""
    collision_policy: CollisionPolicy = Field(default=CollisionPolicy.FIRST_REGISTERED_WINS, description="Which server owns a tool name exposed by more than one server.")
    validate_arguments: bool = Field(default=True, description="Check tool arguments against the tool's inputSchema before dispatch.")

class ToolLoopConfig(BaseModel):
    """Configuration for the model/tool call loop."""
    max_rounds: int = Field(default=10, ge=1, description="Maximum number of model rounds before the loop stops.")
    model: str = Field(default="claude-3-5-sonnet-20241022", description="Model identifier sent to the Messages API.")
    max_tokens: int = Field(default=4096, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    system_prompt: Optional[str] = Field(default=None, description="System prompt sent with every round.")

class AnthropicConfig(BaseModel):
    """Configuration for the Anthropic Messages API client."""
    base_url: str = Field(default="https://api.anthropic.com", description="API root handed to the anthropic SDK.")
    api_version: str = Field(default="2023-06-01", description="Value of the anthropic-version header.")
    request_timeout_seconds: float = Field(default=120.0, gt=0)
    max_retries: int = Field(default=2, ge=0, description="SDK retries for connection errors, 429 and 5xx responses.")

class ServerConfig(BaseModel):
    """Configuration for the bundled MCP server (stdio and HTTP/SSE)."""
    name: str = Field(default="weather-mcp-server", description="serverInfo.name reported during initialize.")
    version: str = Field(default="1.0.0", description="serverInfo.version reported during initialize.")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, ge=1, le=65535)
    session_queue_size: int = Field(default=100, ge=1, description="Capacity of each SSE session's outbound channel.")
    notification_interval_seconds: float = Field(default=60.0, gt=0, description="Interval between reminder summary broadcasts.")


class Config(BaseSettings):
    """Main configuration for MCP Switchboard. Loads from environment variables prefixed with MCP_SWITCHBOARD_."""

    model_config = SettingsConfigDict(
        env_prefix='MCP_SWITCHBOARD_',
        env_nested_delimiter='__', # e.g., MCP_SWITCHBOARD_MCP_CLIENT__REQUEST_TIMEOUT_SECONDS
        extra='ignore', # Ignore extra fields from env/file if not defined in schema
        env_file='.env', # Optionally load a .env file
        env_file_encoding='utf-8'
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    mcp_client: MCPClientConfig = Field(default_factory=MCPClientConfig)
    manager: ManagerConfig = Field(default_factory=ManagerConfig)
    tool_loop: ToolLoopConfig = Field(default_factory=ToolLoopConfig)
    anthropic: AnthropicConfig = Field(default_factory=AnthropicConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    servers: List[McpServerConfig] = Field(default_factory=list, description="MCP servers the manager connects to, in registration order.")

    # Credentials keep their conventional unprefixed environment names.
    openweather_api_key: str = Field(
        default="demo",
        validation_alias=AliasChoices("openweather_api_key", "OPENWEATHER_API_KEY"),
        description="OpenWeather API key; 'demo' serves simulated weather.",
    )
    anthropic_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("anthropic_api_key", "ANTHROPIC_API_KEY"),
    )

    @classmethod
    def from_file(cls, file_path: Path) -> "Config":
        """Create configuration strictly from a JSON file.
        Note: This does not layer with environment variables.
        """
        with open(file_path) as f:
            config_data = json.load(f)
        return cls.model_validate(config_data)
