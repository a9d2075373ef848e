"""
Multi-server MCP manager.

Owns one McpClient per configured server, merges their tool lists into a single
routable catalog and dispatches ``call_tool`` to the server that owns the name.
The server map and the catalog are only ever written under ``self._lock``;
network I/O (initialize, list, close) always happens outside it.
"""
import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import structlog
from pydantic import JsonValue, ValidationError

from .config import Config, ManagerConfig, MCPClientConfig
from .exceptions import (
    MCPClientError,
    MCPConfigurationError,
    MCPNotFoundError,
    MCPTransportError,
    TransportErrorKind,
)
from .mcp_client.client import McpClient
from .models.common import CollisionPolicy, ServerStatus
from .models.mcp import CallToolResult, McpServerConfig, McpTool, ServerState
from .protocol.codec import JsonRpcNotification
from .server.handler import bundled_provider
from .transport.factory import LocalProviderFactory, create_transport
from .utils.schema import validate_arguments

logger = structlog.get_logger(__name__)

ServerNotificationListener = Callable[[str, JsonRpcNotification], Awaitable[None] | None]


@dataclass
class _ServerEntry:
    config: McpServerConfig
    client: McpClient | None = None
    status: ServerStatus = ServerStatus.DISABLED
    tools: list[McpTool] = field(default_factory=list)
    last_error: str | None = None

    def snapshot(self) -> ServerState:
        return ServerState(
            config=self.config,
            status=self.status,
            tools=list(self.tools),
            server_info=self.client.server_info if self.client else None,
            last_error=self.last_error,
        )


class McpManager:
    """
    Manages MCP client connections to multiple servers.

    Servers are kept in registration order; the merged catalog is rebuilt after every
    mutation, so the same configuration order always yields the same catalog and routing.
    """

    def __init__(
        self,
        client_config: MCPClientConfig | None = None,
        manager_config: ManagerConfig | None = None,
        local_providers: Mapping[str, LocalProviderFactory] | None = None,
        aiohttp_session: aiohttp.ClientSession | None = None,
    ):
        self.client_config = client_config or MCPClientConfig()
        self.manager_config = manager_config or ManagerConfig()
        self._aiohttp_session = aiohttp_session

        self._lock = asyncio.Lock()
        self._entries: dict[str, _ServerEntry] = {} # insertion order is registration order
        self._catalog: tuple[McpTool, ...] = ()
        self._routes: dict[str, str] = {} # tool name -> server id
        self._tool_index: dict[str, McpTool] = {}
        self._notification_listeners: list[ServerNotificationListener] = []
        self.configuration_errors: list[MCPConfigurationError] = []

        self._local_providers: dict[str, LocalProviderFactory] = {"weather": bundled_provider()}
        if local_providers:
            self._local_providers.update(local_providers)

        self.logger = logger.bind(collision_policy=CollisionPolicy(self.manager_config.collision_policy).value)

    @classmethod
    def from_config(cls, config: Config, aiohttp_session: aiohttp.ClientSession | None = None) -> "McpManager":
        """Builds a manager whose bundled weather provider uses the configured credential."""
        return cls(
            client_config=config.mcp_client,
            manager_config=config.manager,
            local_providers={"weather": bundled_provider(api_key=config.openweather_api_key)},
            aiohttp_session=aiohttp_session,
        )

    def register_local_provider(self, name: str, factory: LocalProviderFactory) -> None:
        """Makes an in-process provider available to servers with ``transport_kind: local``."""
        self._local_providers[name] = factory
        self.logger.debug("Local provider registered.", provider=name)

    def add_notification_listener(self, listener: ServerNotificationListener) -> None:
        """Registers a callback receiving ``(server_id, notification)`` for every server."""
        self._notification_listeners.append(listener)

    @property
    def available_tools(self) -> tuple[McpTool, ...]:
        return self._catalog

    def servers(self) -> list[ServerState]:
        return [entry.snapshot() for entry in self._entries.values()]

    def get_server(self, server_id: str) -> ServerState:
        entry = self._entries.get(server_id)
        if entry is None:
            raise MCPNotFoundError(f"Unknown server '{server_id}'")
        return entry.snapshot()

    def owner_of(self, tool_name: str) -> str | None:
        return self._routes.get(tool_name)

    def to_model_tools(self) -> list[dict[str, Any]]:
        """The catalog in the Anthropic Messages API tool format."""
        return [
            {"name": tool.name, "description": tool.description, "input_schema": tool.input_schema}
            for tool in self._catalog
        ]

    async def add_server(self, config: McpServerConfig | Mapping[str, Any]) -> ServerState:
        """
        Registers a server and, when enabled, connects to it and lists its tools.
        A server that cannot be reached is recorded as ``unreachable`` rather than raising.
        Raises:
            MCPConfigurationError: duplicate id or invalid transport configuration.
        """
        if not isinstance(config, McpServerConfig):
            try:
                config = McpServerConfig.model_validate(config)
            except ValidationError as e:
                server_id = config.get("id") if isinstance(config, Mapping) else None
                raise MCPConfigurationError(
                    f"Invalid server configuration: {e.errors(include_url=False)}",
                    server_id=server_id if isinstance(server_id, str) else None,
                ) from e

        async with self._lock:
            if config.id in self._entries:
                raise MCPConfigurationError(f"Server id '{config.id}' is already registered", server_id=config.id)
            client = self._new_client(config)
            entry = _ServerEntry(config=config, client=client)
            self._entries[config.id] = entry

        self.logger.info("Server added.", server_id=config.id, transport=config.transport_kind, enabled=config.enabled)
        if config.enabled:
            await self._connect(entry, client)
        return entry.snapshot()

    async def add_servers(self, configs: Iterable[McpServerConfig | Mapping[str, Any]]) -> list[ServerState]:
        """
        Adds servers one after another, preserving their order. An entry rejected as
        misconfigured is logged, kept in ``configuration_errors`` and skipped; the
        returned states cover the servers that were registered.
        """
        states = []
        for config in configs:
            try:
                states.append(await self.add_server(config))
            except MCPConfigurationError as e:
                self.logger.error("Skipping misconfigured server.", server_id=e.server_id, error=str(e))
                self.configuration_errors.append(e)
        return states

    async def remove_server(self, server_id: str) -> None:
        async with self._lock:
            entry = self._entries.pop(server_id, None)
            if entry is None:
                raise MCPNotFoundError(f"Unknown server '{server_id}'")
            self._rebuild_catalog()
        if entry.client is not None:
            await entry.client.close()
        self.logger.info("Server removed.", server_id=server_id)

    async def toggle_server(self, server_id: str, enabled: bool) -> ServerState:
        """
        Disabling hides the server's tools but keeps its client open. Enabling reuses the
        client when it is initialized, and connects otherwise.
        """
        async with self._lock:
            entry = self._entries.get(server_id)
            if entry is None:
                raise MCPNotFoundError(f"Unknown server '{server_id}'")
            entry.config = entry.config.model_copy(update={"enabled": enabled})

            if not enabled:
                entry.status = ServerStatus.DISABLED
                self._rebuild_catalog()
                self.logger.info("Server disabled.", server_id=server_id)
                return entry.snapshot()

            if entry.client is not None and entry.client.is_initialized and not entry.client.is_closed:
                entry.status = ServerStatus.CONNECTED
                self._rebuild_catalog()
                self.logger.info("Server re-enabled.", server_id=server_id)
                return entry.snapshot()

            if entry.client is None or entry.client.is_closed:
                entry.client = self._new_client(entry.config)
            client = entry.client

        await self._connect(entry, client)
        return entry.snapshot()

    async def refresh_tools(self, server_id: str | None = None) -> tuple[McpTool, ...]:
        """Re-lists tools from connected servers (all of them, or just ``server_id``)."""
        async with self._lock:
            if server_id is not None and server_id not in self._entries:
                raise MCPNotFoundError(f"Unknown server '{server_id}'")
            targets = [
                (entry, entry.client)
                for sid, entry in self._entries.items()
                if (server_id is None or sid == server_id)
                and entry.status == ServerStatus.CONNECTED
                and entry.client is not None
            ]

        for entry, client in targets:
            try:
                tools = await client.list_tools()
            except MCPTransportError as e:
                await self._mark_unreachable(entry, client, e)
                continue
            except MCPClientError as e:
                self.logger.warning("Tool refresh failed.", server_id=entry.config.id, error=str(e))
                entry.last_error = str(e)
                continue
            async with self._lock:
                if self._entries.get(entry.config.id) is entry and entry.client is client:
                    entry.tools = tools
                    self._rebuild_catalog()
        return self._catalog

    async def call_tool(self, name: str, arguments: Mapping[str, JsonValue] | None = None) -> CallToolResult:
        """
        Routes a call to the enabled server owning ``name``.
        Raises:
            MCPNotFoundError: no enabled server provides the tool.
            MCPTransportError / MCPProtocolError: the call could not be completed.
        """
        # Routes and catalog are replaced wholesale under the lock, so a lock-free read sees a consistent pair.
        server_id = self._routes.get(name)
        if server_id is None:
            raise MCPNotFoundError(f"No enabled server provides tool '{name}'")
        entry = self._entries[server_id]
        client = entry.client
        if client is None:
            raise MCPNotFoundError(f"Server '{server_id}' has no active client")
        tool = self._tool_index[name]

        if self.manager_config.validate_arguments:
            problems = validate_arguments(tool.input_schema, arguments)
            if problems:
                self.logger.info("Rejected tool arguments.", tool_name=name, server_id=server_id, problems=problems)
                return CallToolResult.from_text(
                    f"Invalid arguments for tool '{name}': " + "; ".join(problems),
                    is_error=True,
                )

        self.logger.debug("Routing tool call.", tool_name=name, server_id=server_id)
        try:
            return await client.call_tool(name, arguments)
        except MCPTransportError as e:
            if e.kind != TransportErrorKind.TIMEOUT:
                await self._mark_unreachable(entry, client, e)
            raise

    async def close(self) -> None:
        """Closes every client. The manager is empty afterwards."""
        async with self._lock:
            clients = [entry.client for entry in self._entries.values() if entry.client is not None]
            self._entries.clear()
            self._rebuild_catalog()
        results = await asyncio.gather(*(client.close() for client in clients), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self.logger.warning("Error while closing client.", error=str(result))
        self.logger.info("Manager closed.", closed_clients=len(clients))

    def _new_client(self, config: McpServerConfig) -> McpClient:
        transport = create_transport(
            config,
            self.client_config,
            local_providers=self._local_providers,
            aiohttp_session=self._aiohttp_session,
        )
        client = McpClient(transport, self.client_config, server_id=config.id)
        client.add_notification_listener(lambda notification, sid=config.id: self._forward_notification(sid, notification))
        return client

    async def _connect(self, entry: _ServerEntry, client: McpClient) -> None:
        server_id = entry.config.id
        try:
            await client.initialize()
            tools = await client.list_tools()
        except MCPClientError as e:
            self.logger.warning("Server unreachable.", server_id=server_id, error=str(e), error_type=type(e).__name__)
            await client.close()
            async with self._lock:
                if self._entries.get(server_id) is entry and entry.client is client:
                    entry.client = None
                    entry.status = ServerStatus.UNREACHABLE
                    entry.tools = []
                    entry.last_error = str(e)
                    self._rebuild_catalog()
            return

        async with self._lock:
            if self._entries.get(server_id) is not entry or entry.client is not client:
                stale = True
            else:
                stale = False
                entry.tools = tools
                entry.last_error = None
                entry.status = ServerStatus.CONNECTED if entry.config.enabled else ServerStatus.DISABLED
                self._rebuild_catalog()
        if stale:
            # Removed (or reconnected) while we were connecting.
            await client.close()
            return
        self.logger.info("Server connected.", server_id=server_id, tool_count=len(tools))

    async def _mark_unreachable(self, entry: _ServerEntry, client: McpClient, error: MCPClientError) -> None:
        self.logger.warning("Server connection lost.", server_id=entry.config.id, error=str(error))
        async with self._lock:
            if self._entries.get(entry.config.id) is entry and entry.client is client:
                entry.client = None
                entry.status = ServerStatus.UNREACHABLE if entry.config.enabled else ServerStatus.DISABLED
                entry.tools = []
                entry.last_error = str(error)
                self._rebuild_catalog()
        await client.close()

    def _rebuild_catalog(self) -> None:
        """Recomputes routes and catalog. Caller holds ``self._lock``."""
        last_wins = CollisionPolicy(self.manager_config.collision_policy) == CollisionPolicy.LAST_REGISTERED_WINS
        routes: dict[str, str] = {}
        index: dict[str, McpTool] = {}
        for server_id, entry in self._entries.items():
            if not entry.config.enabled or entry.status != ServerStatus.CONNECTED:
                continue
            for tool in entry.tools:
                if tool.name in routes:
                    winner = server_id if last_wins else routes[tool.name]
                    self.logger.debug("Tool name collision.", tool_name=tool.name, servers=[routes[tool.name], server_id], winner=winner)
                    if not last_wins:
                        continue
                routes[tool.name] = server_id
                index[tool.name] = tool
        self._routes = routes
        self._tool_index = index
        self._catalog = tuple(index.values())

    async def _forward_notification(self, server_id: str, notification: JsonRpcNotification) -> None:
        self.logger.info("Server notification.", server_id=server_id, method=notification.method)
        for listener in list(self._notification_listeners):
            outcome = listener(server_id, notification)
            if inspect.isawaitable(outcome):
                await outcome

    async def __aenter__(self) -> "McpManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
