"""
Builds the transport adapter for a server configuration.
"""
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

import aiohttp

from ..config import MCPClientConfig
from ..exceptions import MCPConfigurationError
from ..models.common import TransportKind
from ..models.mcp import LocalConnection, McpServerConfig, RemoteConnection, SubprocessConnection
from .base import Transport
from .local import LocalTransport
from .remote import RemoteTransport
from .subprocess import SubprocessTransport

if TYPE_CHECKING:
    from ..server.handler import McpServerHandler

# Local providers are registered as zero-argument factories so every client gets
# its own handler instance.
LocalProviderFactory = Callable[[], "McpServerHandler"]


def create_transport(
    config: McpServerConfig,
    client_config: MCPClientConfig,
    local_providers: Mapping[str, LocalProviderFactory] | None = None,
    aiohttp_session: aiohttp.ClientSession | None = None,
) -> Transport:
    """Maps ``config.transport_kind`` to an adapter. Raises MCPConfigurationError for
    unknown kinds, a connection config of the wrong shape, or an unknown local provider."""
    try:
        kind = TransportKind(config.transport_kind)
    except ValueError as e:
        raise MCPConfigurationError(f"Unknown transport kind {config.transport_kind!r}", server_id=config.id) from e

    connection = config.connection

    if kind == TransportKind.SUBPROCESS:
        if not isinstance(connection, SubprocessConnection):
            raise _mismatch(config, "SubprocessConnection")
        if not connection.command.strip():
            raise MCPConfigurationError("Subprocess command must not be empty", server_id=config.id)
        return SubprocessTransport(connection, client_config, name=config.id)

    if kind == TransportKind.REMOTE:
        if not isinstance(connection, RemoteConnection):
            raise _mismatch(config, "RemoteConnection")
        if not connection.base_url.startswith(("http://", "https://")):
            raise MCPConfigurationError(
                f"Remote base_url must be an http(s) URL, got {connection.base_url!r}",
                server_id=config.id,
            )
        return RemoteTransport(connection, client_config, name=config.id, aiohttp_session=aiohttp_session)

    # TransportKind.LOCAL
    if connection is None:
        connection = LocalConnection()
    if not isinstance(connection, LocalConnection):
        raise _mismatch(config, "LocalConnection")
    provider_name = connection.provider or config.id
    providers = local_providers or {}
    if provider_name not in providers:
        raise MCPConfigurationError(
            f"Unknown local provider {provider_name!r}",
            server_id=config.id,
            details={"available_providers": sorted(providers)},
        )
    return LocalTransport(providers[provider_name](), client_config, name=config.id)


def _mismatch(config: McpServerConfig, expected: str) -> MCPConfigurationError:
    actual = type(config.connection).__name__ if config.connection is not None else "None"
    return MCPConfigurationError(
        f"Transport kind '{TransportKind(config.transport_kind).value}' requires a {expected}, got {actual}",
        server_id=config.id,
    )
