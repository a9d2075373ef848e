"""
Tests for the in-process transport and the transport factory.
"""
import asyncio

import pytest

from mcp_switchboard.exceptions import MCPConfigurationError, MCPTimeoutError, MCPTransportError, TransportErrorKind
from mcp_switchboard.mcp_client import McpClient
from mcp_switchboard.models.mcp import McpServerConfig
from mcp_switchboard.protocol.codec import encode, make_notification, make_request
from mcp_switchboard.server.handler import bundled_provider
from mcp_switchboard.transport import (
    LocalTransport,
    RemoteTransport,
    SubprocessTransport,
    create_transport,
)


async def test_send_returns_decoded_response(server_handler, client_config):
    transport = LocalTransport(server_handler, client_config, name="weather")
    await transport.start()

    response = await transport.send_message(make_request(1, "initialize", {"protocolVersion": "2024-11-05"}))
    assert response["id"] == 1
    assert response["result"]["serverInfo"]["name"] == "weather-mcp-server"

    # Serialised frames are accepted too.
    response = await transport.send(encode(make_request(2, "ping")))
    assert response == {"jsonrpc": "2.0", "id": 2, "result": {}}

    assert await transport.send_message(make_notification("notifications/initialized")) is None
    await transport.close()


async def test_send_before_start_and_after_close(server_handler, client_config):
    transport = LocalTransport(server_handler, client_config, name="weather")
    with pytest.raises(MCPTransportError):
        await transport.send_message(make_request(1, "ping"))

    await transport.start()
    await transport.close()
    await transport.close()  # idempotent

    with pytest.raises(MCPTransportError) as exc_info:
        await transport.send_message(make_request(2, "ping"))
    assert exc_info.value.kind == TransportErrorKind.CLOSED
    with pytest.raises(MCPTransportError):
        await transport.receive()


async def test_scenario_local_weather_provider_lists_tools(server_handler, client_config):
    """Local transport + weather provider: tools are listed and 'city' is a required string."""
    client = McpClient(LocalTransport(server_handler, client_config, name="weather"), client_config)
    async with client:
        tools = {tool.name: tool for tool in await client.list_tools()}

    assert {"get_current_weather", "get_weather_forecast"} <= set(tools)
    for name in ("get_current_weather", "get_weather_forecast"):
        schema = tools[name].input_schema
        assert "city" in schema["required"]
        assert schema["properties"]["city"]["type"] == "string"



def add_sleeping_tool(handler) -> asyncio.Event:
    """Registers a tool that never finishes on its own; the event is set once it is running."""
    started = asyncio.Event()

    async def sleep_forever(arguments):
        started.set()
        await asyncio.sleep(3600)

    handler._tools["sleep_forever"] = sleep_forever
    return started


async def test_slow_local_tool_times_out(server_handler, client_config):
    add_sleeping_tool(server_handler)
    loop = asyncio.get_running_loop()
    async with McpClient(LocalTransport(server_handler, client_config, name="weather"), client_config) as client:
        began = loop.time()
        with pytest.raises(MCPTimeoutError):
            await client.call_tool("sleep_forever", timeout=0.2)
        assert loop.time() - began < 2
        assert client.pending_count == 0

        # The client stays usable after a timed out call.
        result = await client.call_tool("get_current_weather", {"city": "London"})
        assert not result.is_error


async def test_close_releases_pending_local_call(server_handler, client_config):
    started = add_sleeping_tool(server_handler)
    client = McpClient(LocalTransport(server_handler, client_config, name="weather"), client_config)
    await client.initialize()

    call = asyncio.create_task(client.call_tool("sleep_forever"))
    await asyncio.wait_for(started.wait(), timeout=2)
    await asyncio.wait_for(client.close(), timeout=2)

    with pytest.raises(MCPTransportError) as exc_info:
        await asyncio.wait_for(call, timeout=1)
    assert exc_info.value.kind == TransportErrorKind.CLOSED
    assert client.pending_count == 0

def test_factory_builds_each_kind(client_config):
    providers = {"weather": bundled_provider()}
    local = create_transport(
        McpServerConfig(id="weather", name="Weather", transport_kind="local"), client_config, providers
    )
    subprocess = create_transport(
        McpServerConfig(id="fs", name="FS", transport_kind="subprocess", connection={"command": "mcp-fs"}), client_config
    )
    remote = create_transport(
        McpServerConfig(id="r", name="R", transport_kind="remote", connection={"base_url": "http://localhost:3000/"}),
        client_config,
    )
    assert isinstance(local, LocalTransport)
    assert isinstance(subprocess, SubprocessTransport)
    assert isinstance(remote, RemoteTransport)
    assert remote.base_url == "http://localhost:3000"


@pytest.mark.parametrize("server_config", [
    {"id": "a", "name": "A", "transport_kind": "subprocess"},
    {"id": "a", "name": "A", "transport_kind": "subprocess", "connection": {"command": "  "}},
    {"id": "a", "name": "A", "transport_kind": "remote", "connection": {"command": "x"}},
    {"id": "a", "name": "A", "transport_kind": "remote", "connection": {"base_url": "ftp://host"}},
    {"id": "a", "name": "A", "transport_kind": "local", "connection": {"provider": "nope"}},
])
def test_factory_rejects_bad_configuration(server_config, client_config):
    with pytest.raises(MCPConfigurationError) as exc_info:
        create_transport(McpServerConfig.model_validate(server_config), client_config, {"weather": bundled_provider()})
    assert exc_info.value.server_id == "a"
