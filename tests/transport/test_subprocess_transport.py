"""
Tests for the subprocess (stdio) transport, using real child processes.
"""
import asyncio
import sys
import time

import pytest

from mcp_switchboard.config import MCPClientConfig
from mcp_switchboard.exceptions import MCPConnectionError, MCPTransportError, TransportErrorKind
from mcp_switchboard.mcp_client import McpClient
from mcp_switchboard.models.mcp import SubprocessConnection
from mcp_switchboard.protocol.codec import encode, make_request
from mcp_switchboard.transport import SubprocessTransport


def python_server(code: str) -> SubprocessConnection:
    return SubprocessConnection(command=sys.executable, args=["-c", code])


async def test_nonexistent_executable_fails_fast(client_config):
    """initialize() on a missing binary fails with CONNECT_FAILED within seconds."""
    connection = SubprocessConnection(command="/nonexistent/definitely-not-an-mcp-server")
    client = McpClient(SubprocessTransport(connection, client_config, name="missing"), client_config)

    started = time.monotonic()
    with pytest.raises(MCPTransportError) as exc_info:
        await client.initialize()
    assert exc_info.value.kind == TransportErrorKind.CONNECT_FAILED
    assert isinstance(exc_info.value, MCPConnectionError)
    assert time.monotonic() - started < 5
    await client.close()


async def test_process_exiting_during_startup_is_connect_failure():
    config = MCPClientConfig(startup_delay_seconds=0.5)
    transport = SubprocessTransport(python_server("import sys; sys.exit(3)"), config, name="quitter")
    with pytest.raises(MCPConnectionError):
        await transport.start()
    assert transport.is_open is False


async def test_process_exit_fails_receive_with_process_terminated(client_config):
    transport = SubprocessTransport(python_server("import sys; sys.stdin.readline()"), client_config, name="one-shot")
    await transport.start()
    await transport.send(encode(make_request(1, "ping")))

    with pytest.raises(MCPTransportError) as exc_info:
        await asyncio.wait_for(transport.receive(), timeout=10)
    assert exc_info.value.kind == TransportErrorKind.PROCESS_TERMINATED
    await transport.close()


async def test_frames_are_read_line_by_line(client_config):
    code = (
        "import sys\n"
        "print('{\"jsonrpc\":\"2.0\",\"id\":1,\"result\":{}}', flush=True)\n"
        "print('', flush=True)\n"
        "print('{\"jsonrpc\":\"2.0\",\"method\":\"notifications/message\"}', flush=True)\n"
        "sys.stdin.readline()\n"
    )
    async with SubprocessTransport(python_server(code), client_config, name="chatty") as transport:
        first = await asyncio.wait_for(transport.receive(), timeout=10)
        second = await asyncio.wait_for(transport.receive(), timeout=10)
    assert first == '{"jsonrpc":"2.0","id":1,"result":{}}'
    assert second == '{"jsonrpc":"2.0","method":"notifications/message"}'


async def test_oversized_frame_disconnects():
    config = MCPClientConfig(startup_delay_seconds=0.0, max_line_bytes=1024)
    code = "import sys; print('x' * 5000, flush=True); sys.stdin.readline()"
    transport = SubprocessTransport(python_server(code), config, name="huge")
    await transport.start()
    with pytest.raises(MCPTransportError) as exc_info:
        await asyncio.wait_for(transport.receive(), timeout=10)
    assert exc_info.value.kind == TransportErrorKind.DISCONNECTED
    await transport.close()


async def test_bundled_server_over_stdio():
    """Runs ``python -m mcp_switchboard serve stdio`` and talks MCP to it."""
    config = MCPClientConfig(request_timeout_seconds=30.0, startup_delay_seconds=0.0)
    connection = SubprocessConnection(
        command=sys.executable,
        args=["-m", "mcp_switchboard", "serve", "stdio"],
        env={"OPENWEATHER_API_KEY": "demo", "MCP_SWITCHBOARD_LOGGING__LEVEL": "WARNING"},
    )
    client = McpClient(SubprocessTransport(connection, config, name="weather-stdio"), config)
    async with client:
        assert client.server_info.name == "weather-mcp-server"
        tool_names = [tool.name for tool in await client.list_tools()]
        result = await client.call_tool("get_current_weather", {"city": "London"})

    assert "get_current_weather" in tool_names
    assert result.is_error is False
    assert "London" in result.text
    assert "Temperature:" in result.text
    assert client.is_closed
