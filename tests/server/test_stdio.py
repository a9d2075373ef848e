"""
Tests for the newline-delimited stdio server loop.
"""
import io
import json

from mcp_switchboard.server.stdio import serve_stdio


async def test_one_response_line_per_request(server_handler):
    requests = [
        {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "2024-11-05"}},
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
        {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "get_current_weather", "arguments": {"city": "Berlin"}}},
    ]
    stdin = io.StringIO("\n".join(json.dumps(request) for request in requests) + "\n\n")
    stdout = io.StringIO()

    await serve_stdio(server_handler, stdin, stdout)

    lines = stdout.getvalue().splitlines()
    assert len(lines) == 2
    responses = [json.loads(line) for line in lines]
    assert [response["id"] for response in responses] == [1, 2]
    assert "Weather in Berlin" in responses[1]["result"]["content"][0]["text"]
    # The summary timer is stopped once stdin closes.
    assert not server_handler.reminders.running


async def test_garbage_line_gets_parse_error(server_handler):
    stdout = io.StringIO()
    await serve_stdio(server_handler, io.StringIO("this is not json\n"), stdout)
    response = json.loads(stdout.getvalue())
    assert response["id"] is None
    assert response["error"]["code"] == -32700
