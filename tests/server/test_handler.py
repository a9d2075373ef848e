"""
Tests for the bundled server's JSON-RPC handler.
"""
import json

import pytest

from mcp_switchboard.protocol.codec import ErrorCode, make_notification, make_request
from mcp_switchboard.server.handler import McpServerHandler, bundled_provider


async def call(handler: McpServerHandler, method: str, params=None, request_id=1) -> dict:
    raw = await handler.handle(json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}))
    return json.loads(raw)


@pytest.fixture
async def ready_handler(server_handler):
    await call(server_handler, "initialize", {"protocolVersion": "2024-11-05", "capabilities": {}})
    yield server_handler
    await server_handler.close()


async def call_tool(handler: McpServerHandler, name: str, arguments=None) -> dict:
    response = await call(handler, "tools/call", {"name": name, "arguments": arguments or {}})
    return response["result"]


def text_of(result: dict) -> str:
    return result["content"][0]["text"]


async def test_initialize_reports_capabilities(server_handler):
    response = await call(server_handler, "initialize", {"protocolVersion": "2024-11-05"})
    result = response["result"]

    assert response["id"] == 1
    assert result["protocolVersion"] == "2024-11-05"
    assert result["serverInfo"] == {"name": "weather-mcp-server", "version": "1.0.0"}
    assert result["capabilities"]["tools"] == {"listChanged": False}
    assert "Weather" in result["instructions"]
    assert server_handler.initialized


async def test_methods_require_initialize(server_handler):
    response = await call(server_handler, "tools/list")
    assert response["error"]["code"] == ErrorCode.INTERNAL_ERROR
    assert response["error"]["message"] == "Server not initialized. Call initialize first."

    # ping is allowed at any time
    assert (await call(server_handler, "ping"))["result"] == {}


async def test_tools_list(ready_handler):
    response = await call(ready_handler, "tools/list")
    names = [tool["name"] for tool in response["result"]["tools"]]
    assert names == [
        "get_current_weather",
        "get_weather_forecast",
        "add_task",
        "complete_task",
        "list_tasks",
        "get_task_summary",
        "delete_task",
    ]
    assert all("inputSchema" in tool for tool in response["result"]["tools"])


async def test_empty_resource_and_prompt_lists(ready_handler):
    assert (await call(ready_handler, "resources/list"))["result"] == {"resources": []}
    assert (await call(ready_handler, "prompts/list"))["result"] == {"prompts": []}


async def test_unknown_method(ready_handler):
    response = await call(ready_handler, "bogus/method")
    assert response["error"] == {"code": ErrorCode.METHOD_NOT_FOUND, "message": "Method not found: bogus/method"}


async def test_parse_error_and_invalid_request(server_handler):
    response = json.loads(await server_handler.handle("{not json"))
    assert response["id"] is None
    assert response["error"]["code"] == ErrorCode.PARSE_ERROR

    response = json.loads(await server_handler.handle('{"jsonrpc":"2.0","id":1}'))
    assert response["error"]["code"] == ErrorCode.INVALID_REQUEST


async def test_notifications_get_no_response(server_handler):
    assert await server_handler.handle('{"jsonrpc":"2.0","method":"notifications/initialized"}') is None
    assert await server_handler.handle_message(make_notification("notifications/initialized")) is None


async def test_tools_call_param_errors(ready_handler):
    response = await ready_handler.handle_message(make_request(5, "tools/call"))
    assert response.error.code == ErrorCode.INVALID_PARAMS
    assert response.error.message == "Missing params"

    response = await call(ready_handler, "tools/call", {"arguments": {}})
    assert response["error"]["code"] == ErrorCode.INVALID_PARAMS

    response = await call(ready_handler, "tools/call", {"name": "add_task", "arguments": [1, 2]})
    assert response["error"]["code"] == ErrorCode.INVALID_PARAMS


async def test_unknown_tool_is_error_result(ready_handler):
    result = await call_tool(ready_handler, "teleport")
    assert result["isError"] is True
    assert text_of(result) == "Unknown tool: teleport"


async def test_unexpected_tool_exception_is_error_result(ready_handler):
    async def explode(arguments):
        raise RuntimeError("storage offline")

    ready_handler._tools["explode"] = explode
    response = await call(ready_handler, "tools/call", {"name": "explode", "arguments": {}})

    assert "error" not in response
    assert response["result"]["isError"] is True
    assert text_of(response["result"]) == "Error: storage offline"


async def test_current_weather_demo(ready_handler):
    result = await call_tool(ready_handler, "get_current_weather", {"city": "London"})
    assert result["isError"] is False
    text = text_of(result)
    assert text.startswith("Weather in London")
    assert "Temperature:" in text and "°C" in text


async def test_weather_requires_city(ready_handler):
    result = await call_tool(ready_handler, "get_current_weather", {"city": "   "})
    assert result["isError"] is True
    assert text_of(result) == "Error: City parameter is required"


async def test_forecast_demo(ready_handler):
    result = await call_tool(ready_handler, "get_weather_forecast", {"city": "Paris", "days": 2, "units": "imperial"})
    text = text_of(result)
    assert text.startswith("2-Day Weather Forecast for Paris")
    assert "°F" in text


async def test_task_lifecycle(ready_handler):
    added = text_of(await call_tool(ready_handler, "add_task", {"title": "Buy milk", "description": "2 litres"}))
    assert "Task added successfully!" in added
    assert "ID: 1" in added
    await call_tool(ready_handler, "add_task", {"title": "Call mum"})

    completed = text_of(await call_tool(ready_handler, "complete_task", {"id": 1}))
    assert "Task completed successfully!" in completed
    assert "Buy milk" in completed

    listing = text_of(await call_tool(ready_handler, "list_tasks"))
    assert "Task List" in listing
    assert "Active Tasks (1):" in listing
    assert "Completed Tasks (1):" in listing
    assert "Total tasks: 2" in listing

    active_only = text_of(await call_tool(ready_handler, "list_tasks", {"include_completed": False}))
    assert "Total tasks: 1" in active_only

    summary = text_of(await call_tool(ready_handler, "get_task_summary"))
    assert summary.startswith("Task Summary Report")
    assert "Completed Today (1):" in summary

    deleted = await call_tool(ready_handler, "delete_task", {"id": 2})
    assert text_of(deleted) == "Task #2 deleted successfully."


async def test_task_errors_are_tool_errors(ready_handler):
    result = await call_tool(ready_handler, "complete_task", {"id": 42})
    assert result["isError"] is True
    assert text_of(result) == "Error: Task not found with ID: 42"

    result = await call_tool(ready_handler, "delete_task", {"id": "abc"})
    assert result["isError"] is True

    result = await call_tool(ready_handler, "add_task", {})
    assert text_of(result) == "Error: Title parameter is required"

    result = await call_tool(ready_handler, "list_tasks", {"include_completed": "yes"})
    assert result["isError"] is True


async def test_summary_prefers_latest_notification(ready_handler):
    ready_handler.reminders.latest_notification = "cached summary"
    result = await call_tool(ready_handler, "get_task_summary")
    assert text_of(result) == "cached summary"


async def test_bundled_provider_shares_reminders():
    factory = bundled_provider()
    first, second = factory(), factory()
    assert first is not second
    assert first.weather is not second.weather
    assert first.reminders is second.reminders
    await first.close()
    await second.close()
