"""
MCP server-side protocol handler.

Handles all MCP protocol messages for the bundled weather/reminder provider and
routes ``tools/call`` to the matching tool. The same handler serves stdio, the
HTTP/SSE server and in-process (local transport) clients.
"""
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog
from pydantic import JsonValue

from ..exceptions import MCPProtocolError
from ..models.mcp import (
    CallToolResult,
    Implementation,
    InitializeResult,
    PromptsCapability,
    ResourcesCapability,
    ServerCapabilities,
    ToolsCapability,
)
from ..protocol import methods
from ..protocol.codec import (
    ErrorCode,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    decode_request,
    encode,
    error_response,
    success_response,
)
from .reminders import ReminderStore, TaskNotFoundError
from .tools import ALL_TOOLS
from .weather import DEMO_API_KEY, WeatherService, WeatherServiceError

logger = structlog.get_logger(__name__)

ToolFunction = Callable[[Mapping[str, JsonValue]], Awaitable[CallToolResult]]

INSTRUCTIONS = (
    "MCP Server with Weather and Task Reminder features:\n"
    "- Weather: Get current weather and forecasts for cities worldwide using OpenWeather API\n"
    "- Reminders: Manage tasks with automatic periodic summaries showing active tasks and tasks completed today"
)


class InvalidArgument(ValueError):
    """A tool argument is missing or has the wrong shape; reported as an isError result."""
    pass


def _require_str(arguments: Mapping[str, JsonValue], name: str, message: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(message)
    return value.strip()


def _optional_str(arguments: Mapping[str, JsonValue], name: str) -> str | None:
    value = arguments.get(name)
    return value if isinstance(value, str) and value else None


def _require_int(arguments: Mapping[str, JsonValue], name: str, message: str) -> int:
    value = arguments.get(name)
    if isinstance(value, bool):
        raise InvalidArgument(message)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise InvalidArgument(message)


class McpServerHandler:
    """
    Stateful per-connection handler: ``initialize`` must arrive before tools can be
    listed or called. Notifications are accepted and never answered.
    """

    def __init__(
        self,
        weather: WeatherService | None = None,
        reminders: ReminderStore | None = None,
        server_name: str = "weather-mcp-server",
        server_version: str = "1.0.0",
    ):
        self.weather = weather or WeatherService()
        self.reminders = reminders or ReminderStore()
        self.server_info = Implementation(name=server_name, version=server_version)
        self.initialized = False
        self._methods: dict[str, Callable[[JsonRpcRequest], Awaitable[JsonRpcResponse]]] = {
            methods.INITIALIZE: self._handle_initialize,
            methods.TOOLS_LIST: self._handle_tools_list,
            methods.TOOLS_CALL: self._handle_tools_call,
            methods.RESOURCES_LIST: self._handle_resources_list,
            methods.PROMPTS_LIST: self._handle_prompts_list,
            methods.PING: self._handle_ping,
        }
        self._tools: dict[str, ToolFunction] = {
            "get_current_weather": self._tool_get_current_weather,
            "get_weather_forecast": self._tool_get_weather_forecast,
            "add_task": self._tool_add_task,
            "complete_task": self._tool_complete_task,
            "list_tasks": self._tool_list_tasks,
            "get_task_summary": self._tool_get_task_summary,
            "delete_task": self._tool_delete_task,
        }

    async def handle(self, raw: str | bytes) -> str | None:
        """Text in, text out. Returns None when the input was a notification."""
        try:
            message = decode_request(raw)
        except MCPProtocolError as e:
            logger.warning("Rejected undecodable request.", error=str(e), kind=e.kind.value)
            code = e.error_code if e.error_code is not None else ErrorCode.PARSE_ERROR
            return encode(error_response(None, code, str(e)))
        response = await self.handle_message(message)
        return encode(response) if response is not None else None

    async def handle_message(self, message: JsonRpcMessage) -> JsonRpcResponse | None:
        if isinstance(message, JsonRpcNotification):
            logger.debug("Notification received.", method=message.method)
            return None
        if isinstance(message, JsonRpcResponse):
            logger.debug("Ignoring response sent to server.", response_id=message.id)
            return None

        log = logger.bind(method=message.method, request_id=message.id)
        log.info("Processing method.")
        method_handler = self._methods.get(message.method)
        if method_handler is None:
            return error_response(message.id, ErrorCode.METHOD_NOT_FOUND, f"Method not found: {message.method}")
        try:
            return await method_handler(message)
        except Exception as e:
            log.exception("Unhandled error while processing request.")
            return error_response(message.id, ErrorCode.INTERNAL_ERROR, f"Internal error: {e}")

    async def close(self) -> None:
        await self.weather.close()

    def _not_initialized(self, request: JsonRpcRequest) -> JsonRpcResponse:
        return error_response(request.id, ErrorCode.INTERNAL_ERROR, "Server not initialized. Call initialize first.")

    async def _handle_initialize(self, request: JsonRpcRequest) -> JsonRpcResponse:
        self.initialized = True
        if self.weather.demo_mode:
            logger.warning("OpenWeather API key not set; serving simulated weather.", api_key=DEMO_API_KEY)
        result = InitializeResult(
            protocol_version=methods.PROTOCOL_VERSION,
            capabilities=ServerCapabilities(
                tools=ToolsCapability(list_changed=False),
                resources=ResourcesCapability(subscribe=False, list_changed=False),
                prompts=PromptsCapability(list_changed=False),
            ),
            server_info=self.server_info,
            instructions=INSTRUCTIONS,
        )
        return success_response(request.id, result.model_dump(by_alias=True, exclude_none=True))

    async def _handle_tools_list(self, request: JsonRpcRequest) -> JsonRpcResponse:
        if not self.initialized:
            return self._not_initialized(request)
        tools = [tool.model_dump(by_alias=True) for tool in ALL_TOOLS]
        return success_response(request.id, {"tools": tools})

    async def _handle_tools_call(self, request: JsonRpcRequest) -> JsonRpcResponse:
        if not self.initialized:
            return self._not_initialized(request)
        params = request.params
        if params is None:
            return error_response(request.id, ErrorCode.INVALID_PARAMS, "Missing params")
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            return error_response(request.id, ErrorCode.INVALID_PARAMS, "Invalid params: 'name' must be a string")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            return error_response(request.id, ErrorCode.INVALID_PARAMS, "Invalid params: 'arguments' must be an object")

        name = params["name"]
        tool = self._tools.get(name)
        if tool is None:
            result = CallToolResult.from_text(f"Unknown tool: {name}", is_error=True)
        else:
            try:
                result = await tool(arguments)
            except (ValueError, TaskNotFoundError, WeatherServiceError) as e:
                logger.info("Tool reported an error.", tool_name=name, error=str(e))
                result = CallToolResult.from_text(f"Error: {e}", is_error=True)
            except Exception as e:
                logger.exception("Tool raised an unexpected error.", tool_name=name)
                result = CallToolResult.from_text(f"Error: {e}", is_error=True)
        return success_response(request.id, result.model_dump(by_alias=True, exclude_none=True))

    async def _handle_resources_list(self, request: JsonRpcRequest) -> JsonRpcResponse:
        if not self.initialized:
            return self._not_initialized(request)
        return success_response(request.id, {"resources": []})

    async def _handle_prompts_list(self, request: JsonRpcRequest) -> JsonRpcResponse:
        if not self.initialized:
            return self._not_initialized(request)
        return success_response(request.id, {"prompts": []})

    async def _handle_ping(self, request: JsonRpcRequest) -> JsonRpcResponse:
        return success_response(request.id, {})

    async def _tool_get_current_weather(self, arguments: Mapping[str, JsonValue]) -> CallToolResult:
        city = _require_str(arguments, "city", "City parameter is required")
        units = _optional_str(arguments, "units") or "metric"
        return CallToolResult.from_text(await self.weather.get_current_weather(city, units))

    async def _tool_get_weather_forecast(self, arguments: Mapping[str, JsonValue]) -> CallToolResult:
        city = _require_str(arguments, "city", "City parameter is required")
        units = _optional_str(arguments, "units") or "metric"
        days = _require_int(arguments, "days", "days must be a number") if "days" in arguments else 3
        return CallToolResult.from_text(await self.weather.get_weather_forecast(city, units, days))

    async def _tool_add_task(self, arguments: Mapping[str, JsonValue]) -> CallToolResult:
        title = _require_str(arguments, "title", "Title parameter is required")
        task = self.reminders.add_task(title, _optional_str(arguments, "description"))
        lines = ["Task added successfully!", "", "Task Details:", f"   ID: {task.id}", f"   Title: {task.title}"]
        if task.description:
            lines.append(f"   Description: {task.description}")
        lines += [
            f"   Created: {task.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            f"The task will appear in periodic summaries every {self.reminders.notification_interval_seconds:g} seconds.",
        ]
        return CallToolResult.from_text("\n".join(lines))

    async def _tool_complete_task(self, arguments: Mapping[str, JsonValue]) -> CallToolResult:
        task_id = _require_int(arguments, "id", "Task ID parameter is required")
        task = self.reminders.complete_task(task_id)
        return CallToolResult.from_text("\n".join([
            "Task completed successfully!",
            "",
            f"Task: {task.title}",
            f"   Completed at: {task.completed_at.strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "This task will now appear in the 'Completed Today' section of summaries.",
        ]))

    async def _tool_list_tasks(self, arguments: Mapping[str, JsonValue]) -> CallToolResult:
        include_completed = arguments.get("include_completed", True)
        if not isinstance(include_completed, bool):
            raise InvalidArgument("include_completed must be a boolean")
        tasks = self.reminders.list_tasks(include_completed)

        lines = ["Task List", "=" * 20, ""]
        if not tasks:
            lines.append("No tasks found.")
        active = [t for t in tasks if not t.is_completed]
        completed = [t for t in tasks if t.is_completed]
        if active:
            lines.append(f"Active Tasks ({len(active)}):")
            for task in active:
                lines.append(f"   [{task.id}] {task.title}")
                if task.description:
                    lines.append(f"       {task.description}")
                lines.append(f"       Created: {task.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
            lines.append("")
        if completed:
            lines.append(f"Completed Tasks ({len(completed)}):")
            for task in completed:
                lines.append(f"   [{task.id}] {task.title}")
                lines.append(f"       Completed: {task.completed_at.strftime('%Y-%m-%d %H:%M:%S')}")
        lines += ["", f"Total tasks: {len(tasks)}"]
        return CallToolResult.from_text("\n".join(lines))

    async def _tool_get_task_summary(self, arguments: Mapping[str, JsonValue]) -> CallToolResult:
        summary = self.reminders.latest_notification or self.reminders.generate_summary()
        return CallToolResult.from_text(summary)

    async def _tool_delete_task(self, arguments: Mapping[str, JsonValue]) -> CallToolResult:
        task_id = _require_int(arguments, "id", "Task ID parameter is required")
        self.reminders.delete_task(task_id)
        return CallToolResult.from_text(f"Task #{task_id} deleted successfully.")


def bundled_provider(
    api_key: str = DEMO_API_KEY,
    reminders: ReminderStore | None = None,
    **handler_options: Any,
) -> Callable[[], McpServerHandler]:
    """
    Returns a factory for in-process weather/reminder handlers. Each handler gets its own
    WeatherService; the reminder store is shared across handlers from the same factory.
    """
    store = reminders or ReminderStore()

    def factory() -> McpServerHandler:
        return McpServerHandler(weather=WeatherService(api_key=api_key), reminders=store, **handler_options)

    return factory
