"""Bundled weather/reminder MCP server: protocol handler, stdio loop and HTTP/SSE app."""
from .app import create_app, serve_sse
from .handler import McpServerHandler, bundled_provider
from .reminders import ReminderStore, Task, TaskNotFoundError
from .sessions import Session, SseSessionRegistry
from .stdio import serve_stdio
from .tools import ALL_TOOLS, REMINDER_TOOLS, WEATHER_TOOLS
from .weather import WeatherService, WeatherServiceError

__all__ = [
    "ALL_TOOLS",
    "McpServerHandler",
    "REMINDER_TOOLS",
    "ReminderStore",
    "Session",
    "SseSessionRegistry",
    "Task",
    "TaskNotFoundError",
    "WEATHER_TOOLS",
    "WeatherService",
    "WeatherServiceError",
    "bundled_provider",
    "create_app",
    "serve_sse",
    "serve_stdio",
]
