"""Tool definitions published by the bundled weather/reminder server."""
from ..models.mcp import McpTool

_UNITS_PROPERTY = {
    "type": "string",
    "description": "Temperature units: 'metric' (Celsius), 'imperial' (Fahrenheit), or 'standard' (Kelvin)",
    "enum": ["metric", "imperial", "standard"],
    "default": "metric",
}

_CITY_PROPERTY = {
    "type": "string",
    "description": "City name (e.g., 'London', 'New York', 'Moscow')",
}

WEATHER_TOOLS: tuple[McpTool, ...] = (
    McpTool(
        name="get_current_weather",
        description="Get current weather for a specific city. Returns temperature, humidity, pressure, and weather conditions.",
        input_schema={
            "type": "object",
            "properties": {"city": _CITY_PROPERTY, "units": _UNITS_PROPERTY},
            "required": ["city"],
        },
    ),
    McpTool(
        name="get_weather_forecast",
        description="Get a multi-day weather forecast for a specific city. Returns forecast data in 3-hour intervals.",
        input_schema={
            "type": "object",
            "properties": {
                "city": _CITY_PROPERTY,
                "units": _UNITS_PROPERTY,
                "days": {
                    "type": "number",
                    "description": "Number of days to forecast (1-5)",
                    "minimum": 1,
                    "maximum": 5,
                    "default": 3,
                },
            },
            "required": ["city"],
        },
    ),
)

REMINDER_TOOLS: tuple[McpTool, ...] = (
    McpTool(
        name="add_task",
        description="Add a new task to the reminder system. Tasks will appear in periodic summary notifications.",
        input_schema={
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Task title (required)"},
                "description": {"type": "string", "description": "Optional task description with additional details"},
            },
            "required": ["title"],
        },
    ),
    McpTool(
        name="complete_task",
        description="Mark a task as completed. Completed tasks will appear in the 'Completed Today' section of summaries.",
        input_schema={
            "type": "object",
            "properties": {"id": {"type": "number", "description": "Task ID to mark as complete"}},
            "required": ["id"],
        },
    ),
    McpTool(
        name="list_tasks",
        description="Get a list of all tasks. You can optionally filter to show only active (incomplete) tasks.",
        input_schema={
            "type": "object",
            "properties": {
                "include_completed": {
                    "type": "boolean",
                    "description": "Include completed tasks in the list (default: true)",
                    "default": True,
                },
            },
        },
    ),
    McpTool(
        name="get_task_summary",
        description="Get the current task summary report showing active tasks and tasks completed today. This is the same report that is sent periodically as notifications.",
        input_schema={"type": "object", "properties": {}},
    ),
    McpTool(
        name="delete_task",
        description="Permanently delete a task from the system.",
        input_schema={
            "type": "object",
            "properties": {"id": {"type": "number", "description": "Task ID to delete"}},
            "required": ["id"],
        },
    ),
)

ALL_TOOLS: tuple[McpTool, ...] = WEATHER_TOOLS + REMINDER_TOOLS
