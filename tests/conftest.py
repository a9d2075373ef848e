"""Shared fixtures."""
import pytest

from mcp_switchboard.config import MCPClientConfig
from mcp_switchboard.server.handler import McpServerHandler
from mcp_switchboard.server.reminders import ReminderStore
from mcp_switchboard.server.weather import WeatherService


@pytest.fixture
def client_config() -> MCPClientConfig:
    """Short timeouts and no subprocess warm-up, so failures surface quickly."""
    return MCPClientConfig(
        request_timeout_seconds=5.0,
        connect_timeout_seconds=5.0,
        startup_delay_seconds=0.0,
        inbound_queue_size=16,
    )


@pytest.fixture
def reminders() -> ReminderStore:
    return ReminderStore(notification_interval_seconds=60.0)


@pytest.fixture
def server_handler(reminders) -> McpServerHandler:
    """Bundled weather/reminder handler in demo mode (no network)."""
    return McpServerHandler(weather=WeatherService(api_key="demo"), reminders=reminders)
