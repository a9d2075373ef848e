"""CLI entry point for MCP Switchboard."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
import structlog

from .config import Config
from .exceptions import MCPClientError, ModelAPIError
from .manager import McpManager
from .models.mcp import McpServerConfig
from .utils.logging import setup_logging

logger = structlog.get_logger(__name__)

DEFAULT_SERVERS = [McpServerConfig(id="weather", name="Weather & Reminders", transport_kind="local")]


def _load_config(config_file: Optional[str], log_level: Optional[str], log_format: Optional[str]) -> Config:
    try:
        cfg = Config.from_file(Path(config_file)) if config_file else Config()
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)
    if log_level:
        cfg.logging.level = log_level.upper()
    if log_format:
        cfg.logging.format = log_format.lower()
    setup_logging(cfg.logging)
    return cfg


@click.group()
@click.option(
    "--config-file", "-c",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Path to a JSON configuration file.",
    envvar="MCP_SWITCHBOARD_CONFIG_FILE",
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the logging level (e.g., DEBUG, INFO).",
    envvar="MCP_SWITCHBOARD_LOGGING_LEVEL",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default=None,
    help="Override logging format.",
    envvar="MCP_SWITCHBOARD_LOGGING_FORMAT",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str], log_format: Optional[str]) -> None:
    """MCP Switchboard - connects MCP tool servers to a streaming model conversation."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = _load_config(config_file, log_level, log_format)


def _run_server(config: Config, transport: str, port: Optional[int]) -> None:
    from .server import McpServerHandler, ReminderStore, WeatherService, serve_sse, serve_stdio

    if port is not None:
        config.server.port = port
    handler = McpServerHandler(
        weather=WeatherService(api_key=config.openweather_api_key),
        reminders=ReminderStore(config.server.notification_interval_seconds),
        server_name=config.server.name,
        server_version=config.server.version,
    )
    if config.openweather_api_key == "demo":
        logger.warning("OPENWEATHER_API_KEY not set; using 'demo' key with simulated weather.")
    try:
        if transport == "sse":
            asyncio.run(serve_sse(handler, config.server))
        else:
            asyncio.run(serve_stdio(handler))
    except KeyboardInterrupt:
        click.echo("\nServer stopped.", err=True)


TRANSPORT_ARGUMENT = click.argument("transport", type=click.Choice(["stdio", "sse"], case_sensitive=False), default="stdio")
PORT_ARGUMENT = click.argument("port", type=click.IntRange(1, 65535), required=False)


@cli.command()
@TRANSPORT_ARGUMENT
@PORT_ARGUMENT
@click.pass_context
def serve(ctx: click.Context, transport: str, port: Optional[int]) -> None:
    """Run the bundled weather/reminder MCP server over stdio or HTTP/SSE."""
    _run_server(ctx.obj["config"], transport.lower(), port)


@click.command()
@TRANSPORT_ARGUMENT
@PORT_ARGUMENT
def weather_server(transport: str, port: Optional[int]) -> None:
    """Weather & reminders MCP server (stdio by default; 'sse [PORT]' for HTTP)."""
    _run_server(_load_config(None, None, None), transport.lower(), port)


async def _connect_manager(config: Config) -> McpManager:
    manager = McpManager.from_config(config)
    await manager.add_servers(config.servers or DEFAULT_SERVERS)
    return manager


@cli.command()
@click.pass_context
def tools(ctx: click.Context) -> None:
    """Connect the configured servers and list the merged tool catalog."""
    config: Config = ctx.obj["config"]

    async def run() -> None:
        manager = await _connect_manager(config)
        try:
            for state in manager.servers():
                line = f"{state.config.id}: {state.status}"
                if state.last_error:
                    line += f" ({state.last_error})"
                click.echo(line)
            for error in manager.configuration_errors:
                click.echo(f"{error.server_id or '?'}: misconfigured ({error})")
            click.echo("")
            for tool in manager.available_tools:
                click.echo(f"  {tool.name} [{manager.owner_of(tool.name)}] - {tool.description or ''}")
            click.echo(f"\n{len(manager.available_tools)} tools available")
        finally:
            await manager.close()

    asyncio.run(run())


@cli.command()
@click.argument("name")
@click.option("--args", "-a", "arguments", default="{}", help="Tool arguments as a JSON object.")
@click.pass_context
def call(ctx: click.Context, name: str, arguments: str) -> None:
    """Invoke one tool by name and print its result."""
    config: Config = ctx.obj["config"]
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--args") from e
    if not isinstance(parsed, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--args")

    async def run() -> bool:
        manager = await _connect_manager(config)
        try:
            result = await manager.call_tool(name, parsed)
        finally:
            await manager.close()
        click.echo(result.text)
        return result.is_error

    try:
        is_error = asyncio.run(run())
    except MCPClientError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if is_error:
        sys.exit(2)


@cli.command()
@click.argument("prompt")
@click.option("--max-rounds", type=click.IntRange(1), default=None, help="Override tool_loop.max_rounds.")
@click.pass_context
def chat(ctx: click.Context, prompt: str, max_rounds: Optional[int]) -> None:
    """Run one model turn (with tool calls) against the Anthropic API."""
    from .llm import AnthropicClient, TextDeltaEvent, ToolCallLoop, ToolResultEvent, ToolUseEvent

    config: Config = ctx.obj["config"]
    if max_rounds is not None:
        config.tool_loop.max_rounds = max_rounds

    async def run() -> None:
        manager = await _connect_manager(config)
        async with AnthropicClient(config.anthropic_api_key, config.anthropic) as model_client:
            try:
                loop = ToolCallLoop(manager, model_client, config.tool_loop)
                async for event in loop.run_stream(prompt):
                    if isinstance(event, TextDeltaEvent):
                        click.echo(event.text, nl=False)
                    elif isinstance(event, ToolUseEvent):
                        click.echo(f"\n[tool] {event.block.name} {json.dumps(event.block.input)}", err=True)
                    elif isinstance(event, ToolResultEvent):
                        status = "error" if event.block.is_error else "ok"
                        click.echo(f"[tool] {event.record.tool_name} -> {status}", err=True)
                click.echo("")
            finally:
                await manager.close()

    try:
        asyncio.run(run())
    except (ModelAPIError, MCPClientError) as e:
        click.echo(f"\nError: {e}", err=True)
        sys.exit(1)


@cli.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    click.echo(f"MCP Switchboard v{__version__}")


@cli.command()
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (credentials masked)."""
    config: Config = ctx.obj["config"]
    data = config.model_dump(mode="json")
    if data.get("anthropic_api_key"):
        data["anthropic_api_key"] = "***"
    if data.get("openweather_api_key") not in (None, "demo"):
        data["openweather_api_key"] = "***"
    click.echo(json.dumps(data, indent=2))


if __name__ == "__main__":
    cli()
