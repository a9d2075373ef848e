"""Newline-delimited JSON-RPC over stdin/stdout. Logs must go to stderr."""
import asyncio
import sys
from typing import TextIO

import structlog

from .handler import McpServerHandler

logger = structlog.get_logger(__name__)


async def serve_stdio(
    handler: McpServerHandler,
    input_stream: TextIO | None = None,
    output_stream: TextIO | None = None,
) -> None:
    """
    Reads one request per line until EOF and writes one response line per request.
    The reminder store keeps its timer running, but summaries are not pushed over stdio;
    clients fetch them with the ``get_task_summary`` tool.
    """
    input_stream = input_stream or sys.stdin
    output_stream = output_stream or sys.stdout
    logger.info("MCP server running.", transport="stdio", server=handler.server_info.name)
    await handler.reminders.start()
    try:
        while True:
            line = await asyncio.to_thread(input_stream.readline)
            if not line:
                logger.info("stdin closed; shutting down.")
                break
            line = line.strip()
            if not line:
                continue
            response = await handler.handle(line)
            if response is not None:
                output_stream.write(response + "\n")
                output_stream.flush()
    finally:
        await handler.reminders.stop()
        await handler.close()
