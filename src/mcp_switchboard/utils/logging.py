"""
Global structlog configuration.

Log output goes to stderr (or the configured file) so that a stdio MCP server
keeps stdout reserved for protocol frames.
"""
import logging as py_logging
import sys

import structlog

from ..config import LoggingConfig


def setup_logging(logging_config: LoggingConfig) -> None:
    """Configures stdlib logging and structlog once for the whole process."""
    handler: py_logging.Handler
    if logging_config.file is not None:
        handler = py_logging.FileHandler(logging_config.file, encoding="utf-8")
    else:
        handler = py_logging.StreamHandler(sys.stderr)

    py_logging.basicConfig(
        level=getattr(py_logging, logging_config.level.upper()),
        format="%(message)s",
        handlers=[handler],
        force=True
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=logging_config.file is None and sys.stderr.isatty())
            if logging_config.format.lower() == "console"
            else structlog.processors.JSONRenderer(sort_keys=True)
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.get_logger(__name__).debug(
        "Global logging configured.", logging_level=logging_config.level, logging_format=logging_config.format
    )
