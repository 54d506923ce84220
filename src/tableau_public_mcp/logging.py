"""Centralized logging configuration using loguru.

All output goes to stderr: when the server runs over the stdio transport,
stdout carries the MCP protocol and must stay clean.

Example:
    from tableau_public_mcp.logging import setup_logging

    # Initialize logging at application startup
    setup_logging(level="DEBUG")

    # Then use loguru's logger in any module
    from loguru import logger
    logger.info("Server started")

"""

import logging
import sys
from typing import Any

from loguru import logger

# Libraries that log through the standard library
INTERCEPTED_LOGGERS = ("httpx", "httpcore", "mcp", "fastmcp")


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the logging call
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: str | None = None,
) -> Any:
    """Configure loguru for the application.

    Should be called once at startup, before the gateway is created.

    Args:
        level: Minimum log level to capture. One of: DEBUG, INFO, WARNING, ERROR, CRITICAL.
        json_output: If True, output logs in JSON format for production/monitoring systems.
        log_file: Optional file path to write logs to. If None, logs only to stderr.

    Returns:
        The configured loguru logger instance.

    """
    logger.remove()

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    if json_output:
        logger.add(sys.stderr, format="{message}", serialize=True, level=level)
    else:
        logger.add(sys.stderr, format=console_format, level=level, colorize=True)

    if log_file:
        logger.add(
            log_file,
            format=console_format,
            level=level,
            rotation="10 MB",
            retention="7 days",
            compression="gz",
        )

    # httpx logs every request at INFO; keep it at WARNING unless debugging
    stdlib_level = logging.DEBUG if level.upper() in ("TRACE", "DEBUG") else logging.WARNING
    for name in INTERCEPTED_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.setLevel(stdlib_level)
        std_logger.propagate = False

    return logger
