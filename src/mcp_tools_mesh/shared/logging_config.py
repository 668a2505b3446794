"""
Centralized logging configuration for MCP Tools Mesh.

This module configures logging based on the MCP_TOOLS_MESH_LOG_LEVEL
environment variable.

Log Levels:
    CRITICAL (50) - Fatal errors (reconnect attempts exhausted)
    ERROR    (40) - Errors
    WARNING  (30) - Warnings (stale nodes, failed registrations)
    INFO     (20) - Normal operation (registrations, availability changes)
    DEBUG    (10) - Debugging info (tool calls, snapshots)
    TRACE    (5)  - Verbose internals (every heartbeat, every sweep)
"""

import logging
import os
import sys

# Define TRACE level (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

MESH_LOGGER_NAME = "mcp_tools_mesh"


def _trace(self, message, *args, **kwargs):
    """Log a message with TRACE level."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


# Add trace method to Logger class
logging.Logger.trace = _trace


class SafeStreamHandler(logging.StreamHandler):
    """A stream handler that gracefully handles closed streams."""

    def emit(self, record):
        try:
            if hasattr(self.stream, "closed") and self.stream.closed:
                return
            super().emit(record)
        except (ValueError, OSError, AttributeError):
            # "I/O operation on closed file" during interpreter shutdown
            pass


def resolve_log_level(log_level_str: str | None = None) -> int:
    """Map a level name to its numeric value, defaulting to INFO."""
    log_levels = {
        "TRACE": TRACE,
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,  # Alias
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    if log_level_str is None:
        log_level_str = os.environ.get("MCP_TOOLS_MESH_LOG_LEVEL", "INFO")
    return log_levels.get(log_level_str.upper(), logging.INFO)


def configure_logging(
    log_level: str | None = None, debug_mode: bool | None = None
) -> int:
    """Configure logging for mesh processes.

    Uses allowlist approach: root logger stays at INFO to keep third-party libs
    (uvicorn, aiohttp, fastmcp) quiet, only mesh loggers follow the configured
    level. Logs go to stderr so a hub running over stdio keeps stdout clean.
    """
    level = resolve_log_level(log_level)

    if debug_mode is None:
        debug_mode = os.environ.get("MCP_TOOLS_MESH_DEBUG_MODE", "").lower() in (
            "true",
            "1",
            "yes",
        )
    if debug_mode and level > logging.DEBUG:
        level = logging.DEBUG

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = SafeStreamHandler(sys.stderr)
    handler.setLevel(TRACE)
    handler.setFormatter(
        logging.Formatter(
            "%(levelname)-8s %(asctime)s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    logging.getLogger(MESH_LOGGER_NAME).setLevel(level)
    return level
