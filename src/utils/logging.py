"""Logging configuration for Reason Graph MCP.

Modules log through ``from loguru import logger``. This module owns sink
setup and a scoped context (graph id, tool name) that is rendered into
every line emitted while the context is active.

Environment:
    LOG_LEVEL  - DEBUG, INFO, WARNING, ERROR, CRITICAL (default INFO)
    LOG_FORMAT - text or json (default text)
    LOG_FILE   - optional path for a rotating JSON log
"""

from __future__ import annotations

import os
import sys
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

_graph_id: ContextVar[str | None] = ContextVar("graph_id", default=None)
_tool_name: ContextVar[str | None] = ContextVar("tool_name", default=None)


class LogFormat(str, Enum):
    """Supported log output formats."""

    JSON = "json"
    TEXT = "text"


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _inject_context(record: Record) -> None:
    """Copy the active context vars into the record's extra dict."""
    if graph_id := _graph_id.get():
        record["extra"].setdefault("graph_id", graph_id)
    if tool_name := _tool_name.get():
        record["extra"].setdefault("tool", tool_name)


def text_format(record: Record) -> str:
    """Format a record as one human-readable line."""
    parts = []
    if graph_id := record["extra"].get("graph_id"):
        parts.append(f"graph={graph_id}")
    if tool := record["extra"].get("tool"):
        parts.append(f"tool={tool}")
    context = f"[{' '.join(parts)}] " if parts else ""

    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        f"{context.replace('{', '{{').replace('}', '}}')}"
        "<level>{message}</level>\n{exception}"
    )


def configure_logging(
    level: LogLevel | str | None = None,
    log_format: LogFormat | str | None = None,
    log_file: str | Path | None = None,
) -> None:
    """Replace loguru's sinks according to arguments or environment.

    Args:
        level: Minimum level (default: LOG_LEVEL or INFO).
        log_format: ``text`` or ``json`` (default: LOG_FORMAT or text).
        log_file: Optional rotating JSON file (default: LOG_FILE).

    """
    resolved_level = LogLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    resolved_format = LogFormat((log_format or os.getenv("LOG_FORMAT", "text")).lower())
    resolved_file = log_file or os.getenv("LOG_FILE")

    logger.remove()
    logger.configure(patcher=_inject_context)

    # stdio transport owns stdout, so console logs always go to stderr
    if resolved_format == LogFormat.JSON:
        logger.add(sys.stderr, level=resolved_level.value, serialize=True)
    else:
        logger.add(sys.stderr, level=resolved_level.value, format=text_format, colorize=True)

    if resolved_file:
        path = Path(resolved_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            level=resolved_level.value,
            serialize=True,
            rotation="100 MB",
            retention="7 days",
            compression="gz",
        )


@contextmanager
def log_context(
    graph_id: str | None = None,
    tool_name: str | None = None,
) -> Generator[None, None, None]:
    """Scope a graph id and tool name onto every log line inside the block.

    Example:
        with log_context(graph_id="g1", tool_name="graph_node"):
            logger.info("Creating node")

    """
    tokens = []
    if graph_id:
        tokens.append(_graph_id.set(graph_id))
    if tool_name:
        tokens.append(_tool_name.set(tool_name))
    try:
        yield
    finally:
        for token in reversed(tokens):
            token.var.reset(token)


def current_graph_id() -> str | None:
    """Graph id bound by the innermost active ``log_context``."""
    return _graph_id.get()
