"""Logging configuration for Agent Dispatch.

Besides the usual structlog setup this module owns the conversation log
channel: free-text lines tagged with a conversation id, optionally forwarded
to a sink (an output panel, a file, a test list) and optionally kept in an
in-memory debug buffer for later inspection.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import structlog

from agent_dispatch.config import get_config

_conversation_log_sink: Callable[[str], None] | None = None


@dataclass
class DebugLogEntry:
    """One buffered conversation log line."""

    conv_id: int | None
    timestamp: datetime
    message: str


_debug_mode = False
_debug_logs: list[DebugLogEntry] = []


def configure_logging() -> None:
    """Configure structured logging for Agent Dispatch."""
    config = get_config()

    log_level = getattr(logging, config.logging.level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.logging.format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    if config.logging.debug_buffer:
        enable_debug_mode()


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


log = get_logger(__name__)


def set_conversation_log_sink(sink: Callable[[str], None] | None) -> None:
    """Set optional sink receiving formatted conversation log lines."""
    global _conversation_log_sink
    _conversation_log_sink = sink


def truncate_for_logging(text: str | None, max_length: int = 200) -> str:
    """Shorten long text before it goes into a log line."""
    if text is None:
        return ""
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


def log_to_channel(conv_id: int | None, message: str) -> None:
    """Log a message to the conversation channel with a conversation id prefix."""
    now = datetime.now()
    log.info(message, conv_id=conv_id)
    if _conversation_log_sink is not None:
        _conversation_log_sink(f"[{now.strftime('%H:%M:%S')}] [Conv-{conv_id}] {message}")
    if _debug_mode:
        _debug_logs.append(DebugLogEntry(conv_id=conv_id, timestamp=now, message=message))


def enable_debug_mode() -> None:
    """Start collecting conversation log lines in memory."""
    global _debug_mode
    _debug_mode = True
    _debug_logs.clear()


def disable_debug_mode() -> None:
    """Stop collecting and drop buffered lines."""
    global _debug_mode
    _debug_mode = False
    _debug_logs.clear()


def is_debug_mode() -> bool:
    return _debug_mode


def get_debug_logs(conv_id: int) -> list[str]:
    """Buffered lines for one conversation, oldest first."""
    return [
        f"{entry.timestamp.isoformat()} - {entry.message}"
        for entry in _debug_logs
        if entry.conv_id == conv_id
    ]


def get_all_debug_logs() -> list[str]:
    """Buffered lines across all conversations."""
    return [
        f"[Conv-{entry.conv_id}] {entry.timestamp.isoformat()} - {entry.message}"
        for entry in _debug_logs
    ]


def clear_debug_logs() -> None:
    """Clear buffered lines but keep debug mode on."""
    _debug_logs.clear()
