"""
Structured logging with automatic request/node correlation.

Key Features:
- Plain logger.info() calls pick up the current request and node IDs
- ContextVar-based propagation: safe across asyncio tasks and worker threads
- Dual output modes: JSON for production, human-readable for development

Propagation:
    IntentExecutor.execute() -> sets request_id and graph_id
        | (copied into every node task)
    node task -> adds node_id
        | (copied into asyncio.to_thread for sync handlers)
    handler code -> logger.info("...") -> carries both IDs
"""

import json
import logging
import os
import re
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

# ANSI escape code pattern (matches \033[...m or \x1b[...m)
ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Each entry carries timestamp, level, logger and message, the current
    trace context (request_id, graph_id, node_id) and the optional
    ``event``, ``intent_type``, ``attempt`` and ``latency_ms`` extras.
    """

    EXTRA_FIELDS = ("event", "intent_type", "attempt", "latency_ms")

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        message = strip_ansi_codes(record.getMessage())

        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": message,
        }
        log_entry.update(context)

        for name in self.EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            log_entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        # An explicit extra={"node_id": ...} wins over the context
        node_id = getattr(record, "node_id", None)
        if node_id is not None:
            log_entry["node_id"] = node_id

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Colorized single-line logs for local debugging.

    Prefix: [req:<last 8 of request_id> | node:<node_id>]
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        request_id = context.get("request_id", "")
        node_id = getattr(record, "node_id", None) or context.get("node_id", "")

        prefix_parts = []
        if request_id:
            prefix_parts.append(f"req:{request_id[-8:]}")
        if node_id:
            prefix_parts.append(f"node:{node_id}")
        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        line = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure logging for the process. Call once at startup (the CLI does).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format:
            - "json": Machine-parseable JSON (for production)
            - "human": Human-readable with colors (for development)
            - "auto": JSON if LOG_FORMAT=json or ENV=production, else human
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
        os.environ["NO_COLOR"] = "1"
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Route handler-side HTTP client logs through the same formatter
    if format == "json":
        for logger_name in ("httpcore", "httpx"):
            logger = logging.getLogger(logger_name)
            logger.handlers.clear()
            logger.propagate = True


def set_trace_context(**kwargs: Any) -> Token:
    """
    Merge fields into the trace context of the current task.

    Called by the executor (request_id, graph_id) and by each node task
    (node_id). asyncio tasks copy the context at creation, so a node's
    fields never leak into its siblings.

    Returns a token for reset_trace_context().
    """
    current = trace_context.get() or {}
    return trace_context.set({**current, **kwargs})


def reset_trace_context(token: Token) -> None:
    """Restore the trace context that was current before set_trace_context()."""
    trace_context.reset(token)


def get_trace_context() -> dict:
    """Current trace context, or an empty dict."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Drop all trace fields (used between requests and in tests)."""
    trace_context.set(None)
