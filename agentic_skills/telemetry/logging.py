"""Structured logging configuration.

Configures structlog with JSON output in production and a human-readable
console renderer in development.

Features:
- Session and skill identifiers bound through context variables, so every
  line emitted during one skill invocation carries them
- ISO8601 timestamps with timezone
- Stack traces for exceptions

Log format (production):
    {
        "timestamp": "2026-10-18T10:30:45.123456Z",
        "level": "info",
        "event": "registry.skill_registered",
        "logger": "agentic_skills.skills.registry",
        "session_id": "session-123",
        "skill_id": "web-scraping"
    }
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the process.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_session_context(session_id: str) -> None:
    """Bind the session ID to the log context of the current task/thread.

    Args:
        session_id: Opaque caller-supplied session identifier
    """
    structlog.contextvars.bind_contextvars(session_id=session_id)


def bind_skill_context(skill_id: str) -> None:
    """Bind the skill ID to the log context of the current task/thread.

    Args:
        skill_id: Identity of the skill being invoked
    """
    structlog.contextvars.bind_contextvars(skill_id=skill_id)


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
