"""Logging setup and log-context helpers."""

from __future__ import annotations

from agentic_skills.telemetry.logging import (
    bind_session_context,
    bind_skill_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "bind_session_context",
    "bind_skill_context",
    "clear_context",
    "configure_logging",
]
