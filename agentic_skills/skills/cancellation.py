"""Cooperative cancellation for skill invocations.

Each ``execute`` call runs with its own ``CancellationToken``, exposed to the
skill body through ``current_token()``. When the caller's deadline expires
the registry cancels the token; bodies are expected to poll it at I/O
boundaries. Nothing forcibly stops a body that ignores the token.
"""

from __future__ import annotations

import threading
from contextvars import ContextVar, Token

from agentic_skills.skills.errors import SkillCancelledError


class CancellationToken:
    """Thread-safe one-shot cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``SkillCancelledError`` if the token has been cancelled."""
        if self._event.is_set():
            raise SkillCancelledError(f"Skill invocation was cancelled: {self._reason}")


# Token used when code runs outside any invocation; never cancelled.
_NEVER_CANCELLED = CancellationToken()

_current_token: ContextVar[CancellationToken] = ContextVar(
    "agentic_skills_cancellation_token",
    default=_NEVER_CANCELLED,
)


def current_token() -> CancellationToken:
    """Return the cancellation token of the running skill invocation."""
    return _current_token.get()


def set_current_token(token: CancellationToken) -> Token[CancellationToken]:
    return _current_token.set(token)


def reset_current_token(reset_token: Token[CancellationToken]) -> None:
    _current_token.reset(reset_token)
