"""Session-scoped context shared by skill invocations.

A ``SkillContext`` is created and owned by the caller. The framework passes
it to every invocation of a logical session and never destroys it; the
caller decides when a session ends. Writes to the shared state take a
per-context lock for the duration of a single key update, so concurrent
invocations sharing one context observe last-write-wins per key.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

import structlog

log = structlog.get_logger(__name__)

_MISSING = object()


class SkillContext:
    """Runtime context for skill execution.

    Provides the skill with:
    - The opaque session identifier
    - Read-only configuration for the session
    - A mutable state mapping shared across invocations of the session
    """

    def __init__(
        self,
        session_id: str,
        config: Mapping[str, Any] | None = None,
        state: Mapping[str, Any] | None = None,
    ) -> None:
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("session_id cannot be empty")
        self._session_id = session_id
        self._config = MappingProxyType(dict(config or {}))
        self._state: dict[str, Any] = dict(state or {})
        self._lock = threading.Lock()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def config(self) -> Mapping[str, Any]:
        return self._config

    def get_config(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    # ------------------------------------------------------------------ #
    # Shared state
    # ------------------------------------------------------------------ #

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._state[key] = value

    def setdefault(self, key: str, value: Any) -> Any:
        """Store ``value`` unless ``key`` is present; return the stored value."""
        with self._lock:
            return self._state.setdefault(key, value)

    def update(self, values: Mapping[str, Any]) -> None:
        """Write several keys, each one under the lock.

        No ordering is guaranteed relative to writers of other keys.
        """
        for key, value in values.items():
            self.set(key, value)

    def pop(self, key: str, default: Any = _MISSING) -> Any:
        with self._lock:
            if default is _MISSING:
                return self._state.pop(key)
            return self._state.pop(key, default)

    def snapshot(self) -> dict[str, Any]:
        """Return a shallow copy of the shared state."""
        with self._lock:
            return dict(self._state)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._state)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._state

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __repr__(self) -> str:
        return f"SkillContext(session_id={self._session_id!r}, keys={self.keys()!r})"


class SessionStore:
    """Maps session identifiers to their shared ``SkillContext``.

    Equal session ids resolve to the same context. Sessions are only removed
    by an explicit ``end_session`` call.
    """

    def __init__(self) -> None:
        self._contexts: dict[str, SkillContext] = {}
        self._lock = threading.Lock()

    def get_or_create(
        self,
        session_id: str,
        config: Mapping[str, Any] | None = None,
    ) -> SkillContext:
        """Return the context of ``session_id``, creating it on first use.

        ``config`` is only applied when the context is created.
        """
        with self._lock:
            context = self._contexts.get(session_id)
            if context is None:
                context = SkillContext(session_id, config=config)
                self._contexts[session_id] = context
                log.debug("session.created", session_id=session_id)
            return context

    def get(self, session_id: str) -> SkillContext | None:
        with self._lock:
            return self._contexts.get(session_id)

    def end_session(self, session_id: str) -> bool:
        """Forget a session. Returns False if it was not known."""
        with self._lock:
            removed = self._contexts.pop(session_id, None)
        if removed is not None:
            log.debug("session.ended", session_id=session_id)
        return removed is not None

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._contexts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)
