"""Skill registry - identity, dependency consistency and execution.

The registry maps each skill id to exactly one registered skill and runs
every invocation through the same lifecycle:

    validating -> before_hook -> body -> after_hook -> done

with an absorbing ``failed`` state reachable from any stage. Every public
operation returns a ``SkillResult``; faults raised by a skill are caught and
converted to ``execution_error`` results so they never escape the registry.

An entry is active only while every dependency is active. A forced
unregister suspends its dependents, transitively; they become active again
once the dependency is registered again.

Concurrency model:
- A re-entrant lock guards the id -> entry map. It is held only for the
  duration of a structural read or write, never across a hook or a body, so
  a slow skill never blocks registration of unrelated skills.
- At most ``max_concurrent_executions`` lifecycles run at once per event
  loop. An execution started from inside a running lifecycle (a composite
  skill running its steps) shares the outer slot.
- A deadline bounds the whole lifecycle. On expiry the caller gets a
  ``timeout`` result immediately and the invocation's cancellation token
  and task are cancelled. A body that ignores cancellation (or blocks the
  event loop thread) keeps running and keeps its execution slot until it
  returns; the registry does not forcibly terminate it.
"""

from __future__ import annotations

import asyncio
import threading
import time
import weakref
from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager, nullcontext
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

from agentic_skills.config import Settings, get_settings
from agentic_skills.skills.base import BaseSkill, SkillMetadata, SkillResult
from agentic_skills.skills.cancellation import (
    CancellationToken,
    reset_current_token,
    set_current_token,
)
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.definitions import DefinitionBackedSkill, read_skill_md
from agentic_skills.skills.errors import SkillErrorCode
from agentic_skills.skills.graph import DependencyGraph

log = structlog.get_logger(__name__)

# Registries whose execution slot is held by the current task chain. Nested
# executions (a pipeline step run from inside a composite skill) run under
# the outer slot instead of waiting for a second one.
_held_slots: ContextVar[tuple[SkillRegistry, ...]] = ContextVar("held_execution_slots", default=())


class EntryState(StrEnum):
    """Registration state of a registry entry."""

    REGISTERED = "registered"  # identity reserved, on_load running
    ACTIVE = "active"
    SUSPENDED = "suspended"  # a dependency was force-unregistered
    UNREGISTERING = "unregistering"  # on_unload running


class LifecycleStage(StrEnum):
    """Stages of a single skill invocation."""

    VALIDATING = "validating"
    BEFORE_HOOK = "before_hook"
    BODY = "body"
    AFTER_HOOK = "after_hook"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RegistryEntry:
    """A registered skill and its state. Owned by the registry."""

    metadata: SkillMetadata
    skill: BaseSkill
    state: EntryState = EntryState.REGISTERED


@dataclass(frozen=True)
class SkillSummary:
    """Short discovery payload for one skill."""

    skill_id: str
    name: str
    description: str
    version: str
    tags: frozenset[str] = field(default_factory=frozenset)


@dataclass
class _Invocation:
    """Mutable progress record of one execute() call."""

    skill_id: str
    token: CancellationToken
    started: float
    stage: LifecycleStage = LifecycleStage.VALIDATING

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class SkillRegistry:
    """Registry for registering, discovering and executing skills.

    Registries are plain instances: create one per process (or per test)
    and tear it down with ``clear()``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        max_concurrent_executions: int | None = None,
        default_timeout: float | None = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            settings: Settings to read defaults from (defaults to get_settings())
            max_concurrent_executions: Execution slots per event loop
            default_timeout: Deadline in seconds for execute() calls without one
        """
        settings = settings or get_settings()
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.RLock()
        self._max_concurrent = max_concurrent_executions or settings.max_concurrent_executions
        self._default_timeout = (
            default_timeout if default_timeout is not None else settings.default_timeout_seconds
        )
        self._slots: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore] = (
            weakref.WeakKeyDictionary()
        )

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    async def register(self, skill: BaseSkill, context: SkillContext) -> SkillResult:
        """Register a skill.

        The skill becomes visible to execute() as soon as this returns
        successfully.

        Args:
            skill: The skill instance to register
            context: Context passed to the skill's on_load hook

        Returns:
            Success, or a failure with code already_registered,
            dependency_missing or execution_error (on_load raised)
        """
        try:
            metadata = skill.metadata
        except Exception as exc:
            log.warning("registry.metadata_unavailable", error=str(exc))
            return SkillResult.failed(
                SkillErrorCode.EXECUTION_ERROR,
                f"Cannot read skill metadata: {exc}",
                exception_type=type(exc).__name__,
            )

        skill_id = metadata.skill_id
        with self._lock:
            if skill_id in self._entries:
                log.warning("registry.already_registered", skill_id=skill_id)
                return SkillResult.failed(
                    SkillErrorCode.ALREADY_REGISTERED,
                    f"Skill '{skill_id}' is already registered. "
                    "Unregister it first if you want to replace it.",
                    skill_id=skill_id,
                )

            missing = sorted(dep for dep in metadata.dependencies if not self._is_active(dep))
            if missing:
                log.warning("registry.dependency_missing", skill_id=skill_id, missing=missing)
                return SkillResult.failed(
                    SkillErrorCode.DEPENDENCY_MISSING,
                    f"Cannot register skill '{skill_id}': missing dependencies: {', '.join(missing)}",
                    [f"Dependency '{dep}' is not active" for dep in missing],
                    skill_id=skill_id,
                    missing=missing,
                )

            self._entries[skill_id] = RegistryEntry(metadata=metadata, skill=skill)

        try:
            await skill.on_load(context)
        except asyncio.CancelledError:
            self._discard(skill_id)
            raise
        except Exception as exc:
            self._discard(skill_id)
            log.warning("registry.on_load_failed", skill_id=skill_id, error=str(exc))
            return SkillResult.failed(
                SkillErrorCode.EXECUTION_ERROR,
                f"Skill '{skill_id}' failed to load: {exc}",
                skill_id=skill_id,
                exception_type=type(exc).__name__,
            )

        with self._lock:
            entry = self._entries[skill_id]
            # A dependency may have been force-unregistered while on_load ran
            if all(self._is_active(dep) for dep in metadata.dependencies):
                entry.state = EntryState.ACTIVE
                resumed = self._resume_suspended()
            else:
                entry.state = EntryState.SUSPENDED
                resumed = []

        log.info(
            "registry.skill_registered",
            skill_id=skill_id,
            name=metadata.name,
            version=metadata.version,
            dependencies=sorted(metadata.dependencies),
            state=entry.state,
            resumed=resumed,
            session_id=context.session_id,
        )
        return SkillResult.succeeded(
            {"skill_id": skill_id, "version": metadata.version, "resumed": resumed},
            message=f"Registered skill '{skill_id}' (version {metadata.version})",
        )

    async def unregister(
        self,
        skill_id: str,
        context: SkillContext,
        *,
        force: bool = False,
    ) -> SkillResult:
        """Unregister a skill.

        Args:
            skill_id: The ID of the skill to unregister
            context: Context passed to the skill's on_unload hook
            force: Remove the skill even if other skills depend on it; the
                dependents, and their dependents, are suspended until it is
                registered again

        Returns:
            Success, or a failure with code not_found or dependents_exist
        """
        with self._lock:
            entry = self._entries.get(skill_id)
            if entry is None or entry.state not in (EntryState.ACTIVE, EntryState.SUSPENDED):
                log.warning("registry.unregister_not_found", skill_id=skill_id)
                return SkillResult.failed(
                    SkillErrorCode.NOT_FOUND,
                    f"Skill '{skill_id}' is not registered",
                    skill_id=skill_id,
                )

            dependents = self._dependents(skill_id)
            if dependents and not force:
                log.warning("registry.dependents_exist", skill_id=skill_id, dependents=dependents)
                return SkillResult.failed(
                    SkillErrorCode.DEPENDENTS_EXIST,
                    f"Cannot unregister skill '{skill_id}': it is required by: {', '.join(dependents)}",
                    [f"Skill '{dep}' depends on '{skill_id}'" for dep in dependents],
                    skill_id=skill_id,
                    dependents=dependents,
                )

            entry.state = EntryState.UNREGISTERING
            suspended = self._suspend_dependents(skill_id) if dependents else []

        if suspended:
            log.warning("registry.dependents_suspended", skill_id=skill_id, suspended=suspended)

        try:
            await entry.skill.on_unload(context)
        except Exception as exc:
            log.warning("registry.on_unload_failed", skill_id=skill_id, error=str(exc))
        finally:
            self._discard(skill_id)

        log.info(
            "registry.skill_unregistered",
            skill_id=skill_id,
            forced=bool(dependents),
            session_id=context.session_id,
        )
        return SkillResult.succeeded(
            {"skill_id": skill_id, "dependents": dependents, "suspended": suspended},
            message=f"Unregistered skill '{skill_id}'",
        )

    async def clear(self, context: SkillContext) -> None:
        """Unregister every skill, dependents first, ignoring dependency checks.

        Intended for teardown; on_unload errors are logged and skipped.
        """
        with self._lock:
            entries = {
                skill_id: entry
                for skill_id, entry in self._entries.items()
                if entry.state in (EntryState.ACTIVE, EntryState.SUSPENDED)
            }
            for entry in entries.values():
                entry.state = EntryState.UNREGISTERING
            graph = DependencyGraph.from_metadata(e.metadata for e in entries.values())

        for skill_id in reversed(graph.topological_order(allow_cycles=True)):
            try:
                await entries[skill_id].skill.on_unload(context)
            except Exception as exc:
                log.warning("registry.on_unload_failed", skill_id=skill_id, error=str(exc))
            finally:
                self._discard(skill_id)

        log.info("registry.cleared", count=len(entries))

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def execute(
        self,
        skill_id: str,
        context: SkillContext,
        params: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> SkillResult:
        """Execute a skill by ID.

        Args:
            skill_id: The ID of the skill to execute
            context: Session context shared with the skill
            params: Invocation parameters (copied; the caller's mapping is untouched)
            timeout: Deadline in seconds for the whole lifecycle (defaults to
                the registry default; None means no deadline)

        Returns:
            The lifecycle outcome, annotated with skill_id, stage and duration_ms
        """
        with self._lock:
            entry = self._entries.get(skill_id)
            state = entry.state if entry is not None else None
            skill = entry.skill if state is EntryState.ACTIVE else None
            inactive = (
                sorted(dep for dep in entry.metadata.dependencies if not self._is_active(dep))
                if state is EntryState.SUSPENDED
                else []
            )

        if skill is None:
            log.warning(
                "registry.execute_not_found",
                skill_id=skill_id,
                state=state,
                session_id=context.session_id,
            )
            if state is EntryState.SUSPENDED:
                return SkillResult.failed(
                    SkillErrorCode.NOT_FOUND,
                    f"Skill '{skill_id}' is suspended until its dependencies are registered: "
                    f"{', '.join(inactive)}",
                    [f"Dependency '{dep}' is not active" for dep in inactive],
                    skill_id=skill_id,
                    state=state,
                    missing=inactive,
                )
            return SkillResult.failed(
                SkillErrorCode.NOT_FOUND,
                f"Skill '{skill_id}' is not registered",
                skill_id=skill_id,
            )

        deadline = timeout if timeout is not None else self._default_timeout
        invocation = _Invocation(
            skill_id=skill_id,
            token=CancellationToken(),
            started=time.monotonic(),
        )
        task = asyncio.create_task(
            self._run_lifecycle(skill, context, dict(params or {}), invocation)
        )

        try:
            done, _ = await asyncio.wait({task}, timeout=deadline)
        except asyncio.CancelledError:
            invocation.token.cancel("caller cancelled")
            task.cancel()
            raise

        if task in done:
            return task.result()

        stage = invocation.stage
        invocation.token.cancel("deadline exceeded")
        task.cancel()
        task.add_done_callback(_log_abandoned_outcome)
        log.warning(
            "lifecycle.timeout",
            skill_id=skill_id,
            session_id=context.session_id,
            stage=stage,
            timeout_seconds=deadline,
        )
        return SkillResult.failed(
            SkillErrorCode.TIMEOUT,
            f"Skill '{skill_id}' timed out after {deadline}s during {stage}",
            skill_id=skill_id,
            stage=LifecycleStage.FAILED,
            failed_stage=stage,
            duration_ms=invocation.elapsed_ms(),
            timeout_seconds=deadline,
        )

    async def _run_lifecycle(
        self,
        skill: BaseSkill,
        context: SkillContext,
        params: dict[str, Any],
        invocation: _Invocation,
    ) -> SkillResult:
        reset_token = set_current_token(invocation.token)
        try:
            with structlog.contextvars.bound_contextvars(
                session_id=context.session_id,
                skill_id=invocation.skill_id,
            ):
                async with self._execution_slot():
                    held = _held_slots.set((*_held_slots.get(), self))
                    try:
                        result = await self._run_stages(skill, context, params, invocation)
                    finally:
                        _held_slots.reset(held)
        finally:
            reset_current_token(reset_token)

        result = _ensure_failure_details(result, invocation.skill_id)
        failed_stage = invocation.stage
        invocation.stage = LifecycleStage.DONE if result.success else LifecycleStage.FAILED
        extra: dict[str, Any] = {
            "skill_id": invocation.skill_id,
            "stage": invocation.stage,
            "duration_ms": invocation.elapsed_ms(),
        }
        if not result.success:
            extra["failed_stage"] = failed_stage
        log.debug(
            "lifecycle.finished",
            skill_id=invocation.skill_id,
            success=result.success,
            stage=invocation.stage,
            duration_ms=extra["duration_ms"],
        )
        return result.with_metadata(**extra)

    async def _run_stages(
        self,
        skill: BaseSkill,
        context: SkillContext,
        params: dict[str, Any],
        invocation: _Invocation,
    ) -> SkillResult:
        skill_id = invocation.skill_id
        try:
            invocation.stage = LifecycleStage.VALIDATING
            problems = self._structural_problems(skill.metadata, params)
            problems.extend(await skill.validate(context, MappingProxyType(params)))
            if problems:
                return SkillResult.failed(
                    SkillErrorCode.VALIDATION_FAILED,
                    f"Validation failed for skill '{skill_id}': {'; '.join(problems)}",
                    problems,
                )

            invocation.stage = LifecycleStage.BEFORE_HOOK
            reason = await skill.before_execute(context, MappingProxyType(params))
            if reason is not None:
                log.info("lifecycle.before_hook_rejected", skill_id=skill_id, reason=reason)
                return SkillResult.failed(
                    SkillErrorCode.HOOK_REJECTED,
                    str(reason) or f"Skill '{skill_id}' was rejected by its before_execute hook",
                )

            invocation.stage = LifecycleStage.BODY
            result = await skill.execute(context, params)
            if not isinstance(result, SkillResult):
                return SkillResult.failed(
                    SkillErrorCode.EXECUTION_ERROR,
                    f"Skill '{skill_id}' returned {type(result).__name__} instead of SkillResult",
                )
            if not result.success:
                return result

            invocation.stage = LifecycleStage.AFTER_HOOK
            final = await skill.after_execute(context, MappingProxyType(params), result)
            if not isinstance(final, SkillResult):
                return SkillResult.failed(
                    SkillErrorCode.EXECUTION_ERROR,
                    f"after_execute of skill '{skill_id}' returned {type(final).__name__} "
                    "instead of SkillResult",
                )
            return final

        except Exception as exc:
            log.warning(
                "lifecycle.unexpected_error",
                skill_id=skill_id,
                stage=invocation.stage,
                error=str(exc),
                exc_info=True,
            )
            return SkillResult.failed(
                SkillErrorCode.EXECUTION_ERROR,
                f"Skill execution failed: {str(exc) or type(exc).__name__}",
                exception_type=type(exc).__name__,
            )

    def _structural_problems(self, metadata: SkillMetadata, params: Mapping[str, Any]) -> list[str]:
        problems = [
            f"Missing required parameter: {name}"
            for name in metadata.required_params
            if params.get(name) is None
        ]
        with self._lock:
            inactive = sorted(dep for dep in metadata.dependencies if not self._is_active(dep))
        problems.extend(f"Dependency '{dep}' is not active" for dep in inactive)
        return problems

    def _execution_slot(self) -> AbstractAsyncContextManager[Any]:
        if any(held is self for held in _held_slots.get()):
            return nullcontext()
        loop = asyncio.get_running_loop()
        with self._lock:
            slots = self._slots.get(loop)
            if slots is None:
                slots = asyncio.Semaphore(self._max_concurrent)
                self._slots[loop] = slots
            return slots

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def get(self, skill_id: str, *, include_suspended: bool = False) -> BaseSkill | None:
        """Return the active skill with this ID, or None.

        With ``include_suspended`` a skill waiting for a force-unregistered
        dependency is returned too.
        """
        accepted = {EntryState.ACTIVE}
        if include_suspended:
            accepted.add(EntryState.SUSPENDED)
        with self._lock:
            entry = self._entries.get(skill_id)
            return entry.skill if entry is not None and entry.state in accepted else None

    def contains(self, skill_id: str) -> bool:
        """Return True if a skill with this ID is active."""
        with self._lock:
            return self._is_active(skill_id)

    def state_of(self, skill_id: str) -> EntryState | None:
        with self._lock:
            entry = self._entries.get(skill_id)
            return entry.state if entry is not None else None

    def skill_ids(self) -> list[str]:
        """Return the IDs of all active skills in registration order."""
        with self._lock:
            return [sid for sid, e in self._entries.items() if e.state is EntryState.ACTIVE]

    def list_metadata(self) -> list[SkillMetadata]:
        with self._lock:
            return [e.metadata for e in self._entries.values() if e.state is EntryState.ACTIVE]

    def find_by_tag(self, tag: str) -> list[BaseSkill]:
        with self._lock:
            return [
                e.skill
                for e in self._entries.values()
                if e.state is EntryState.ACTIVE and tag in e.metadata.tags
            ]

    def find_by_author(self, author: str) -> list[BaseSkill]:
        with self._lock:
            return [
                e.skill
                for e in self._entries.values()
                if e.state is EntryState.ACTIVE and e.metadata.author == author
            ]

    def dependents_of(self, skill_id: str) -> list[str]:
        """Return the IDs of registered skills that declare ``skill_id`` as a dependency."""
        with self._lock:
            return self._dependents(skill_id)

    def summaries(self, max_description_chars: int = 512) -> list[SkillSummary]:
        """List active skills in discovery form, sorted by ID."""
        return [
            SkillSummary(
                skill_id=meta.skill_id,
                name=meta.name,
                description=meta.description[:max_description_chars],
                version=meta.version,
                tags=meta.tags,
            )
            for meta in sorted(self.list_metadata(), key=lambda m: m.skill_id)
        ]

    def activate(self, skill_id: str) -> SkillResult:
        """Return the full instructions of an active skill.

        The second discovery step after summaries(): the SKILL.md content
        and the bundled scripts/references/assets folders. Skills built in
        code have no SKILL.md; their content is empty and the paths are None.

        Returns:
            Success with skillId, name, version, description, skillMd,
            scriptsPath, referencesPath and assetsPath, or not_found
        """
        skill = self.get(skill_id)
        if skill is None:
            log.warning("registry.activate_not_found", skill_id=skill_id)
            return SkillResult.failed(
                SkillErrorCode.NOT_FOUND,
                f"Skill '{skill_id}' is not registered",
                skill_id=skill_id,
            )

        metadata = skill.metadata
        definition = skill.definition if isinstance(skill, DefinitionBackedSkill) else None
        skill_md = read_skill_md(definition) if definition is not None else ""

        def folder(path: Path | None) -> str | None:
            return str(path) if path is not None else None

        log.info("registry.skill_activated", skill_id=skill_id, has_skill_md=bool(skill_md))
        return SkillResult.succeeded(
            {
                "skillId": metadata.skill_id,
                "name": metadata.name,
                "version": metadata.version,
                "description": metadata.description,
                "skillMd": skill_md,
                "scriptsPath": folder(definition.scripts_path) if definition else None,
                "referencesPath": folder(definition.references_path) if definition else None,
                "assetsPath": folder(definition.assets_path) if definition else None,
            },
            message=f"Activated skill '{skill_id}'",
        )

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if e.state is EntryState.ACTIVE)

    # ------------------------------------------------------------------ #
    # Helpers (callers hold self._lock)
    # ------------------------------------------------------------------ #

    def _is_active(self, skill_id: str) -> bool:
        entry = self._entries.get(skill_id)
        return entry is not None and entry.state is EntryState.ACTIVE

    def _dependents(self, skill_id: str) -> list[str]:
        # Entries still loading count too: they were admitted because this
        # skill was active.
        return sorted(
            sid
            for sid, e in self._entries.items()
            if e.state is not EntryState.UNREGISTERING and skill_id in e.metadata.dependencies
        )

    def _suspend_dependents(self, skill_id: str) -> list[str]:
        """Suspend active entries that depend on ``skill_id``, directly or not."""
        suspended: list[str] = []
        pending = [skill_id]
        while pending:
            current = pending.pop()
            for sid, e in self._entries.items():
                if e.state is EntryState.ACTIVE and current in e.metadata.dependencies:
                    e.state = EntryState.SUSPENDED
                    suspended.append(sid)
                    pending.append(sid)
        return sorted(suspended)

    def _resume_suspended(self) -> list[str]:
        """Reactivate suspended entries whose dependencies are all active again."""
        resumed: list[str] = []
        progress = True
        while progress:
            progress = False
            for sid, e in self._entries.items():
                if e.state is EntryState.SUSPENDED and all(
                    self._is_active(dep) for dep in e.metadata.dependencies
                ):
                    e.state = EntryState.ACTIVE
                    resumed.append(sid)
                    progress = True
        return resumed

    def _discard(self, skill_id: str) -> None:
        with self._lock:
            self._entries.pop(skill_id, None)


def _ensure_failure_details(result: SkillResult, skill_id: str) -> SkillResult:
    """Give a failed result built by hand a message, errors and an error code."""
    if result.success or (result.message and result.errors and result.error_code):
        return result
    message = result.message or f"Skill '{skill_id}' failed"
    return SkillResult(
        success=False,
        data=result.data,
        message=message,
        metadata={
            **result.metadata,
            "errors": result.errors or (message,),
            "error_code": result.error_code or SkillErrorCode.EXECUTION_ERROR,
        },
    )


def _log_abandoned_outcome(task: asyncio.Future[SkillResult]) -> None:
    """Consume the outcome of a lifecycle the caller stopped waiting for."""
    if task.cancelled():
        log.debug("lifecycle.abandoned_cancelled")
        return
    exc = task.exception()
    if exc is not None:
        log.warning("lifecycle.abandoned_failed", error=str(exc))
    else:
        log.warning("lifecycle.abandoned_completed", success=task.result().success)
