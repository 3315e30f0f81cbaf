"""Skill loader - batch registration in dependency order.

Provides:
- Single load/unload/reload helpers over a registry
- Batch load: topological ordering, whole-batch rejection of cycles,
  abort on the first failed registration with the partial progress reported
- Batch unload: up-front rejection when skills outside the batch still
  depend on a member, then reverse topological unregistration

Partial progress is reported, never rolled back: callers decide whether
to unwind.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import structlog

from agentic_skills.skills.base import BaseSkill, SkillMetadata, SkillResult
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.errors import CyclicDependencyError, SkillErrorCode
from agentic_skills.skills.graph import DependencyGraph
from agentic_skills.skills.registry import SkillRegistry

log = structlog.get_logger(__name__)


class SkillLoader:
    """Registers and unregisters batches of skills in dependency order."""

    def __init__(self, registry: SkillRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> SkillRegistry:
        return self._registry

    async def load(self, skill: BaseSkill, context: SkillContext) -> SkillResult:
        """Register a single skill."""
        return await self._registry.register(skill, context)

    async def unload(self, skill_id: str, context: SkillContext) -> SkillResult:
        """Unregister a single skill."""
        return await self._registry.unregister(skill_id, context)

    async def reload(self, skill: BaseSkill, context: SkillContext) -> SkillResult:
        """Unregister the skill's ID if present, then register ``skill``.

        Fails without touching the registry if active skills depend on the
        current registration.
        """
        skill_id = skill.metadata.skill_id
        if self._registry.contains(skill_id):
            removed = await self._registry.unregister(skill_id, context)
            if not removed.success:
                return removed
        return await self._registry.register(skill, context)

    # ------------------------------------------------------------------ #
    # Batch operations
    # ------------------------------------------------------------------ #

    @staticmethod
    def resolve_order(
        skills: Iterable[BaseSkill], *, allow_cycles: bool = False
    ) -> list[BaseSkill]:
        """Return ``skills`` ordered so dependencies come first.

        With ``allow_cycles`` the members of a cycle are placed last instead
        of raising.

        Raises:
            ValueError: If two skills share an ID
            CyclicDependencyError: If the batch contains a cycle and
                ``allow_cycles`` is False
        """
        by_id = {}
        metadata: list[SkillMetadata] = []
        for skill in skills:
            meta = skill.metadata
            metadata.append(meta)
            by_id.setdefault(meta.skill_id, skill)
        graph = DependencyGraph.from_metadata(metadata)
        return [
            by_id[skill_id] for skill_id in graph.topological_order(allow_cycles=allow_cycles)
        ]

    async def load_all(self, skills: Sequence[BaseSkill], context: SkillContext) -> SkillResult:
        """Register a batch of skills in topological order.

        Args:
            skills: Skills to register; their dependencies may be batch
                members or skills already active in the registry
            context: Context passed to each skill's on_load hook

        Returns:
            Success with ``data["loaded"]`` listing the IDs in registration
            order. On a cycle or duplicate ID nothing is registered. If a
            registration fails the loader stops and returns that failure
            with ``metadata["loaded"]`` (registered before the failure) and
            ``metadata["failed_skill_id"]``.
        """
        try:
            ordered = self.resolve_order(skills)
        except CyclicDependencyError as exc:
            log.warning("loader.cyclic_dependency", cycle=exc.members)
            return SkillResult.failed(
                SkillErrorCode.CYCLIC_DEPENDENCY,
                str(exc),
                [f"Skill '{member}' is part of a dependency cycle" for member in exc.members],
                cycle=exc.members,
                loaded=[],
            )
        except ValueError as exc:
            log.warning("loader.duplicate_skill", error=str(exc))
            return SkillResult.failed(SkillErrorCode.ALREADY_REGISTERED, str(exc), loaded=[])

        order = [skill.metadata.skill_id for skill in ordered]
        loaded: list[str] = []
        for skill in ordered:
            skill_id = skill.metadata.skill_id
            result = await self._registry.register(skill, context)
            if not result.success:
                log.warning(
                    "loader.batch_aborted",
                    failed_skill_id=skill_id,
                    loaded=loaded,
                    error_code=result.error_code,
                )
                details = {
                    key: value
                    for key, value in result.metadata.items()
                    if key not in ("errors", "error_code")
                }
                details.update(failed_skill_id=skill_id, loaded=list(loaded), order=order)
                return SkillResult.failed(
                    result.error_code or SkillErrorCode.EXECUTION_ERROR,
                    f"Batch load stopped at skill '{skill_id}': {result.message}",
                    result.errors,
                    **details,
                )
            loaded.append(skill_id)

        log.info("loader.batch_loaded", loaded=loaded, session_id=context.session_id)
        return SkillResult.succeeded(
            {"loaded": loaded},
            message=f"Loaded {len(loaded)} skills",
        )

    async def unload_all(self, skill_ids: Sequence[str], context: SkillContext) -> SkillResult:
        """Unregister a batch of skills, dependents first.

        Rejected up front, with nothing unregistered, if an ID is unknown or
        a skill outside the batch still depends on a member.

        Returns:
            Success with ``data["unloaded"]``, or the first failure with
            ``metadata["unloaded"]`` listing what was already removed
        """
        batch = list(dict.fromkeys(skill_ids))
        skills: list[BaseSkill] = []
        missing: list[str] = []
        for skill_id in batch:
            skill = self._registry.get(skill_id, include_suspended=True)
            if skill is None:
                missing.append(skill_id)
            else:
                skills.append(skill)

        if missing:
            return SkillResult.failed(
                SkillErrorCode.NOT_FOUND,
                f"Cannot unload: skills not registered: {', '.join(missing)}",
                [f"Skill '{skill_id}' is not registered" for skill_id in missing],
                missing=missing,
                unloaded=[],
            )

        members = set(batch)
        external = {
            skill_id: [dep for dep in self._registry.dependents_of(skill_id) if dep not in members]
            for skill_id in batch
        }
        external = {skill_id: deps for skill_id, deps in external.items() if deps}
        if external:
            errors = [
                f"Skill '{dependent}' depends on '{skill_id}'"
                for skill_id, dependents in external.items()
                for dependent in dependents
            ]
            log.warning("loader.unload_rejected", dependents=external)
            return SkillResult.failed(
                SkillErrorCode.DEPENDENTS_EXIST,
                "Cannot unload batch: skills outside the batch depend on it",
                errors,
                dependents=external,
                unloaded=[],
            )

        # Ordering must not raise here: every member gets unloaded.
        ordered = self.resolve_order(skills, allow_cycles=True)
        unloaded: list[str] = []
        for skill in reversed(ordered):
            skill_id = skill.metadata.skill_id
            result = await self._registry.unregister(skill_id, context)
            if not result.success:
                log.warning("loader.unload_aborted", failed_skill_id=skill_id, unloaded=unloaded)
                return SkillResult.failed(
                    result.error_code or SkillErrorCode.EXECUTION_ERROR,
                    f"Batch unload stopped at skill '{skill_id}': {result.message}",
                    result.errors,
                    failed_skill_id=skill_id,
                    unloaded=list(unloaded),
                )
            unloaded.append(skill_id)

        log.info("loader.batch_unloaded", unloaded=unloaded, session_id=context.session_id)
        return SkillResult.succeeded(
            {"unloaded": unloaded},
            message=f"Unloaded {len(unloaded)} skills",
        )
