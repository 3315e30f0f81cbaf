"""Startup loading of skills into a registry.

Order:
1. Built-in skills (when ``settings.load_builtin_skills`` is on)
2. SKILL.md definitions from ``settings.skills_dir``

Skills whose ID is already registered are skipped, so programmatic
registrations made before bootstrap take precedence.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from agentic_skills.config import Settings, get_settings
from agentic_skills.skills.base import BaseSkill, SkillResult
from agentic_skills.skills.builtin import builtin_skills
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.definitions import DefinitionBackedSkill, SkillDefinitionLoader
from agentic_skills.skills.loader import SkillLoader
from agentic_skills.skills.registry import SkillRegistry

log = structlog.get_logger(__name__)

BOOTSTRAP_SESSION_ID = "system-bootstrap"


async def bootstrap_skills(
    registry: SkillRegistry,
    settings: Settings | None = None,
    context: SkillContext | None = None,
) -> SkillResult:
    """Load built-in and directory skills into ``registry``.

    A skill that cannot be registered (missing dependency, failing on_load,
    dependency cycle) is logged and left out; the rest of its batch is
    still loaded.

    Returns:
        Success with per-source counts and the ``failed`` IDs in ``data``,
        or a batch failure annotated with ``source`` when a batch cannot be
        ordered at all
    """
    settings = settings or get_settings()
    context = context or SkillContext(BOOTSTRAP_SESSION_ID)
    loader = SkillLoader(registry)
    counts = {"builtin": 0, "directory": 0, "skipped": 0}
    failed: list[str] = []

    log.info("bootstrap.start", skills_dir=str(settings.skills_dir) if settings.skills_dir else None)

    if settings.load_builtin_skills:
        error = await _load_batch(loader, builtin_skills(), context, counts, failed, "builtin")
        if error is not None:
            return error

    if settings.skills_dir is not None:
        definitions = SkillDefinitionLoader().load_from_directory(settings.skills_dir)
        skills = [
            DefinitionBackedSkill(definition, f"filesystem:{settings.skills_dir / definition.skill_id}")
            for definition in definitions
        ]
        error = await _load_batch(loader, skills, context, counts, failed, "directory")
        if error is not None:
            return error

    log.info("bootstrap.complete", total=len(registry), failed=failed, **counts)
    message = f"Skills initialized: {len(registry)} registered"
    if failed:
        message += f", {len(failed)} failed: {', '.join(failed)}"
    return SkillResult.succeeded(
        {**counts, "failed": failed, "total": len(registry)},
        message=message,
    )


async def _load_batch(
    loader: SkillLoader,
    skills: Sequence[BaseSkill],
    context: SkillContext,
    counts: dict[str, int],
    failed: list[str],
    source: str,
) -> SkillResult | None:
    """Register ``skills``, dropping each skill that fails and retrying the rest.

    Returns:
        None when every loadable skill was registered, or the failure when
        the batch as a whole is unusable (duplicate IDs)
    """
    pending = []
    for skill in skills:
        if loader.registry.state_of(skill.skill_id) is not None:
            log.debug("bootstrap.skip_registered", skill_id=skill.skill_id, source=source)
            counts["skipped"] += 1
        else:
            pending.append(skill)

    while pending:
        result = await loader.load_all(pending, context)
        if result.success:
            counts[source] += len(result.data["loaded"])
            return None

        loaded = list(result.metadata.get("loaded", []))
        counts[source] += len(loaded)
        if "failed_skill_id" in result.metadata:
            dropped = [result.metadata["failed_skill_id"]]
        else:
            dropped = list(result.metadata.get("cycle", []))
        if not dropped:
            log.warning("bootstrap.batch_failed", source=source, error=result.message)
            return result.with_metadata(source=source)

        log.warning(
            "bootstrap.skill_failed",
            source=source,
            skill_ids=dropped,
            error_code=result.error_code,
            error=result.message,
        )
        failed.extend(dropped)
        done = {*loaded, *dropped}
        pending = [skill for skill in pending if skill.skill_id not in done]

    return None
