"""Skills framework - self-describing capabilities with a managed lifecycle.

Skills declare their identity, version and dependencies; the registry
admits them only when their dependencies are active and runs every
invocation through validate -> before hook -> body -> after hook. The
loader registers batches in dependency order and the composer chains
registered skills into pipelines.
"""

from __future__ import annotations

from agentic_skills.skills.base import BaseSkill, SkillMetadata, SkillResult
from agentic_skills.skills.bootstrap import bootstrap_skills
from agentic_skills.skills.cancellation import CancellationToken, current_token
from agentic_skills.skills.composer import (
    ExecutionMode,
    FailurePolicy,
    Pipeline,
    PipelineResult,
    PipelineSkill,
    SkillComposer,
    StepResult,
)
from agentic_skills.skills.context import SessionStore, SkillContext
from agentic_skills.skills.definitions import (
    DefinitionBackedSkill,
    ParameterInfo,
    SkillDefinition,
    SkillDefinitionError,
    SkillDefinitionLoader,
    resolve_in_skill_root,
)
from agentic_skills.skills.errors import (
    CyclicDependencyError,
    SkillCancelledError,
    SkillError,
    SkillErrorCode,
)
from agentic_skills.skills.loader import SkillLoader
from agentic_skills.skills.registry import EntryState, LifecycleStage, SkillRegistry, SkillSummary

__all__ = [
    "BaseSkill",
    "CancellationToken",
    "CyclicDependencyError",
    "DefinitionBackedSkill",
    "EntryState",
    "ExecutionMode",
    "FailurePolicy",
    "LifecycleStage",
    "ParameterInfo",
    "Pipeline",
    "PipelineResult",
    "PipelineSkill",
    "SessionStore",
    "SkillCancelledError",
    "SkillComposer",
    "SkillContext",
    "SkillDefinition",
    "SkillDefinitionError",
    "SkillDefinitionLoader",
    "SkillError",
    "SkillErrorCode",
    "SkillLoader",
    "SkillMetadata",
    "SkillRegistry",
    "SkillResult",
    "SkillSummary",
    "StepResult",
    "bootstrap_skills",
    "current_token",
    "resolve_in_skill_root",
]
