"""Skill composition - pipelines of registered skills over one context.

Implements two composition modes:
1. SEQUENTIAL: steps run strictly in order; each successful step's data is
   merged into the params handed to the next step
2. PARALLEL: steps run concurrently with the same params; success iff every
   step succeeds

Sequential pipelines honour a failure policy: FAIL_FAST (default) stops at
the first failed step, CONTINUE_ON_ERROR runs every step and reports the
aggregate. Pipelines are plain values: building one never touches the
registry, and the same pipeline can be run any number of times.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

import structlog

from agentic_skills.skills.base import BaseSkill, SkillMetadata, SkillResult, validate_skill_id
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.errors import SkillErrorCode
from agentic_skills.skills.registry import SkillRegistry

log = structlog.get_logger(__name__)


class FailurePolicy(StrEnum):
    """What a sequential pipeline does after a failed step."""

    FAIL_FAST = "fail_fast"
    CONTINUE_ON_ERROR = "continue_on_error"


class ExecutionMode(StrEnum):
    """How the steps of a pipeline are scheduled."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


@dataclass(frozen=True)
class Pipeline:
    """An ordered sequence of skill IDs plus its failure policy."""

    name: str
    steps: tuple[str, ...]
    policy: FailurePolicy = FailurePolicy.FAIL_FAST
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.name:
            raise ValueError("Pipeline name cannot be empty")
        if not self.steps:
            raise ValueError("Pipeline requires at least one step")
        for step in self.steps:
            validate_skill_id(step)


@dataclass(frozen=True)
class StepResult:
    """Result from a single step in a pipeline run."""

    skill_id: str
    result: SkillResult
    duration_ms: int
    step_number: int = 0

    @property
    def success(self) -> bool:
        return self.result.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "step_number": self.step_number,
            "duration_ms": self.duration_ms,
            **self.result.to_dict(),
        }


@dataclass(frozen=True)
class PipelineResult:
    """Aggregate outcome of one pipeline run.

    Includes:
    - Every executed step's result (full audit trail)
    - The failing step under FAIL_FAST
    - The params after all merges
    """

    pipeline: str
    success: bool
    steps: tuple[StepResult, ...]
    message: str
    failed_skill_id: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict)
    total_duration_ms: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def failed_steps(self) -> list[StepResult]:
        return [step for step in self.steps if not step.success]

    def step(self, skill_id: str) -> StepResult | None:
        """Return the first step result for ``skill_id``."""
        return next((s for s in self.steps if s.skill_id == skill_id), None)

    def to_result(self) -> SkillResult:
        """Express the aggregate as a SkillResult.

        Failure errors are prefixed with the ID of the step they came from.
        """
        steps = [step.to_dict() for step in self.steps]
        if self.success:
            return SkillResult.succeeded(
                {"steps": steps, "params": dict(self.params)},
                message=self.message,
                pipeline=self.pipeline,
                total_duration_ms=self.total_duration_ms,
            )

        failed = self.failed_steps
        first = failed[0].result if failed else None
        errors = [
            f"{step.skill_id}: {error}"
            for step in failed
            for error in step.result.errors or (step.result.message,)
        ]
        return SkillResult.failed(
            (first.error_code if first else None) or SkillErrorCode.EXECUTION_ERROR,
            self.message,
            errors,
            data={"steps": steps, "params": dict(self.params)},
            pipeline=self.pipeline,
            failed_skill_id=self.failed_skill_id,
            total_duration_ms=self.total_duration_ms,
        )


class SkillComposer:
    """Builds pipelines and runs them against a registry."""

    def __init__(self, registry: SkillRegistry) -> None:
        self._registry = registry

    def sequential(
        self,
        name: str,
        skill_ids: Sequence[str],
        *,
        policy: FailurePolicy = FailurePolicy.FAIL_FAST,
    ) -> Pipeline:
        """Build a pipeline that runs ``skill_ids`` in order."""
        return Pipeline(name=name, steps=tuple(skill_ids), policy=policy)

    def parallel(self, name: str, skill_ids: Sequence[str]) -> Pipeline:
        """Build a pipeline that runs ``skill_ids`` concurrently."""
        return Pipeline(
            name=name,
            steps=tuple(skill_ids),
            policy=FailurePolicy.CONTINUE_ON_ERROR,
            mode=ExecutionMode.PARALLEL,
        )

    def as_skill(self, pipeline: Pipeline, metadata: SkillMetadata | None = None) -> PipelineSkill:
        """Wrap ``pipeline`` in a skill that can itself be registered."""
        return PipelineSkill(self, pipeline, metadata)

    async def run(
        self,
        pipeline: Pipeline,
        context: SkillContext,
        initial_params: Mapping[str, Any] | None = None,
        *,
        step_timeout: float | None = None,
    ) -> PipelineResult:
        """Execute a pipeline on one context.

        Args:
            pipeline: Pipeline to run
            context: Context shared by every step
            initial_params: Params handed to the first step (or every step
                of a parallel pipeline)
            step_timeout: Deadline in seconds applied to each step

        Returns:
            PipelineResult with the per-step audit trail
        """
        log.info(
            "pipeline.run_start",
            pipeline=pipeline.name,
            steps=list(pipeline.steps),
            mode=pipeline.mode,
            policy=pipeline.policy,
            session_id=context.session_id,
        )
        if pipeline.mode is ExecutionMode.PARALLEL:
            result = await self._run_parallel(pipeline, context, initial_params, step_timeout)
        else:
            result = await self._run_sequential(pipeline, context, initial_params, step_timeout)

        log.info(
            "pipeline.run_complete",
            pipeline=pipeline.name,
            success=result.success,
            failed_skill_id=result.failed_skill_id,
            total_duration_ms=result.total_duration_ms,
        )
        return result

    async def _run_sequential(
        self,
        pipeline: Pipeline,
        context: SkillContext,
        initial_params: Mapping[str, Any] | None,
        step_timeout: float | None,
    ) -> PipelineResult:
        start_time = time.monotonic()
        params: dict[str, Any] = dict(initial_params or {})
        steps: list[StepResult] = []

        for idx, skill_id in enumerate(pipeline.steps, start=1):
            step = await self._run_step(skill_id, idx, context, params, step_timeout)
            steps.append(step)

            if step.success:
                params.update(step.result.data)
                continue

            log.warning(
                "pipeline.step_failed",
                pipeline=pipeline.name,
                step=idx,
                skill_id=skill_id,
                error=step.result.message,
            )
            if pipeline.policy is FailurePolicy.FAIL_FAST:
                return PipelineResult(
                    pipeline=pipeline.name,
                    success=False,
                    steps=tuple(steps),
                    message=(
                        f"Pipeline '{pipeline.name}' failed at step '{skill_id}': "
                        f"{step.result.message}"
                    ),
                    failed_skill_id=skill_id,
                    params=params,
                    total_duration_ms=_elapsed_ms(start_time),
                )

        return self._aggregate(pipeline, steps, params, start_time)

    async def _run_parallel(
        self,
        pipeline: Pipeline,
        context: SkillContext,
        initial_params: Mapping[str, Any] | None,
        step_timeout: float | None,
    ) -> PipelineResult:
        start_time = time.monotonic()
        params = dict(initial_params or {})
        steps = await asyncio.gather(
            *(
                self._run_step(skill_id, idx, context, params, step_timeout)
                for idx, skill_id in enumerate(pipeline.steps, start=1)
            )
        )
        return self._aggregate(pipeline, list(steps), params, start_time)

    async def _run_step(
        self,
        skill_id: str,
        step_number: int,
        context: SkillContext,
        params: Mapping[str, Any],
        step_timeout: float | None,
    ) -> StepResult:
        step_start = time.monotonic()
        log.debug("pipeline.step_start", step=step_number, skill_id=skill_id)
        result = await self._registry.execute(skill_id, context, params, timeout=step_timeout)
        return StepResult(
            skill_id=skill_id,
            result=result,
            duration_ms=_elapsed_ms(step_start),
            step_number=step_number,
        )

    @staticmethod
    def _aggregate(
        pipeline: Pipeline,
        steps: list[StepResult],
        params: Mapping[str, Any],
        start_time: float,
    ) -> PipelineResult:
        failed = [step.skill_id for step in steps if not step.success]
        if failed:
            message = (
                f"Pipeline '{pipeline.name}' finished with {len(failed)} failed "
                f"step(s): {', '.join(failed)}"
            )
        else:
            message = f"All {len(steps)} steps of pipeline '{pipeline.name}' succeeded"
        return PipelineResult(
            pipeline=pipeline.name,
            success=not failed,
            steps=tuple(steps),
            message=message,
            failed_skill_id=failed[0] if failed else None,
            params=params,
            total_duration_ms=_elapsed_ms(start_time),
        )


class PipelineSkill(BaseSkill):
    """A pipeline exposed as a skill.

    Its dependencies are the pipeline's steps, so it can only be registered
    once every step is active, and those steps cannot be unregistered while
    it is.
    """

    def __init__(
        self,
        composer: SkillComposer,
        pipeline: Pipeline,
        metadata: SkillMetadata | None = None,
    ) -> None:
        self._composer = composer
        self._pipeline = pipeline
        sequential = pipeline.mode is ExecutionMode.SEQUENTIAL
        separator = " -> " if sequential else " | "
        self._metadata = metadata or SkillMetadata(
            skill_id=pipeline.name,
            name=f"{'Sequential' if sequential else 'Parallel'} composite: {', '.join(pipeline.steps)}",
            description=(
                f"Executes skills {'sequentially' if sequential else 'in parallel'}: "
                f"{separator.join(pipeline.steps)}"
            ),
            dependencies=frozenset(pipeline.steps),
            tags=frozenset({"composite"}),
        )

    @property
    def metadata(self) -> SkillMetadata:
        return self._metadata

    @property
    def pipeline(self) -> Pipeline:
        return self._pipeline

    async def execute(self, context: SkillContext, params: dict[str, Any]) -> SkillResult:
        outcome = await self._composer.run(self._pipeline, context, params)
        return outcome.to_result()


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
