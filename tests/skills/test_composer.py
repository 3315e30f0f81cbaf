"""Tests for SkillComposer pipelines.

Tests cover:
- Pipeline construction validation
- Sequential data flow between steps
- FAIL_FAST and CONTINUE_ON_ERROR policies
- Parallel execution
- Pipelines registered as skills
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from agentic_skills.skills.base import SkillResult
from agentic_skills.skills.composer import (
    ExecutionMode,
    FailurePolicy,
    Pipeline,
    PipelineSkill,
    SkillComposer,
)
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.errors import SkillErrorCode
from agentic_skills.skills.registry import SkillRegistry


@pytest.fixture
def composer(registry: SkillRegistry) -> SkillComposer:
    return SkillComposer(registry)


def _failing(message: str):
    async def body(ctx: SkillContext, params: dict[str, Any]) -> SkillResult:
        return SkillResult.failed(SkillErrorCode.EXECUTION_ERROR, message)

    return body


# ------------------------------------------------------------------ #
# Pipeline values
# ------------------------------------------------------------------ #


def test_pipeline_requires_steps():
    with pytest.raises(ValueError, match="at least one step"):
        Pipeline(name="empty", steps=())


def test_pipeline_rejects_malformed_step_ids():
    with pytest.raises(ValueError, match="Invalid skill id"):
        Pipeline(name="bad", steps=("ok", "not ok"))


def test_builders_set_mode_and_policy(composer: SkillComposer):
    seq = composer.sequential("seq", ["a", "b"])
    lenient = composer.sequential("lenient", ["a"], policy=FailurePolicy.CONTINUE_ON_ERROR)
    par = composer.parallel("par", ["a", "b"])

    assert seq.mode is ExecutionMode.SEQUENTIAL
    assert seq.policy is FailurePolicy.FAIL_FAST
    assert lenient.policy is FailurePolicy.CONTINUE_ON_ERROR
    assert par.mode is ExecutionMode.PARALLEL
    assert par.steps == ("a", "b")


# ------------------------------------------------------------------ #
# Sequential
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_sequential_merges_step_data_into_params(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    fetch = make_skill("fetch", data={"html": "<p>hi</p>", "status": 200})
    parse = make_skill("parse", data={"text": "hi", "status": 201})
    await registry.register(fetch, context)
    await registry.register(parse, context)

    outcome = await composer.run(
        composer.sequential("scrape", ["fetch", "parse"]), context, {"url": "https://x"}
    )

    assert outcome.success is True
    assert outcome.message == "All 2 steps of pipeline 'scrape' succeeded"
    assert parse.seen_params[0] == {"url": "https://x", "html": "<p>hi</p>", "status": 200}
    # later steps overwrite earlier keys
    assert outcome.params == {"url": "https://x", "html": "<p>hi</p>", "text": "hi", "status": 201}
    assert [s.step_number for s in outcome.steps] == [1, 2]


@pytest.mark.asyncio
async def test_fail_fast_stops_at_first_failure(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    last = make_skill("last")
    await registry.register(make_skill("first"), context)
    await registry.register(make_skill("broken", body=_failing("boom")), context)
    await registry.register(last, context)

    outcome = await composer.run(
        composer.sequential("p", ["first", "broken", "last"]), context
    )

    assert outcome.success is False
    assert outcome.failed_skill_id == "broken"
    assert outcome.message == "Pipeline 'p' failed at step 'broken': boom"
    assert [s.skill_id for s in outcome.steps] == ["first", "broken"]
    assert last.calls == ["on_load"]


@pytest.mark.asyncio
async def test_continue_on_error_runs_every_step(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    await registry.register(make_skill("broken", body=_failing("boom")), context)
    await registry.register(make_skill("fine"), context)

    outcome = await composer.run(
        composer.sequential("p", ["broken", "fine"], policy=FailurePolicy.CONTINUE_ON_ERROR),
        context,
    )

    assert outcome.success is False
    assert [s.skill_id for s in outcome.steps] == ["broken", "fine"]
    assert outcome.steps[1].success is True
    assert outcome.failed_skill_id == "broken"
    assert outcome.message == "Pipeline 'p' finished with 1 failed step(s): broken"


@pytest.mark.asyncio
async def test_unknown_step_fails_the_pipeline(
    composer: SkillComposer, context: SkillContext
):
    outcome = await composer.run(Pipeline(name="p", steps=("ghost",)), context)

    assert outcome.success is False
    assert outcome.steps[0].result.error_code == SkillErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_pipeline_can_be_run_twice(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    step = make_skill("once")
    await registry.register(step, context)
    pipeline = composer.sequential("p", ["once"])

    await composer.run(pipeline, context)
    await composer.run(pipeline, context)

    assert step.calls.count("execute") == 2


@pytest.mark.asyncio
async def test_step_timeout_applies_to_each_step(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    async def slow(ctx: SkillContext, params: dict[str, Any]) -> SkillResult:
        await asyncio.sleep(10)
        return SkillResult.succeeded()

    await registry.register(make_skill("slow", body=slow), context)

    outcome = await composer.run(composer.sequential("p", ["slow"]), context, step_timeout=0.05)

    assert outcome.steps[0].result.error_code == SkillErrorCode.TIMEOUT


# ------------------------------------------------------------------ #
# Parallel
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_parallel_runs_steps_concurrently(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    barrier_hits: list[str] = []
    gate = asyncio.Event()

    def waiting(name: str):
        async def body(ctx: SkillContext, params: dict[str, Any]) -> SkillResult:
            barrier_hits.append(name)
            if len(barrier_hits) == 2:
                gate.set()
            await asyncio.wait_for(gate.wait(), timeout=1)
            return SkillResult.succeeded({name: params["seed"]})

        return body

    await registry.register(make_skill("left", body=waiting("left")), context)
    await registry.register(make_skill("right", body=waiting("right")), context)

    outcome = await composer.run(composer.parallel("both", ["left", "right"]), context, {"seed": 7})

    assert outcome.success is True
    assert [s.skill_id for s in outcome.steps] == ["left", "right"]
    assert outcome.steps[0].result.data == {"left": 7}


@pytest.mark.asyncio
async def test_parallel_reports_every_failure(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    await registry.register(make_skill("a", body=_failing("a failed")), context)
    await registry.register(make_skill("b"), context)
    await registry.register(make_skill("c", body=_failing("c failed")), context)

    outcome = await composer.run(composer.parallel("abc", ["a", "b", "c"]), context)

    assert outcome.success is False
    assert [s.skill_id for s in outcome.failed_steps] == ["a", "c"]


# ------------------------------------------------------------------ #
# Results and pipeline skills
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_to_result_prefixes_errors_with_step(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    await registry.register(make_skill("broken", body=_failing("boom")), context)

    outcome = await composer.run(composer.sequential("p", ["broken"]), context)
    result = outcome.to_result()

    assert result.success is False
    assert result.errors == ("broken: boom",)
    assert result.error_code == SkillErrorCode.EXECUTION_ERROR
    assert result.metadata["failed_skill_id"] == "broken"
    assert result.data["steps"][0]["skill_id"] == "broken"
    assert outcome.step("broken") is outcome.steps[0]
    assert outcome.step("other") is None


@pytest.mark.asyncio
async def test_pipeline_skill_depends_on_its_steps(
    composer: SkillComposer, registry: SkillRegistry, context: SkillContext, make_skill
):
    await registry.register(make_skill("fetch", data={"html": "<p/>"}), context)
    await registry.register(make_skill("parse", data={"text": ""}), context)
    skill = composer.as_skill(composer.sequential("fetch-and-parse", ["fetch", "parse"]))

    assert isinstance(skill, PipelineSkill)
    assert skill.metadata.dependencies == frozenset({"fetch", "parse"})
    assert skill.metadata.description == "Executes skills sequentially: fetch -> parse"
    assert "composite" in skill.metadata.tags

    assert (await registry.register(skill, context)).success is True
    result = await registry.execute("fetch-and-parse", context, {"url": "u"})

    assert result.success is True
    assert result.data["params"] == {"url": "u", "html": "<p/>", "text": ""}

    blocked = await registry.unregister("fetch", context)
    assert blocked.error_code == SkillErrorCode.DEPENDENTS_EXIST


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", [ExecutionMode.SEQUENTIAL, ExecutionMode.PARALLEL])
async def test_pipeline_skill_runs_inside_a_single_slot(
    test_settings, context: SkillContext, make_skill, mode: ExecutionMode
):
    """Test that steps share the pipeline's slot instead of waiting for a new one."""
    registry = SkillRegistry(test_settings, max_concurrent_executions=1)
    composer = SkillComposer(registry)
    await registry.register(make_skill("a"), context)
    await registry.register(make_skill("b"), context)
    if mode == ExecutionMode.SEQUENTIAL:
        pipeline = composer.sequential("combo", ["a", "b"])
    else:
        pipeline = composer.parallel("combo", ["a", "b"])
    await registry.register(composer.as_skill(pipeline), context)

    result = await asyncio.wait_for(registry.execute("combo", context), 2)

    assert result.success is True
    assert [step["skill_id"] for step in result.data["steps"]] == ["a", "b"]
    await registry.clear(context)


@pytest.mark.asyncio
async def test_nested_execution_does_not_lift_the_outer_bound(
    test_settings, context: SkillContext, make_skill
):
    registry = SkillRegistry(test_settings, max_concurrent_executions=1)
    composer = SkillComposer(registry)
    active = 0
    peak = 0

    async def body(ctx: SkillContext, params: dict[str, Any]) -> SkillResult:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return SkillResult.succeeded()

    await registry.register(make_skill("step", body=body), context)
    await registry.register(composer.as_skill(composer.sequential("outer", ["step"])), context)

    results = await asyncio.gather(*(registry.execute("outer", context) for _ in range(3)))

    assert all(r.success for r in results)
    assert peak == 1
    await registry.clear(context)
