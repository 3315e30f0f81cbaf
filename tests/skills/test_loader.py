"""Tests for dependency ordering and batch loading.

Tests cover:
- Topological ordering (stable, external dependencies ignored)
- Cycle detection with the offending members
- Batch load: order, abort on failure with partial progress
- Batch unload: external dependents, reverse order
- Single load/unload/reload helpers
"""

from __future__ import annotations

import pytest

from agentic_skills.skills.base import SkillMetadata
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.errors import CyclicDependencyError, SkillErrorCode
from agentic_skills.skills.graph import DependencyGraph
from agentic_skills.skills.loader import SkillLoader
from agentic_skills.skills.registry import SkillRegistry


@pytest.fixture
def loader(registry: SkillRegistry) -> SkillLoader:
    """Create a loader over the test registry."""
    return SkillLoader(registry)


def _meta(skill_id: str, *deps: str) -> SkillMetadata:
    return SkillMetadata(skill_id=skill_id, name=skill_id, dependencies=frozenset(deps))


# ------------------------------------------------------------------ #
# Dependency graph
# ------------------------------------------------------------------ #


class TestDependencyGraph:
    """Test topological ordering."""

    def test_dependencies_come_first(self):
        graph = DependencyGraph.from_metadata(
            [_meta("form", "scrape"), _meta("scrape"), _meta("report", "form", "scrape")]
        )

        assert graph.topological_order() == ["scrape", "form", "report"]

    def test_order_is_stable_for_independent_nodes(self):
        graph = DependencyGraph.from_metadata([_meta("c"), _meta("a"), _meta("b")])
        assert graph.topological_order() == ["c", "a", "b"]

    def test_external_dependencies_are_ignored(self):
        graph = DependencyGraph.from_metadata([_meta("child", "already-active")])

        assert graph.topological_order() == ["child"]
        assert graph.dependencies_of("child") == []
        assert graph.external_dependencies_of("child") == ["already-active"]

    def test_cycle_is_reported_with_members(self):
        graph = DependencyGraph.from_metadata(
            [_meta("free"), _meta("a", "b"), _meta("b", "c"), _meta("c", "a")]
        )

        with pytest.raises(CyclicDependencyError) as exc_info:
            graph.topological_order()

        assert sorted(exc_info.value.members) == ["a", "b", "c"]
        assert "free" not in exc_info.value.members

    def test_cycle_members_go_last_when_cycles_are_allowed(self):
        """Test the teardown ordering that never raises."""
        graph = DependencyGraph.from_metadata(
            [_meta("a", "b"), _meta("free"), _meta("b", "a"), _meta("top", "free")]
        )

        assert graph.topological_order(allow_cycles=True) == ["free", "top", "a", "b"]

    def test_duplicate_ids_are_rejected(self):
        with pytest.raises(ValueError, match="Duplicate skill id"):
            DependencyGraph.from_metadata([_meta("a"), _meta("a")])


# ------------------------------------------------------------------ #
# Batch load
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_load_all_registers_in_dependency_order(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    journal: list[str] = []
    skills = [
        make_skill("form-filling", dependencies=["web-scraping"], journal=journal),
        make_skill("web-scraping", journal=journal),
        make_skill("data-validation", journal=journal),
    ]

    result = await loader.load_all(skills, context)

    assert result.success is True
    assert result.data["loaded"] == ["web-scraping", "data-validation", "form-filling"]
    assert journal.index("web-scraping:on_load") < journal.index("form-filling:on_load")
    assert len(registry) == 3


@pytest.mark.asyncio
async def test_load_all_with_cycle_registers_nothing(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    skills = [
        make_skill("ok"),
        make_skill("a", dependencies=["b"]),
        make_skill("b", dependencies=["a"]),
    ]

    result = await loader.load_all(skills, context)

    assert result.success is False
    assert result.error_code == SkillErrorCode.CYCLIC_DEPENDENCY
    assert sorted(result.metadata["cycle"]) == ["a", "b"]
    assert result.metadata["loaded"] == []
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_load_all_with_duplicate_ids(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    result = await loader.load_all([make_skill("a"), make_skill("a")], context)

    assert result.error_code == SkillErrorCode.ALREADY_REGISTERED
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_load_all_stops_at_first_failure(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    """Test partial progress is reported and not rolled back."""
    skills = [
        make_skill("first"),
        make_skill("second", dependencies=["first"], on_load_error=RuntimeError("bad")),
        make_skill("third", dependencies=["second"]),
    ]

    result = await loader.load_all(skills, context)

    assert result.success is False
    assert result.error_code == SkillErrorCode.EXECUTION_ERROR
    assert result.metadata["failed_skill_id"] == "second"
    assert result.metadata["loaded"] == ["first"]
    assert result.metadata["order"] == ["first", "second", "third"]
    assert result.message.startswith("Batch load stopped at skill 'second'")
    assert registry.skill_ids() == ["first"]


@pytest.mark.asyncio
async def test_load_all_reports_missing_external_dependency(
    loader: SkillLoader, context: SkillContext, make_skill
):
    result = await loader.load_all([make_skill("child", dependencies=["not-there"])], context)

    assert result.error_code == SkillErrorCode.DEPENDENCY_MISSING
    assert result.metadata["missing"] == ["not-there"]
    assert result.metadata["loaded"] == []


# ------------------------------------------------------------------ #
# Batch unload
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_unload_all_removes_dependents_first(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    journal: list[str] = []
    await loader.load_all(
        [
            make_skill("base", journal=journal),
            make_skill("top", dependencies=["base"], journal=journal),
        ],
        context,
    )

    result = await loader.unload_all(["base", "top"], context)

    assert result.success is True
    assert result.data["unloaded"] == ["top", "base"]
    assert journal[-2:] == ["top:on_unload", "base:on_unload"]
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_unload_all_rejects_external_dependents(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    await loader.load_all(
        [make_skill("base"), make_skill("top", dependencies=["base"])],
        context,
    )

    result = await loader.unload_all(["base"], context)

    assert result.success is False
    assert result.error_code == SkillErrorCode.DEPENDENTS_EXIST
    assert result.metadata["dependents"] == {"base": ["top"]}
    assert registry.skill_ids() == ["base", "top"]


@pytest.mark.asyncio
async def test_unload_all_rejects_unknown_ids(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    await loader.load(make_skill("known"), context)

    result = await loader.unload_all(["known", "ghost"], context)

    assert result.error_code == SkillErrorCode.NOT_FOUND
    assert result.metadata["missing"] == ["ghost"]
    assert registry.contains("known")


# ------------------------------------------------------------------ #
# Single skill helpers
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_reload_replaces_registration(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    old = make_skill("alpha", version="1.0.0")
    new = make_skill("alpha", version="2.0.0")
    await loader.load(old, context)

    result = await loader.reload(new, context)

    assert result.success is True
    assert registry.get("alpha") is new
    assert old.calls == ["on_load", "on_unload"]


@pytest.mark.asyncio
async def test_reload_refuses_when_dependents_exist(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    old = make_skill("base")
    await loader.load(old, context)
    await loader.load(make_skill("top", dependencies=["base"]), context)

    result = await loader.reload(make_skill("base", version="2.0.0"), context)

    assert result.error_code == SkillErrorCode.DEPENDENTS_EXIST
    assert registry.get("base") is old


@pytest.mark.asyncio
async def test_unload_single(loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill):
    await loader.load(make_skill("alpha"), context)

    assert (await loader.unload("alpha", context)).success is True
    assert (await loader.unload("alpha", context)).error_code == SkillErrorCode.NOT_FOUND


def test_resolve_order_is_static(make_skill):
    ordered = SkillLoader.resolve_order([make_skill("b", dependencies=["a"]), make_skill("a")])
    assert [s.skill_id for s in ordered] == ["a", "b"]


def test_resolve_order_can_tolerate_cycles(make_skill):
    skills = [make_skill("a", dependencies=["b"]), make_skill("b", dependencies=["a"])]

    with pytest.raises(CyclicDependencyError):
        SkillLoader.resolve_order(skills)

    ordered = SkillLoader.resolve_order(skills, allow_cycles=True)
    assert [s.skill_id for s in ordered] == ["a", "b"]


@pytest.mark.asyncio
async def test_unload_all_after_forced_unregister(
    loader: SkillLoader, registry: SkillRegistry, context: SkillContext, make_skill
):
    """Test that suspended skills can be unloaded as a batch."""
    await loader.load_all([make_skill("b"), make_skill("a", dependencies=["b"])], context)
    await registry.unregister("b", context, force=True)
    await registry.register(make_skill("b", dependencies=["a"]), context)

    result = await loader.unload_all(["a"], context)

    assert result.success is True
    assert result.data["unloaded"] == ["a"]
    assert registry.state_of("a") is None
