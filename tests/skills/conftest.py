"""
Fixtures for the skills framework tests.

- registry: Fresh SkillRegistry per test, cleared on teardown
- context: SkillContext for a single test session
- make_skill: Factory for configurable StubSkill instances
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

import pytest
import pytest_asyncio

from agentic_skills.config import Settings
from agentic_skills.skills.base import BaseSkill, SkillMetadata, SkillResult
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.registry import SkillRegistry

Body = Callable[[SkillContext, dict[str, Any]], Awaitable[SkillResult]]


class StubSkill(BaseSkill):
    """Skill whose hooks and body are configured per test.

    Every hook call is appended to ``calls`` (and to ``journal`` as
    ``"<skill_id>:<hook>"`` when one is shared between skills).
    """

    def __init__(
        self,
        skill_id: str,
        *,
        dependencies: Iterable[str] = (),
        tags: Iterable[str] = (),
        author: str = "tests",
        version: str = "1.0.0",
        description: str = "",
        required_params: Iterable[str] = (),
        data: Mapping[str, Any] | None = None,
        body: Body | None = None,
        validate_errors: Iterable[str] = (),
        reject_reason: str | None = None,
        after: Callable[[SkillResult], SkillResult] | None = None,
        on_load_error: Exception | None = None,
        on_unload_error: Exception | None = None,
        journal: list[str] | None = None,
    ) -> None:
        self._metadata = SkillMetadata(
            skill_id=skill_id,
            name=skill_id.replace("-", " ").title(),
            version=version,
            description=description,
            author=author,
            dependencies=frozenset(dependencies),
            tags=frozenset(tags),
            required_params=tuple(required_params),
        )
        self._data = dict(data) if data is not None else {skill_id: True}
        self._body = body
        self._validate_errors = list(validate_errors)
        self._reject_reason = reject_reason
        self._after = after
        self._on_load_error = on_load_error
        self._on_unload_error = on_unload_error
        self._journal = journal
        self.calls: list[str] = []
        self.seen_params: list[dict[str, Any]] = []

    @property
    def metadata(self) -> SkillMetadata:
        return self._metadata

    def _record(self, hook: str) -> None:
        self.calls.append(hook)
        if self._journal is not None:
            self._journal.append(f"{self._metadata.skill_id}:{hook}")

    async def validate(self, context: SkillContext, params: Mapping[str, Any]) -> list[str]:
        self._record("validate")
        return list(self._validate_errors)

    async def before_execute(self, context: SkillContext, params: Mapping[str, Any]) -> str | None:
        self._record("before")
        return self._reject_reason

    async def execute(self, context: SkillContext, params: dict[str, Any]) -> SkillResult:
        self._record("execute")
        self.seen_params.append(dict(params))
        if self._body is not None:
            return await self._body(context, params)
        return SkillResult.succeeded(self._data, message=f"{self._metadata.skill_id} done")

    async def after_execute(
        self,
        context: SkillContext,
        params: Mapping[str, Any],
        result: SkillResult,
    ) -> SkillResult:
        self._record("after")
        return self._after(result) if self._after is not None else result

    async def on_load(self, context: SkillContext) -> None:
        self._record("on_load")
        if self._on_load_error is not None:
            raise self._on_load_error

    async def on_unload(self, context: SkillContext) -> None:
        self._record("on_unload")
        if self._on_unload_error is not None:
            raise self._on_unload_error


@pytest.fixture
def context() -> SkillContext:
    """Create a skill context for one test session."""
    return SkillContext("test-session", config={"locale": "en"})


@pytest_asyncio.fixture
async def registry(test_settings: Settings, context: SkillContext):
    """Create a fresh registry for each test."""
    registry = SkillRegistry(test_settings)
    yield registry
    await registry.clear(context)


@pytest.fixture
def make_skill() -> Callable[..., StubSkill]:
    """Factory for StubSkill instances."""
    return StubSkill
