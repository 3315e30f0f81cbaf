"""Base classes and types for the skills framework.

Skills are self-describing capabilities that the registry invokes through a
uniform lifecycle. Each skill declares its identity, version and the skills
it depends on, and implements an async body plus optional hooks around it.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from agentic_skills.skills.errors import SkillErrorCode

if TYPE_CHECKING:
    from agentic_skills.skills.context import SkillContext

SKILL_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]{0,127}$")
SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")


def validate_skill_id(skill_id: str) -> str:
    """Return ``skill_id`` unchanged if it is a well-formed identity.

    Raises:
        ValueError: If the identity is blank or contains illegal characters
    """
    if not isinstance(skill_id, str) or not SKILL_ID_PATTERN.match(skill_id):
        raise ValueError(
            f"Invalid skill id {skill_id!r}: expected 1-128 characters of "
            "letters, digits, '.', '_', ':' or '-' starting with a letter or digit"
        )
    return skill_id


@dataclass(frozen=True)
class SkillMetadata:
    """Self-describing skill metadata.

    Attached to a skill at registration and read-only afterwards. Changing
    the declared dependencies of a skill requires unregistering and
    registering it again.
    """

    skill_id: str
    name: str
    version: str = "1.0.0"
    description: str = ""
    author: str = ""
    dependencies: frozenset[str] = field(default_factory=frozenset)
    tags: frozenset[str] = field(default_factory=frozenset)
    required_params: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Normalize collections and validate identity, version and dependencies."""
        object.__setattr__(self, "dependencies", frozenset(self.dependencies))
        object.__setattr__(self, "tags", frozenset(self.tags))
        object.__setattr__(self, "required_params", tuple(self.required_params))

        validate_skill_id(self.skill_id)
        if not self.name or not self.name.strip():
            raise ValueError("name cannot be empty")
        if not SEMVER_PATTERN.match(self.version):
            raise ValueError(
                f"version {self.version!r} must follow semantic versioning (e.g. 1.0.0)"
            )
        for dependency in self.dependencies:
            validate_skill_id(dependency)
        if self.skill_id in self.dependencies:
            raise ValueError(f"Skill '{self.skill_id}' cannot depend on itself")


@dataclass(frozen=True)
class SkillResult:
    """Outcome of one skill operation.

    The shape ``{success, data, message, metadata}`` is the contract callers
    rely on. On failure ``metadata["errors"]`` holds the ordered error
    descriptions and ``metadata["error_code"]`` the failure category. Both
    mappings are frozen copies, so a result cannot change once produced.
    """

    success: bool
    data: Mapping[str, Any] = field(default_factory=dict)
    message: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", MappingProxyType(dict(self.data or {})))
        metadata = dict(self.metadata or {})
        if "errors" in metadata:
            metadata["errors"] = tuple(str(e) for e in metadata["errors"])
        object.__setattr__(self, "metadata", MappingProxyType(metadata))

    @classmethod
    def succeeded(
        cls,
        data: Mapping[str, Any] | None = None,
        message: str = "",
        **metadata: Any,
    ) -> SkillResult:
        """Build a successful result."""
        return cls(success=True, data=data or {}, message=message, metadata=metadata)

    @classmethod
    def failed(
        cls,
        code: SkillErrorCode,
        message: str,
        errors: Iterable[str] | None = None,
        *,
        data: Mapping[str, Any] | None = None,
        **metadata: Any,
    ) -> SkillResult:
        """Build a failed result.

        Args:
            code: Failure category
            message: Human-readable summary (must not be empty)
            errors: Ordered error descriptions; defaults to ``[message]``
            data: Optional partial data
            **metadata: Extra diagnostic fields

        Raises:
            ValueError: If message is empty
        """
        if not message:
            raise ValueError("A failed result must carry a message")
        error_list = list(errors) if errors is not None else []
        metadata["errors"] = error_list or [message]
        metadata["error_code"] = SkillErrorCode(code)
        return cls(success=False, data=data or {}, message=message, metadata=metadata)

    @property
    def errors(self) -> tuple[str, ...]:
        return self.metadata.get("errors", ())

    @property
    def error_code(self) -> SkillErrorCode | None:
        return self.metadata.get("error_code")

    def with_metadata(self, **extra: Any) -> SkillResult:
        """Return a copy of this result with ``extra`` merged into its metadata."""
        return SkillResult(
            success=self.success,
            data=self.data,
            message=self.message,
            metadata={**self.metadata, **extra},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to plain dicts and lists for serialization."""
        metadata = dict(self.metadata)
        if "errors" in metadata:
            metadata["errors"] = list(metadata["errors"])
        if "error_code" in metadata:
            metadata["error_code"] = str(metadata["error_code"])
        return {
            "success": self.success,
            "data": dict(self.data),
            "message": self.message,
            "metadata": metadata,
        }


class BaseSkill(ABC):
    """Abstract base class for all skills.

    The registry drives every invocation through the same stages:
    ``validate`` -> ``before_execute`` -> ``execute`` -> ``after_execute``.

    Skills should:
    - Be stateless per invocation (context and params carry all call state),
      so one instance can serve concurrent invocations
    - Report failures by returning a failed SkillResult rather than raising
    - Poll ``current_token()`` at I/O boundaries in long-running bodies
    """

    @property
    @abstractmethod
    def metadata(self) -> SkillMetadata:
        """Return skill metadata."""

    @property
    def skill_id(self) -> str:
        return self.metadata.skill_id

    async def validate(self, context: SkillContext, params: Mapping[str, Any]) -> list[str]:
        """Return structural problems with ``params``; empty means valid.

        Required parameters and dependency liveness are checked by the
        registry before this is called.
        """
        return []

    async def before_execute(self, context: SkillContext, params: Mapping[str, Any]) -> str | None:
        """Check skill-specific preconditions.

        Returns:
            None to proceed, or the reason the invocation is rejected
        """
        return None

    @abstractmethod
    async def execute(self, context: SkillContext, params: dict[str, Any]) -> SkillResult:
        """Run the skill body.

        Args:
            context: Session context shared across invocations
            params: Invocation parameters (a private copy)

        Returns:
            SkillResult with the produced data or a failure description
        """

    async def after_execute(
        self,
        context: SkillContext,
        params: Mapping[str, Any],
        result: SkillResult,
    ) -> SkillResult:
        """Post-process a successful body result.

        The returned result is final: returning a failed result fails the
        invocation even though the body succeeded.
        """
        return result

    async def on_load(self, context: SkillContext) -> None:
        """Called once when the skill is registered."""

    async def on_unload(self, context: SkillContext) -> None:
        """Called once when the skill is unregistered."""
