"""Error taxonomy for the skills framework.

Failures never cross the registry boundary as exceptions: every public
operation returns a ``SkillResult`` whose ``metadata["error_code"]`` holds one
of the ``SkillErrorCode`` values below. The exception classes here are
internal signals that the framework converts into results.
"""

from __future__ import annotations

from enum import StrEnum


class SkillErrorCode(StrEnum):
    """Machine-readable failure categories carried in result metadata."""

    NOT_FOUND = "not_found"
    ALREADY_REGISTERED = "already_registered"
    DEPENDENCY_MISSING = "dependency_missing"
    DEPENDENTS_EXIST = "dependents_exist"
    CYCLIC_DEPENDENCY = "cyclic_dependency"
    VALIDATION_FAILED = "validation_failed"
    HOOK_REJECTED = "hook_rejected"
    TIMEOUT = "timeout"
    UNKNOWN_RULE = "unknown_rule"
    EXECUTION_ERROR = "execution_error"


class SkillError(Exception):
    """Base class for internal framework signals."""

    code: SkillErrorCode = SkillErrorCode.EXECUTION_ERROR


class CyclicDependencyError(SkillError):
    """Raised by the dependency graph when a batch contains a cycle."""

    code = SkillErrorCode.CYCLIC_DEPENDENCY

    def __init__(self, members: list[str]) -> None:
        self.members = list(members)
        chain = " -> ".join(self.members + self.members[:1])
        super().__init__(f"Cyclic dependency between skills: {chain}")


class SkillCancelledError(SkillError):
    """Raised inside a skill body that polls a cancelled token."""

    code = SkillErrorCode.TIMEOUT

    def __init__(self, message: str = "Skill invocation was cancelled") -> None:
        super().__init__(message)
