"""Data validation skill - evaluates named rules against a data mapping.

Rules are configuration data, not code: each rule is a ``ValidationRule``
(name + kind + options) and a skill instance is configured with a
``RuleSet``. Custom rule sets are passed to the constructor, typically
loaded from config via ``RuleSet.from_config``.

Every requested rule is evaluated even after earlier ones fail, so a
single call reports all problems at once. An unrecognized rule name fails
that rule only.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from agentic_skills.skills.base import BaseSkill, SkillMetadata, SkillResult
from agentic_skills.skills.context import SkillContext
from agentic_skills.skills.errors import SkillErrorCode

log = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@(.+)$")
URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)


class RuleKind(StrEnum):
    """Checks a validation rule can perform."""

    EMAIL = "email"
    REQUIRED = "required"
    PATTERN = "pattern"
    URL = "url"
    LENGTH = "length"
    NUMERIC = "numeric"


class ValidationRule(BaseModel):
    """A named check over one field (or, for ``required``, all fields).

    Example config entry:
        {"name": "zip", "kind": "pattern", "field": "zip", "pattern": "\\d{5}"}
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    kind: RuleKind
    field: str | None = None
    pattern: str | None = None
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    message: str | None = None

    @model_validator(mode="after")
    def _check_options(self) -> "ValidationRule":
        if self.kind in (RuleKind.PATTERN, RuleKind.LENGTH, RuleKind.NUMERIC) and not self.field:
            raise ValueError(f"Rule '{self.name}' of kind '{self.kind}' requires a field")
        if self.kind is RuleKind.PATTERN:
            if not self.pattern:
                raise ValueError(f"Rule '{self.name}' requires a pattern")
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise ValueError(f"Rule '{self.name}' has an invalid pattern: {exc}") from exc
        if self.kind is RuleKind.LENGTH:
            if self.min_length is None and self.max_length is None:
                raise ValueError(f"Rule '{self.name}' requires min_length or max_length")
            if (
                self.min_length is not None
                and self.max_length is not None
                and self.min_length > self.max_length
            ):
                raise ValueError(f"Rule '{self.name}' has min_length greater than max_length")
        return self

    def evaluate(self, data: Mapping[str, Any]) -> bool:
        """Return True if ``data`` satisfies this rule."""
        if self.kind is RuleKind.REQUIRED:
            if self.field:
                return _is_present(data.get(self.field))
            return all(_is_present(value) for value in data.values())

        value = data.get(self.field or self.kind.value)
        if self.kind is RuleKind.EMAIL:
            return isinstance(value, str) and bool(EMAIL_PATTERN.fullmatch(value))
        if self.kind is RuleKind.URL:
            return isinstance(value, str) and bool(URL_PATTERN.fullmatch(value))
        if self.kind is RuleKind.PATTERN:
            return isinstance(value, str) and re.fullmatch(self.pattern or "", value) is not None
        if self.kind is RuleKind.NUMERIC:
            return _is_numeric(value)
        if self.kind is RuleKind.LENGTH:
            if value is None:
                return False
            length = len(value) if isinstance(value, (str, list, tuple, dict)) else len(str(value))
            if self.min_length is not None and length < self.min_length:
                return False
            return self.max_length is None or length <= self.max_length
        return False

    def failure_message(self) -> str:
        if self.message:
            return self.message
        target = self.field or self.kind.value
        if self.kind is RuleKind.EMAIL:
            return "Invalid email format"
        if self.kind is RuleKind.REQUIRED:
            return f"Field '{self.field}' is required" if self.field else "Required fields are missing"
        if self.kind is RuleKind.URL:
            return "Invalid URL format"
        if self.kind is RuleKind.NUMERIC:
            return f"Field '{target}' must be numeric"
        if self.kind is RuleKind.LENGTH:
            return (
                f"Field '{target}' length must be between "
                f"{self.min_length if self.min_length is not None else 0} and "
                f"{self.max_length if self.max_length is not None else 'unbounded'}"
            )
        return f"Field '{target}' does not match the required pattern"


DEFAULT_RULES: tuple[ValidationRule, ...] = (
    ValidationRule(name="email", kind=RuleKind.EMAIL, field="email"),
    ValidationRule(name="required", kind=RuleKind.REQUIRED),
    ValidationRule(name="url", kind=RuleKind.URL, field="url"),
)


class RuleSet:
    """Named validation rules, keyed by rule name."""

    def __init__(self, rules: Iterable[ValidationRule] = ()) -> None:
        self._rules: dict[str, ValidationRule] = {}
        for rule in rules:
            if rule.name in self._rules:
                raise ValueError(f"Duplicate validation rule: '{rule.name}'")
            self._rules[rule.name] = rule

    @classmethod
    def defaults(cls) -> RuleSet:
        return cls(DEFAULT_RULES)

    @classmethod
    def from_config(cls, config: Iterable[Mapping[str, Any]]) -> RuleSet:
        """Build a rule set from plain mappings (e.g. parsed YAML or JSON).

        Raises:
            pydantic.ValidationError: If an entry is malformed
        """
        return cls(ValidationRule.model_validate(entry) for entry in config)

    def merged(self, other: RuleSet) -> RuleSet:
        """Return a rule set where rules of ``other`` replace same-named rules."""
        combined = dict(self._rules)
        combined.update(other._rules)
        return RuleSet(combined.values())

    def get(self, name: str) -> ValidationRule | None:
        return self._rules.get(name)

    def names(self) -> list[str]:
        return list(self._rules)

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __len__(self) -> int:
        return len(self._rules)


class DataValidationSkill(BaseSkill):
    """Validate a data mapping against a list of named rules.

    Params:
        data: Mapping of field name to value
        rules: Ordered list of rule names to evaluate

    On success ``data["validationResults"]`` maps each rule to True. On
    failure the per-rule outcomes are in ``metadata["validationResults"]``
    (in evaluation order), the messages in ``metadata["errors"]`` and the
    per-rule failure codes in ``metadata["ruleFailures"]``.
    """

    def __init__(
        self,
        rules: RuleSet | Iterable[ValidationRule | Mapping[str, Any]] | None = None,
        *,
        include_defaults: bool = True,
        skill_id: str = "data-validation",
    ) -> None:
        custom = rules if isinstance(rules, RuleSet) else RuleSet(
            rule if isinstance(rule, ValidationRule) else ValidationRule.model_validate(rule)
            for rule in (rules or ())
        )
        self._rules = RuleSet.defaults().merged(custom) if include_defaults else custom
        self._metadata = SkillMetadata(
            skill_id=skill_id,
            name="Data Validation",
            version="1.0.0",
            description="Validate data against specified rules",
            author="agentic-skills",
            tags=frozenset({"validation", "data", "quality"}),
            required_params=("data", "rules"),
        )

    @property
    def metadata(self) -> SkillMetadata:
        return self._metadata

    @property
    def rules(self) -> RuleSet:
        return self._rules

    async def validate(self, context: SkillContext, params: Mapping[str, Any]) -> list[str]:
        problems: list[str] = []
        data = params.get("data")
        rules = params.get("rules")
        if data is not None and not isinstance(data, Mapping):
            problems.append("Parameter 'data' must be a mapping")
        if rules is not None and (
            isinstance(rules, (str, bytes))
            or not isinstance(rules, (list, tuple))
            or not all(isinstance(rule, str) for rule in rules)
        ):
            problems.append("Parameter 'rules' must be a list of rule names")
        return problems

    async def before_execute(self, context: SkillContext, params: Mapping[str, Any]) -> str | None:
        if not params.get("rules"):
            return "At least one validation rule is required"
        return None

    async def execute(self, context: SkillContext, params: dict[str, Any]) -> SkillResult:
        data: Mapping[str, Any] = params["data"]
        # A rule named twice is evaluated and reported once
        requested: list[str] = list(dict.fromkeys(params["rules"]))

        validation_results: dict[str, bool] = {}
        rule_failures: dict[str, str] = {}
        errors: list[str] = []

        for name in requested:
            rule = self._rules.get(name)
            if rule is None:
                validation_results[name] = False
                rule_failures[name] = SkillErrorCode.UNKNOWN_RULE.value
                errors.append(f"Unknown validation rule: {name}")
                continue

            passed = rule.evaluate(data)
            validation_results[name] = passed
            if not passed:
                rule_failures[name] = SkillErrorCode.VALIDATION_FAILED.value
                errors.append(rule.failure_message())

        if not errors:
            log.debug("validation.passed", rules=requested)
            return SkillResult.succeeded(
                {"validationResults": validation_results},
                message="All validation rules passed",
            )

        only_unknown = all(code == SkillErrorCode.UNKNOWN_RULE for code in rule_failures.values())
        log.info("validation.failed", rules=requested, failures=rule_failures)
        return SkillResult.failed(
            SkillErrorCode.UNKNOWN_RULE if only_unknown else SkillErrorCode.VALIDATION_FAILED,
            f"Validation failed: {', '.join(errors)}",
            errors,
            validationResults=validation_results,
            ruleFailures=rule_failures,
        )


def _is_present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False
