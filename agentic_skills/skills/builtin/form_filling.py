"""Form filling skill - fills a web form with caller-provided values.

Depends on ``web-scraping``, so it can only be registered while that skill
is active. Values of sensitive fields never leave the skill: the after hook
replaces them in the returned data.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import structlog

from agentic_skills.skills.base import BaseSkill, SkillMetadata, SkillResult
from agentic_skills.skills.context import SkillContext

log = structlog.get_logger(__name__)

REDACTED = "***REDACTED***"

SENSITIVE_FIELD_PATTERN = re.compile(
    r"pass(word|wd)?|token|secret|api[_-]?key|card|cvv|ssn",
    re.IGNORECASE,
)


class FormFillingSkill(BaseSkill):
    """Fill a web form.

    Params:
        url: Page holding the form
        formData: Mapping of field name to value
        submit: Whether the form should be submitted (default False)
    """

    def __init__(self) -> None:
        self._metadata = SkillMetadata(
            skill_id="form-filling",
            name="Form Filling",
            version="1.0.0",
            description="Automatically fill web forms with provided data",
            author="agentic-skills",
            dependencies=frozenset({"web-scraping"}),
            tags=frozenset({"forms", "automation", "input"}),
            required_params=("url", "formData"),
        )

    @property
    def metadata(self) -> SkillMetadata:
        return self._metadata

    async def validate(self, context: SkillContext, params: Mapping[str, Any]) -> list[str]:
        form_data = params.get("formData")
        if form_data is not None and not isinstance(form_data, Mapping):
            return ["Parameter 'formData' must be a mapping of field name to value"]
        return []

    async def before_execute(self, context: SkillContext, params: Mapping[str, Any]) -> str | None:
        if not params.get("formData"):
            return "formData must contain at least one field"
        return None

    async def execute(self, context: SkillContext, params: dict[str, Any]) -> SkillResult:
        url: str = params["url"]
        form_data: Mapping[str, Any] = params["formData"]
        submit = bool(params.get("submit", False))

        filled_fields = list(form_data)
        log.info("form_filling.filled", url=url, field_count=len(filled_fields), submitted=submit)
        return SkillResult.succeeded(
            {
                "url": url,
                "filledFields": filled_fields,
                "fields": dict(form_data),
                "submitted": submit,
            },
            message=f"Form filled successfully at {url}",
        )

    async def after_execute(
        self,
        context: SkillContext,
        params: Mapping[str, Any],
        result: SkillResult,
    ) -> SkillResult:
        fields = result.data.get("fields")
        if not isinstance(fields, Mapping):
            return result
        redacted = redact_sensitive(fields)
        return SkillResult(
            success=result.success,
            data={**result.data, "fields": redacted},
            message=result.message,
            metadata=result.metadata,
        )


def redact_sensitive(values: Mapping[str, Any]) -> dict[str, Any]:
    """Replace the values of sensitive-looking keys with a placeholder."""
    return {
        key: REDACTED if SENSITIVE_FIELD_PATTERN.search(str(key)) else value
        for key, value in values.items()
    }
