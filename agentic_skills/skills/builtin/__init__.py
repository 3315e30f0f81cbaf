"""Built-in skills shipped with the framework.

Nothing is registered on import; use ``builtin_skills()`` with a
``SkillLoader`` (or ``bootstrap_skills``) to register them.
"""

from agentic_skills.skills.base import BaseSkill
from agentic_skills.skills.builtin.form_filling import FormFillingSkill
from agentic_skills.skills.builtin.validation import (
    DataValidationSkill,
    RuleKind,
    RuleSet,
    ValidationRule,
)
from agentic_skills.skills.builtin.web_scraping import WebScrapingSkill


def builtin_skills() -> list[BaseSkill]:
    """Return fresh instances of every built-in skill."""
    return [WebScrapingSkill(), FormFillingSkill(), DataValidationSkill()]


__all__ = [
    "DataValidationSkill",
    "FormFillingSkill",
    "RuleKind",
    "RuleSet",
    "ValidationRule",
    "WebScrapingSkill",
    "builtin_skills",
]
