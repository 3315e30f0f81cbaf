"""
Shared test fixtures for pytest.

Provides:
- test_settings: Test environment configuration (no deadline, no skills dir)
- _clear_settings_cache: Resets the cached settings singleton
- _reset_log_context: Clears structlog context variables between tests
"""

import pytest
import structlog

from agentic_skills.config import Environment, Settings, get_settings


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _reset_log_context():
    """Keep context variables bound by one test out of the next."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


# ------------------------------------------------------------------ #
# Settings
# ------------------------------------------------------------------ #

@pytest.fixture
def test_settings() -> Settings:
    """Settings for the test environment."""
    return Settings(
        environment=Environment.TEST,
        default_timeout_seconds=None,
        max_concurrent_executions=8,
        skills_dir=None,
        load_builtin_skills=True,
    )
