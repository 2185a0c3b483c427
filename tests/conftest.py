"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from ceo_report_agent.config import Settings

SEOUL = ZoneInfo("Asia/Seoul")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep real credentials from the shell out of the tests."""
    for field in Settings.model_fields.values():
        if field.alias:
            monkeypatch.delenv(field.alias, raising=False)


@pytest.fixture
def make_settings():
    """Build Settings from env-style keyword overrides, ignoring any .env file."""

    def _make(**overrides):
        return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def seoul():
    return SEOUL


@pytest.fixture
def fixed_now():
    """Thursday 2024-01-11 10:00 in Seoul."""
    return datetime(2024, 1, 11, 10, 0, tzinfo=SEOUL)
