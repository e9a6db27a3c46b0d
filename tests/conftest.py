# tests/conftest.py
"""
Pytest configuration for MarkMind tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from markmind.config import Settings
from markmind.types import Concept, ConceptCategory, Fragment

# Register pytest-asyncio plugin
pytest_plugins = ('pytest_asyncio',)

# Old enough that the temporal boost is exactly zero
LONG_AGO = datetime.now(timezone.utc) - timedelta(days=90)


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test."
    )


def make_fragment(fragment_id, text, concepts=(), created_at=None, **kwargs):
    """Build a fragment; concepts may be names or (name, category) pairs."""
    built = []
    for concept in concepts:
        if isinstance(concept, Concept):
            built.append(concept)
        elif isinstance(concept, tuple):
            built.append(Concept(name=concept[0], category=ConceptCategory.parse(concept[1])))
        else:
            built.append(Concept(name=concept))
    return Fragment(
        id=fragment_id,
        text=text,
        concepts=built,
        created_at=created_at or LONG_AGO,
        **kwargs
    )


@pytest.fixture
def fragment_factory():
    return make_fragment


@pytest.fixture
def test_settings():
    """Settings with no pauses and no AI, independent of the environment."""
    return Settings(
        ai_provider="none",
        ai_api_key=None,
        batch_pause_seconds=0.0,
        ai_timeout_seconds=0.2,
        index_refresh_seconds=300,
    )
