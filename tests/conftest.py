"""Shared pytest fixtures for Keyword Mapping tests."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure project root is on sys.path so 'keyword_mapping' is importable.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)


@pytest.fixture(autouse=True)
def _reset_db_engine():
    """Autouse fixture: reset the global DB engine before and after every test.

    This prevents cross-test pollution when tests create their own in-memory
    databases.
    """
    from keyword_mapping.database import reset_engine
    reset_engine()
    yield
    reset_engine()


@pytest.fixture()
def test_db():
    """Provide an in-memory SQLite database with all tables created.

    Yields a database URL string. The engine is automatically torn down
    after the test by the autouse ``_reset_db_engine`` fixture.
    """
    from keyword_mapping.database import init_db
    db_url = "sqlite:///:memory:"
    init_db(database_url=db_url, echo=False)
    yield db_url


@pytest.fixture()
def repository(test_db):
    """A ResearchRepository on the in-memory database with a fresh cache."""
    from keyword_mapping.cache import TaggedCache
    from keyword_mapping.repository import ResearchRepository
    return ResearchRepository(cache=TaggedCache(ttl_seconds=300))


@pytest.fixture()
def make_research(repository):
    """Factory: create a record and store the given ``(text, volume)`` keywords."""
    from keyword_mapping.models.keyword import KeywordVolumeItem

    def _make(query="matcha", keywords=(), region="TW", language="zh-TW"):
        record = repository.create(query=query, region=region, language=language)
        if keywords:
            items = [KeywordVolumeItem(text=t, search_volume=v) for t, v in keywords]
            assert repository.update_keywords(record.id, items)
        return record.id

    return _make


@pytest.fixture()
def mock_llm_client():
    """Return a mock LLMClient that returns canned responses."""
    client = MagicMock()

    # Async methods return canned data
    client.generate_text = AsyncMock(return_value="Home cooks looking for easy matcha recipes.")
    client.generate_json = AsyncMock(return_value={
        "clusters": {
            "Matcha drinks": ["matcha latte", "iced matcha"],
            "Matcha desserts": ["matcha cake", "matcha cookies", "matcha ice cream"],
        },
    })
    client.is_configured = True
    client.default_model = "gpt-4o-mini"
    return client


@pytest.fixture()
def mock_ai_source():
    """AI suggestion source returning a fixed list."""
    source = MagicMock()
    source.suggest = AsyncMock(return_value=["matcha latte", "抹茶", "matcha powder"])
    return source


@pytest.fixture()
def mock_autosuggest():
    """Autosuggest client returning the ``{"suggestions": [...]}`` shape."""
    client = MagicMock()
    client.suggest = AsyncMock(return_value={
        "suggestions": ["matcha latte", "matcha cake", "matcha near me"],
    })
    client.suggest_for_url = AsyncMock(return_value={
        "suggestions": ["matcha shop", "matcha shop taipei"],
    })
    return client


@pytest.fixture()
def mock_volume_client():
    """Google Ads volume client returning snake_case result rows."""
    client = MagicMock()
    client.lookup = AsyncMock(return_value={
        "results": [
            {"text": "matcha", "search_volume": 1000},
            {"text": "matcha latte", "search_volume": 500},
            {"text": "抹茶", "search_volume": 2000},
        ],
    })
    return client
