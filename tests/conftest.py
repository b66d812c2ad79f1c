"""Shared test fixtures."""

import pytest

from spurchat.history.cache import HistoryCache
from spurchat.history.store import HistoryStore
from spurchat.retrieval.vector import VectorRetriever


@pytest.fixture
def store(tmp_path):
    """Create a HistoryStore on a temporary database with caching disabled."""
    HistoryStore._reset()
    s = HistoryStore(db_path=tmp_path / "chat.db", cache=HistoryCache(url=""))
    HistoryStore._instance = s
    yield s
    HistoryStore._reset()


@pytest.fixture
async def conversation_id(store: HistoryStore) -> str:
    """A freshly created, empty conversation."""
    conversation = await store.create_conversation()
    return conversation.id


@pytest.fixture(autouse=True)
def _no_shared_retriever():
    """Never let a test reach the real Chroma collection through the singleton."""
    VectorRetriever._reset()
    yield
    VectorRetriever._reset()
