"""Conversation persistence: SQLite message log with an optional Redis fast path."""

from spurchat.history.cache import HistoryCache
from spurchat.history.store import ConversationNotFoundError, HistoryStore

__all__ = ["ConversationNotFoundError", "HistoryCache", "HistoryStore"]
