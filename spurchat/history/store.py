"""HistoryStore: aiosqlite persistence for conversations and messages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiosqlite

from spurchat.config import settings
from spurchat.history.cache import HistoryCache
from spurchat.models import Conversation, Message, Sender

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_CONVERSATIONS = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    title TEXT,
    metadata TEXT
)
"""

_CREATE_MESSAGES = """
CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    sender TEXT NOT NULL CHECK (sender IN ('user', 'ai')),
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
)
"""

_CREATE_MESSAGES_INDEX = """
CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages (conversation_id, created_at, seq)
"""

_MESSAGE_COLUMNS = "id, conversation_id, sender, content, created_at"


class ConversationNotFoundError(LookupError):
    """Raised when an operation targets a conversation that does not exist."""


class HistoryStore:
    """Append-only message log per conversation, plus conversation lifecycle.

    Singleton accessed via ``HistoryStore.get()``.  Pass an explicit *db_path*
    (and optionally a *cache*) for test isolation.
    """

    _instance: HistoryStore | None = None

    def __init__(self, db_path: Path | None = None, cache: HistoryCache | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._cache = cache or HistoryCache()
        self._initialised = False

    @classmethod
    def get(cls) -> HistoryStore:
        """Return the shared HistoryStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    @property
    def cache(self) -> HistoryCache:
        return self._cache

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        try:
            await db.execute("PRAGMA foreign_keys = ON")
            if not self._initialised:
                await db.execute(_CREATE_CONVERSATIONS)
                await db.execute(_CREATE_MESSAGES)
                await db.execute(_CREATE_MESSAGES_INDEX)
                await db.commit()
                self._initialised = True
        except Exception:
            await db.close()
            raise
        return db

    # -- Messages --------------------------------------------------------------

    async def append(self, conversation_id: str, sender: Sender | str, content: str) -> Message:
        """Insert a new message at the end of a conversation's log.

        Raises ``aiosqlite.IntegrityError`` when the conversation does not exist.
        """
        message = Message(conversation_id=conversation_id, sender=Sender(sender), content=content)
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                message.to_row(),
            )
            await db.commit()
        finally:
            await db.close()

        await self._cache.invalidate(conversation_id)
        logger.debug(
            "Appended %s message to %s (%d chars)",
            message.sender.value,
            conversation_id,
            len(content),
        )
        return message

    async def read_ordered(self, conversation_id: str) -> list[Message]:
        """Return every message of a conversation, oldest first."""
        # Read the version before the rows so a concurrent append retires this fill.
        version = await self._cache.version(conversation_id)
        if version is not None:
            cached = await self._cache.get_messages(conversation_id, version)
            if cached is not None:
                return cached

        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE conversation_id = ? ORDER BY created_at, seq",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()

        messages = [Message.from_row(row) for row in rows]
        if messages and version is not None:
            await self._cache.set_messages(conversation_id, version, messages)
        return messages

    # -- Conversations ---------------------------------------------------------

    async def create_conversation(self, metadata: dict | None = None) -> Conversation:
        conversation = Conversation(metadata=metadata)
        db = await self._connect()
        try:
            await db.execute(
                "INSERT INTO conversations (id, created_at, title, metadata) VALUES (?, ?, ?, ?)",
                conversation.to_row(),
            )
            await db.commit()
        finally:
            await db.close()
        logger.info("Created conversation %s", conversation.id)
        return conversation

    async def get_conversation(
        self, conversation_id: str, *, with_messages: bool = True
    ) -> Conversation | None:
        """Fetch a conversation (and its ordered messages), or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT id, created_at, title, metadata FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
        finally:
            await db.close()

        if row is None:
            return None
        conversation = Conversation.from_row(row)
        if with_messages:
            conversation.messages = await self.read_ordered(conversation_id)
        return conversation

    async def list_conversations(self, limit: int = 20, offset: int = 0) -> list[Conversation]:
        """Return a page of conversations, newest first, without messages."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT id, created_at, title, metadata FROM conversations "
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return [Conversation.from_row(row) for row in rows]

    async def update_title(self, conversation_id: str, title: str) -> Conversation:
        """Set a conversation's title. Raises ConversationNotFoundError."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE conversations SET title = ? WHERE id = ?",
                (title, conversation_id),
            )
            await db.commit()
            updated = cursor.rowcount > 0
        finally:
            await db.close()

        if not updated:
            msg = f"Conversation not found: {conversation_id}"
            raise ConversationNotFoundError(msg)
        logger.info("Titled conversation %s: %s", conversation_id, title)
        conversation = await self.get_conversation(conversation_id, with_messages=False)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation, its messages, and its cache entry.

        Returns True if a conversation was deleted.
        """
        db = await self._connect()
        try:
            await db.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            cursor = await db.execute(
                "DELETE FROM conversations WHERE id = ?", (conversation_id,)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
        finally:
            await db.close()

        await self._cache.invalidate(conversation_id)
        if deleted:
            logger.info("Deleted conversation %s", conversation_id)
        return deleted
