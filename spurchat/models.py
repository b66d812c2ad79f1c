"""Data models for conversations and their messages."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Sender(StrEnum):
    """Who wrote a message."""

    USER = "user"
    AI = "ai"


def make_id() -> str:
    """Generate a new conversation or message ID."""
    return uuid.uuid4().hex


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


class Message(BaseModel):
    """A single, immutable conversation turn."""

    id: str = Field(default_factory=make_id)
    conversation_id: str
    sender: Sender
    content: str
    created_at: str = Field(default_factory=utc_now)

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``messages`` column order."""
        return (self.id, self.conversation_id, self.sender.value, self.content, self.created_at)

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        """Deserialize from a SQLite row tuple (``seq`` column excluded)."""
        return cls(
            id=row[0],
            conversation_id=row[1],
            sender=Sender(row[2]),
            content=row[3],
            created_at=row[4],
        )


class Conversation(BaseModel):
    """A persisted thread grouping an ordered list of messages."""

    id: str = Field(default_factory=make_id)
    created_at: str = Field(default_factory=utc_now)
    title: str | None = None
    metadata: dict[str, Any] | None = None
    messages: list[Message] = Field(default_factory=list)

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``conversations`` column order."""
        meta = json.dumps(self.metadata) if self.metadata is not None else None
        return (self.id, self.created_at, self.title, meta)

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            created_at=row[1],
            title=row[2],
            metadata=json.loads(row[3]) if row[3] else None,
        )
