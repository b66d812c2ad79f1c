"""Strategy base class: one way of turning a query + memory into frames."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from spurchat.history.store import HistoryStore
    from spurchat.models import Message
    from spurchat.protocol import Frame


class StrategyKind(StrEnum):
    """Identifiers clients use to pick a strategy."""

    STANDARD = "standard"
    RAG = "rag"


class ChatStrategy(ABC):
    """Base class for response-generation strategies.

    Subclasses set ``name`` (the token sent in the strategy frame) and
    implement :meth:`generate`.

    Attributes:
        user_id: Identity of the caller.
        memory: Ordered conversation history, already including the
            message being answered.
        store: History store handle for strategies that need persistence.
    """

    name: str = ""

    def __init__(self, user_id: str, memory: list[Message], store: HistoryStore) -> None:
        self.user_id = user_id
        self.memory = memory
        self.store = store

    @abstractmethod
    def generate(self, query: str) -> AsyncIterator[Frame]:
        """Yield the response frames for *query*, ending with a done frame."""
