"""Strategy registry: maps a strategy kind to a factory."""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable
from typing import TYPE_CHECKING

from spurchat.strategies.base import ChatStrategy, StrategyKind

if TYPE_CHECKING:
    from spurchat.history.store import HistoryStore
    from spurchat.models import Message

logger = logging.getLogger(__name__)

# Factory signature: (user_id, memory, store) -> strategy instance
StrategyFactory = Callable[[str, "list[Message]", "HistoryStore"], ChatStrategy]


class UnknownStrategyError(LookupError):
    """Raised when no factory is registered for a strategy kind."""


class StrategyRegistry:
    """Open registry of strategy factories.

    Usage::

        registry = StrategyRegistry()
        registry.register(StrategyKind.STANDARD, StandardStrategy)

        @registry.strategy("agent")
        class AgentStrategy(ChatStrategy):
            ...

        strategy = registry.resolve("standard", user_id, memory, store)
    """

    def __init__(self) -> None:
        self._factories: dict[Hashable, StrategyFactory] = {}

    def register(self, kind: Hashable, factory: StrategyFactory) -> None:
        """Register (or replace) the factory for *kind*."""
        if kind in self._factories:
            logger.info("Replacing strategy factory for %s", kind)
        self._factories[kind] = factory

    def strategy(self, kind: Hashable) -> Callable[[StrategyFactory], StrategyFactory]:
        """Decorator form of :meth:`register`."""

        def decorator(factory: StrategyFactory) -> StrategyFactory:
            self.register(kind, factory)
            return factory

        return decorator

    def resolve(
        self,
        kind: Hashable,
        user_id: str,
        memory: list[Message],
        store: HistoryStore,
    ) -> ChatStrategy:
        """Construct the strategy registered for *kind*."""
        factory = self._factories.get(kind)
        if factory is None:
            msg = f"Unknown strategy kind: {kind}"
            raise UnknownStrategyError(msg)
        return factory(user_id, memory, store)

    def __contains__(self, kind: object) -> bool:
        return kind in self._factories

    @property
    def kinds(self) -> list[Hashable]:
        """All registered kinds."""
        return list(self._factories)


def build_default_registry() -> StrategyRegistry:
    """Registry with the built-in standard and retrieval strategies."""
    from spurchat.strategies.retrieval import RetrievalStrategy
    from spurchat.strategies.standard import StandardStrategy

    registry = StrategyRegistry()
    registry.register(StrategyKind.STANDARD, StandardStrategy)
    registry.register(StrategyKind.RAG, RetrievalStrategy)
    return registry
