"""Per-message lifecycle: persist, load memory, run a strategy, persist the reply."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

from spurchat.llm.client import complete_text
from spurchat.llm.prompt import TITLE_PROMPT, build_title_request, clean_title
from spurchat.models import Sender
from spurchat.protocol import Frame, FrameKind, error_frames

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Hashable

    from spurchat.history.store import HistoryStore
    from spurchat.strategies.registry import StrategyRegistry
    from spurchat.tasks import BackgroundTasks

logger = logging.getLogger(__name__)


class ChatOrchestrator:
    """Runs one user message through a strategy for one conversation."""

    def __init__(
        self,
        store: HistoryStore,
        registry: StrategyRegistry,
        tasks: BackgroundTasks,
        user_id: str,
        conversation_id: str,
    ) -> None:
        self.store = store
        self.registry = registry
        self.tasks = tasks
        self.user_id = user_id
        self.conversation_id = conversation_id

    async def process_message(self, message: str, kind: Hashable) -> AsyncIterator[Frame]:
        """Yield the response frames for *message*.

        Saving the user message happens before the first frame; if it fails
        the error propagates and nothing is yielded. Every later failure is
        reported in-band, so the sequence always ends with exactly one done
        frame, preceded by at most one error frame.

        The assistant reply is saved only when the strategy finished without
        an error. Partial text from a failed stream is discarded.
        """
        await self.store.append(self.conversation_id, Sender.USER, message)

        parts: list[str] = []
        failed = False
        try:
            memory = await self.store.read_ordered(self.conversation_id)

            if len(memory) == 1:
                self.tasks.spawn(
                    self._generate_title(message),
                    name=f"title-{self.conversation_id}",
                )

            strategy = self.registry.resolve(kind, self.user_id, memory, self.store)

            finished = False
            async with contextlib.aclosing(strategy.generate(message)) as frames:
                async for frame in frames:
                    if frame.kind is FrameKind.DONE:
                        finished = True
                        break
                    yield frame
                    if frame.kind is FrameKind.ERROR:
                        failed = True
                        break
                    if frame.kind is FrameKind.DATA:
                        parts.append(frame.payload)

            if not finished and not failed:
                logger.warning("Strategy %s ended without a done frame", strategy.name)
        except Exception:
            logger.exception("Response generation failed for %s", self.conversation_id)
            if failed:
                yield Frame.done()
            else:
                for frame in error_frames():
                    yield frame
            return

        if failed:
            yield Frame.done()
            return

        full_response = "".join(parts)
        if full_response:
            try:
                await self.store.append(self.conversation_id, Sender.AI, full_response)
            except Exception:
                logger.exception("Failed to save AI response for %s", self.conversation_id)
                for frame in error_frames():
                    yield frame
                return
            logger.debug(
                "Saved AI response to %s (%d chars)",
                self.conversation_id,
                len(full_response),
            )

        yield Frame.done()

    async def _generate_title(self, message: str) -> None:
        """Background task: name the conversation after its first message."""
        try:
            raw = await complete_text(
                build_title_request(message),
                system=TITLE_PROMPT,
                max_tokens=20,
            )
            title = clean_title(raw)
            if title:
                await self.store.update_title(self.conversation_id, title)
                logger.debug("Generated title for %s: %s", self.conversation_id, title)
        except Exception:
            logger.warning(
                "Failed to generate title for %s", self.conversation_id, exc_info=True
            )
