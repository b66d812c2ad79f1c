"""Standard strategy: support persona + full history streamed from Claude."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from spurchat.llm.client import stream_text
from spurchat.llm.errors import user_message_for
from spurchat.llm.prompt import support_persona, to_api_messages
from spurchat.protocol import STANDARD_STRATEGY, Frame, error_frames
from spurchat.strategies.base import ChatStrategy

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class StandardStrategy(ChatStrategy):
    """Stream a persona-guided answer over the whole conversation.

    Subclasses change the system prompt by overriding
    :meth:`build_system_prompt`; message building, the bounded stream and
    error reporting stay the same.
    """

    name = STANDARD_STRATEGY

    async def build_system_prompt(self, query: str) -> str:
        return support_persona()

    def build_messages(self, query: str) -> list[dict[str, str]]:
        # The orchestrator saves the query before we run, so it is already
        # the last entry of memory.
        messages = to_api_messages(self.memory)
        if not messages:
            messages = [{"role": "user", "content": query}]
        return messages

    async def generate(self, query: str) -> AsyncIterator[Frame]:
        yield Frame.start()
        yield Frame.strategy(self.name)

        try:
            system = await self.build_system_prompt(query)
            messages = self.build_messages(query)
            logger.debug(
                "%s: sending %d message(s) for conversation %s",
                self.name,
                len(messages),
                self.memory[0].conversation_id if self.memory else "unknown",
            )
            async for text in stream_text(messages, system=system):
                yield Frame.data(text)
        except Exception as exc:
            for frame in error_frames(user_message_for(exc)):
                yield frame
            return

        yield Frame.done()
