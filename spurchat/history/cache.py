"""Redis fast path for ordered conversation history.

Supports two modes controlled by ``REDIS_URL``:
- Enabled: each conversation carries a counter at ``conversation:<id>:version``
  and its ordered messages are mirrored under
  ``conversation:<id>:messages:<version>``, with TTLs refreshed on every
  read/write. Invalidating bumps the counter, so a list loaded before a
  write lands under a version nobody reads any more.
- Disabled: no URL. Every lookup is a miss and writes are no-ops, so the
  store always goes to the database.

The cache is never a source of truth. Any Redis error is logged and
treated as a miss.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis

from spurchat.config import settings
from spurchat.models import Message

logger = logging.getLogger(__name__)


def _version_key(conversation_id: str) -> str:
    return f"conversation:{conversation_id}:version"


def _key(conversation_id: str, version: int) -> str:
    return f"conversation:{conversation_id}:messages:{version}"


class HistoryCache:
    """TTL cache of ordered messages per conversation."""

    def __init__(
        self,
        url: str | None = None,
        ttl_seconds: int | None = None,
        client: Any = None,
    ) -> None:
        self._ttl = ttl_seconds or settings.history_cache_ttl_seconds
        self._client = client
        if self._client is None:
            self._init_backend(url if url is not None else settings.redis_url)

    def _init_backend(self, url: str) -> None:
        if not url:
            logger.info("History cache disabled, set REDIS_URL to enable")
            return
        try:
            self._client = redis.from_url(url, decode_responses=True)
        except ValueError:
            logger.exception("Invalid REDIS_URL, running without cache")
            return
        logger.info("History cache: redis enabled (ttl=%ds)", self._ttl)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def version(self, conversation_id: str) -> int | None:
        """Return the conversation's current cache version.

        A conversation that was never invalidated is at version 0. Returns
        None when the cache is disabled or unreachable, in which case callers
        should neither read nor fill it.
        """
        if not self.enabled:
            return None

        try:
            raw = await self._client.get(_version_key(conversation_id))
            return int(raw) if raw is not None else 0
        except Exception:
            logger.warning(
                "History cache version read failed for %s", conversation_id, exc_info=True
            )
            return None

    async def get_messages(self, conversation_id: str, version: int) -> list[Message] | None:
        """Return the messages cached for *version*, or None on miss.

        Refreshes both TTLs on hit.
        """
        if not self.enabled:
            return None

        key = _key(conversation_id, version)
        try:
            raw = await self._client.get(key)
            if raw is None:
                return None
            await self._client.expire(key, self._ttl)
            await self._client.expire(_version_key(conversation_id), self._ttl)
            return [Message.model_validate(item) for item in json.loads(raw)]
        except Exception:
            logger.warning("History cache read failed for %s", conversation_id, exc_info=True)
            return None

    async def set_messages(
        self, conversation_id: str, version: int, messages: list[Message]
    ) -> None:
        """Store *messages* as the list for *version*.

        *version* must be the value read before the messages were loaded.
        """
        if not self.enabled:
            return

        payload = json.dumps([m.model_dump(mode="json") for m in messages])
        try:
            await self._client.set(_key(conversation_id, version), payload, ex=self._ttl)
        except Exception:
            logger.warning("History cache write failed for %s", conversation_id, exc_info=True)

    async def invalidate(self, conversation_id: str) -> None:
        """Bump the conversation's version so every earlier list is ignored."""
        if not self.enabled:
            return

        key = _version_key(conversation_id)
        try:
            await self._client.incr(key)
            await self._client.expire(key, self._ttl)
        except Exception:
            logger.warning("History cache invalidate failed for %s", conversation_id, exc_info=True)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
