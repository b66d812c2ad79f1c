"""Nearest-neighbour lookups over embedded card documents in ChromaDB.

Connection target is determined by settings:

- ``CHROMA_HOST`` set → ``chromadb.HttpClient`` against a Chroma server
- otherwise → ``chromadb.PersistentClient`` under ``chroma_path``

The Chroma client is synchronous, so queries run via ``asyncio.to_thread()``.
The collection is expected to use cosine distance; scores are reported as
``1 - distance`` so that higher means more similar.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from spurchat.config import settings

if TYPE_CHECKING:
    from chromadb import Collection

logger = logging.getLogger(__name__)


@dataclass
class VectorMatch:
    """One retrieved chunk."""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


def slug_and_category(slug: str, category: str) -> dict[str, Any]:
    """Chroma ``where`` filter matching one card's chunks of one category."""
    return {"$and": [{"card_slug": slug}, {"category": category}]}


class VectorRetriever:
    """Singleton wrapper around the card-documents collection.

    Get the shared instance via ``VectorRetriever.get()``.  Pass an explicit
    *collection* for test isolation.
    """

    _instance: VectorRetriever | None = None

    def __init__(self, collection: Collection | None = None) -> None:
        self._collection = collection

    @classmethod
    def get(cls) -> VectorRetriever:
        """Return the shared VectorRetriever instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    def _get_collection(self) -> Collection:
        if self._collection is None:
            import chromadb

            if settings.chroma_host:
                client = chromadb.HttpClient(host=settings.chroma_host, port=settings.chroma_port)
            else:
                settings.chroma_path.mkdir(parents=True, exist_ok=True)
                client = chromadb.PersistentClient(path=str(settings.chroma_path))
            self._collection = client.get_or_create_collection(
                settings.chroma_collection,
                metadata={"hnsw:space": "cosine"},
            )
            logger.info("Vector store: collection '%s' ready", settings.chroma_collection)
        return self._collection

    async def query(
        self,
        embedding: list[float],
        top_k: int,
        where: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[VectorMatch]:
        """Return up to *top_k* matches ranked by similarity, best first.

        Raises whatever the Chroma client raises; callers decide whether a
        failed lookup is fatal.
        """
        include = ["distances", "documents"]
        if include_metadata:
            include.append("metadatas")

        collection = await asyncio.to_thread(self._get_collection)
        kwargs: dict[str, Any] = {
            "query_embeddings": [embedding],
            "n_results": top_k,
            "include": include,
        }
        if where:
            kwargs["where"] = where
        raw = await asyncio.to_thread(collection.query, **kwargs)
        return self._normalize(raw)

    @staticmethod
    def _normalize(raw: Any) -> list[VectorMatch]:
        """Flatten Chroma's per-query nested lists into VectorMatch objects."""
        ids = (raw.get("ids") or [[]])[0] or []
        distances = (raw.get("distances") or [[]])[0] or []
        metadatas = (raw.get("metadatas") or [[]])[0] or []
        documents = (raw.get("documents") or [[]])[0] or []

        matches = []
        for i, doc_id in enumerate(ids):
            distance = distances[i] if i < len(distances) else None
            meta = dict(metadatas[i] or {}) if i < len(metadatas) else {}
            document = documents[i] if i < len(documents) else None
            if document and "text" not in meta:
                meta["text"] = document
            score = 1.0 - float(distance) if distance is not None else 0.0
            matches.append(VectorMatch(id=str(doc_id), score=score, metadata=meta))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches
