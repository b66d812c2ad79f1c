"""Retrieval-augmented strategy: answer card questions from embedded documents.

Before the model call, the query is classified to find which card it is
about. A detected card gets one top-1 lookup per content category; anything
else (or an empty targeted lookup) falls back to one broad top-10 lookup.
The matches are rendered into a context block appended to the persona,
then streaming proceeds exactly like :class:`StandardStrategy`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from spurchat.llm.client import complete_text, embed_text
from spurchat.llm.prompt import build_classification_prompt, card_advisor_persona
from spurchat.protocol import RAG_STRATEGY
from spurchat.retrieval.catalog import LINK_CATEGORY, categories_for
from spurchat.retrieval.vector import VectorMatch, VectorRetriever, slug_and_category
from spurchat.strategies.standard import StandardStrategy

if TYPE_CHECKING:
    from spurchat.history.store import HistoryStore
    from spurchat.models import Message

logger = logging.getLogger(__name__)

NA = "N/A"
TARGETED_TOP_K = 1
BROAD_TOP_K = 10
NO_CONTEXT_NOTE = "No relevant documents were found for this question."
_BLOCK_SEPARATOR = "\n\n---\n\n"


@dataclass
class DetectedCard:
    """Best-effort classification of one query. Never persisted."""

    name: str | None = None
    slug: str | None = None
    requested_info_category: str | None = None


# -- Classification ------------------------------------------------------------


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() in ("null", "none", "n/a", "unknown"):
        return None
    return value


def _first_json_object(text: str) -> dict | None:
    """Return the first ``{...}`` in *text* that parses as a JSON object."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start >= 0:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None


def parse_detection(text: str) -> DetectedCard | None:
    """Parse the classifier's reply. None means nothing was detected."""
    data = _first_json_object(text)
    if data is None:
        logger.debug("No JSON object in classification reply: %s", text[:200])
        return None

    name = _clean(data.get("cardName") or data.get("name"))
    slug = _clean(data.get("cardSlug") or data.get("slug"))
    category = _clean(data.get("requestedInfo") or data.get("requestedInfoCategory"))
    if name is None and slug is None and category is None:
        return None
    return DetectedCard(
        name=name,
        slug=slug.lower() if slug else None,
        requested_info_category=category.lower() if category else None,
    )


# -- Context formatting --------------------------------------------------------


def _field(meta: dict[str, Any], *keys: str) -> str:
    """First non-empty metadata value among *keys*, or ``N/A``."""
    for key in keys:
        value = meta.get(key)
        if value not in (None, ""):
            return str(value)
    return NA


def format_match(match: VectorMatch) -> str:
    """Render one match as a structured text block."""
    meta = match.metadata
    category = _field(meta, "category")
    if category == LINK_CATEGORY:
        return (
            "[LINK]\n"
            f"URL: {_field(meta, 'url', 'source_url')}\n"
            f"Title: {_field(meta, 'title')}\n"
            f"Card: {_field(meta, 'card_name')}\n"
            f"Description: {_field(meta, 'text', 'content')}"
        )
    return (
        f"[{category.upper()}]\n"
        f"Card: {_field(meta, 'card_name')}\n"
        f"Source: {_field(meta, 'source', 'source_url', 'url')}\n"
        f"Section: {_field(meta, 'title', 'section')}\n"
        f"Relevance: {match.score:.2f}\n"
        f"Content:\n{_field(meta, 'text', 'content')}"
    )


def collect_urls(matches: list[VectorMatch]) -> list[str]:
    """Distinct URLs across all matches, in first-seen order."""
    urls: list[str] = []
    for match in matches:
        for key in ("url", "source_url"):
            value = match.metadata.get(key)
            if isinstance(value, str) and value.startswith(("http://", "https://")):
                if value not in urls:
                    urls.append(value)
    return urls


def dedupe_and_rank(matches: list[VectorMatch]) -> list[VectorMatch]:
    """Keep the first match per id, then order by score, best first."""
    seen: set[str] = set()
    unique: list[VectorMatch] = []
    for match in matches:
        if match.id in seen:
            continue
        seen.add(match.id)
        unique.append(match)
    return sorted(unique, key=lambda m: m.score, reverse=True)


def build_context(matches: list[VectorMatch], header: str) -> str:
    """Assemble the full context block: header, one block per match, links."""
    blocks = [header, *(format_match(m) for m in matches)]
    urls = collect_urls(matches)
    if urls:
        blocks.append("RELEVANT LINKS:\n" + "\n".join(f"- {url}" for url in urls))
    return _BLOCK_SEPARATOR.join(blocks)


# -- Strategy ------------------------------------------------------------------


class RetrievalStrategy(StandardStrategy):
    """Standard streaming, with retrieved card documents in the system prompt."""

    name = RAG_STRATEGY

    def __init__(
        self,
        user_id: str,
        memory: list[Message],
        store: HistoryStore,
        retriever: VectorRetriever | None = None,
    ) -> None:
        super().__init__(user_id, memory, store)
        self.retriever = retriever or VectorRetriever.get()

    async def build_system_prompt(self, query: str) -> str:
        context = await self.retrieve_context(query)
        return f"{card_advisor_persona()}\n\nRELEVANT CONTEXT:\n{context or NO_CONTEXT_NOTE}"

    async def detect_card(self, query: str) -> DetectedCard | None:
        """One low-temperature classification call. Failures mean no detection."""
        try:
            reply = await complete_text(
                [{"role": "user", "content": query}],
                system=build_classification_prompt(),
                max_tokens=200,
                temperature=0.0,
            )
        except Exception:
            logger.exception("Card classification failed")
            return None

        detected = parse_detection(reply)
        if detected:
            logger.info(
                "Detected card: name=%s slug=%s category=%s",
                detected.name,
                detected.slug,
                detected.requested_info_category,
            )
        return detected

    async def retrieve_context(self, query: str) -> str:
        """Targeted lookup for a detected card, else (or if empty) a broad one."""
        detected = await self.detect_card(query)

        try:
            embedding = await embed_text(query)
        except Exception:
            logger.exception("Query embedding failed, answering without context")
            return ""

        if detected and detected.slug:
            matches = await self._targeted_matches(
                embedding, query, detected.slug, detected.requested_info_category
            )
            if matches:
                header = f"CARD: {detected.name or NA} ({detected.slug})"
                return build_context(matches, header)
            logger.info("No targeted matches for %s, falling back to broad search", detected.slug)

        matches = await self._safe_query(embedding, BROAD_TOP_K)
        if not matches:
            return ""
        return build_context(dedupe_and_rank(matches), "GENERAL SEARCH RESULTS")

    async def _targeted_matches(
        self,
        embedding: list[float],
        query: str,
        slug: str,
        requested_category: str | None,
    ) -> list[VectorMatch]:
        collected: list[VectorMatch] = []
        for category in categories_for(query, requested_category):
            collected.extend(
                await self._safe_query(
                    embedding, TARGETED_TOP_K, slug_and_category(slug, category)
                )
            )
        return dedupe_and_rank(collected)

    async def _safe_query(
        self, embedding: list[float], top_k: int, where: dict | None = None
    ) -> list[VectorMatch]:
        try:
            return await self.retriever.query(embedding, top_k, where=where, include_metadata=True)
        except Exception:
            logger.exception("Vector query failed (top_k=%d, where=%s)", top_k, where)
            return []
