"""Reference-material retrieval.

``RetrievalAugmenter`` serves the chat pipeline: it embeds the question,
fetches the top passages above the similarity threshold, and never lets
a failure escape.  ``HybridPassageSearch`` serves the standalone search
endpoint and combines vector and keyword matches.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Sequence

from tutorchat.configs.system import RagConfig
from tutorchat.infra.telemetry import (
    ATTR_RETRIEVAL_RESULT_COUNT,
    ATTR_RETRIEVAL_THRESHOLD,
    ATTR_RETRIEVAL_TOP_K,
    SPAN_CHAT_RETRIEVE,
    SPAN_CHUNKS_SEARCH,
    tracer,
)

from .embedding import Embedder
from .errors import RetrievalError
from .metrics import (
    RETRIEVAL_FAILURES_TOTAL,
    RETRIEVAL_LATENCY_SECONDS,
    RETRIEVAL_PASSAGES_RETURNED,
)
from .models import RetrievedPassage
from .store import PassageIndex

logger = logging.getLogger(__name__)

SEARCH_TYPE_VECTOR = "vector"
SEARCH_TYPE_KEYWORD = "keyword"
KEYWORD_MATCH_SCORE = 0.5


def render_reference_section(
    passages: Sequence[RetrievedPassage], header: str
) -> str:
    """Delimited block appended to the system prompt; empty without passages."""
    if not passages:
        return ""
    lines = "\n".join(f"- {p.text}" for p in passages)
    return f"\n\n{header}\n{lines}"


class RetrievalAugmenter:
    """Best-effort top-K passage lookup for one chat question."""

    def __init__(
        self,
        embedder: Embedder,
        index: PassageIndex,
        config: RagConfig,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._config = config

    @property
    def section_header(self) -> str:
        return self._config.section_header

    async def retrieve(self, query: str, enabled: bool) -> list[RetrievedPassage]:
        """Return passages for *query*, or ``[]`` when disabled or failing."""
        if not enabled:
            return []

        with tracer.start_as_current_span(SPAN_CHAT_RETRIEVE) as span:
            span.set_attribute(ATTR_RETRIEVAL_TOP_K, self._config.top_k)
            span.set_attribute(
                ATTR_RETRIEVAL_THRESHOLD, self._config.similarity_threshold
            )
            start = time.monotonic()
            try:
                passages = await self._retrieve(query)
            except RetrievalError as exc:
                logger.warning("Retrieval skipped: %s", exc)
                span.set_attribute(ATTR_RETRIEVAL_RESULT_COUNT, 0)
                return []

            RETRIEVAL_LATENCY_SECONDS.observe(time.monotonic() - start)
            RETRIEVAL_PASSAGES_RETURNED.observe(len(passages))
            span.set_attribute(ATTR_RETRIEVAL_RESULT_COUNT, len(passages))
            logger.info(
                "Retrieved %d passages (threshold=%.2f)",
                len(passages),
                self._config.similarity_threshold,
            )
            return passages

    async def _retrieve(self, query: str) -> list[RetrievedPassage]:
        """Embed + search under one timeout; every failure is a RetrievalError."""
        stage = "embed"
        try:
            async with asyncio.timeout(self._config.timeout.total_seconds()):
                embedding = await self._embedder.embed(query)
                stage = "search"
                passages = await self._index.search_similar(
                    embedding,
                    self._config.similarity_threshold,
                    self._config.top_k,
                )
        except TimeoutError as exc:
            RETRIEVAL_FAILURES_TOTAL.labels(stage="timeout").inc()
            raise RetrievalError(f"{stage} timed out") from exc
        except Exception as exc:
            RETRIEVAL_FAILURES_TOTAL.labels(stage=stage).inc()
            raise RetrievalError(f"{stage} failed: {exc!r}") from exc
        return passages[: self._config.top_k]


# ---------------------------------------------------------------------------
# Hybrid search (standalone endpoint)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SearchHit:
    passage: RetrievedPassage
    search_type: str

    @property
    def score(self) -> float:
        return self.passage.relevance_score


class HybridPassageSearch:
    """Vector matches first, then keyword matches, deduplicated by passage id."""

    def __init__(self, embedder: Embedder, index: PassageIndex) -> None:
        self._embedder = embedder
        self._index = index

    async def search(
        self, query: str, threshold: float, count: int
    ) -> list[SearchHit]:
        """Return at most *count* hits sorted by score, best first.

        Raises:
            RetrievalError: the query could not be embedded.  A failing
                vector or keyword lookup on its own is logged and skipped.
        """
        with tracer.start_as_current_span(SPAN_CHUNKS_SEARCH) as span:
            span.set_attribute(ATTR_RETRIEVAL_TOP_K, count)
            span.set_attribute(ATTR_RETRIEVAL_THRESHOLD, threshold)

            try:
                embedding = await self._embedder.embed(query)
            except Exception as exc:
                raise RetrievalError(f"query embedding failed: {exc!r}") from exc

            try:
                vector = await self._index.search_similar(embedding, threshold, count)
            except Exception:
                logger.error("Vector search failed", exc_info=True)
                vector = []

            try:
                keyword = await self._index.search_keyword(query, count)
            except Exception:
                logger.error("Keyword search failed", exc_info=True)
                keyword = []

            hits: list[SearchHit] = []
            seen: set[str] = set()
            for passage in vector:
                ident = passage.passage_id or passage.text
                if ident not in seen:
                    hits.append(SearchHit(passage, SEARCH_TYPE_VECTOR))
                    seen.add(ident)
            for passage in keyword:
                ident = passage.passage_id or passage.text
                if ident not in seen and len(hits) < count:
                    scored = RetrievedPassage(
                        text=passage.text,
                        relevance_score=KEYWORD_MATCH_SCORE,
                        passage_id=passage.passage_id,
                        document_name=passage.document_name,
                    )
                    hits.append(SearchHit(scored, SEARCH_TYPE_KEYWORD))
                    seen.add(ident)

            hits.sort(key=lambda h: h.score, reverse=True)
            hits = hits[:count]
            span.set_attribute(ATTR_RETRIEVAL_RESULT_COUNT, len(hits))
            return hits
