"""Reference passage lookups over ``document_chunks`` (pgvector).

``PgPassageIndex`` wraps session lifecycle and exposes similarity and
keyword search.  All SQL and implementation details are internal.
"""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tutorchat.core.models import RetrievedPassage
from tutorchat.core.store import PassageIndex

from .models import DocumentChunk

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants (no magic strings below)
# ---------------------------------------------------------------------------

TABLE_DOCUMENT_CHUNKS = "document_chunks"
COL_ID = "id"
COL_DOCUMENT_NAME = "document_name"
COL_CONTENT = "content"
COL_EMBEDDING = "embedding"

PARAM_QUERY_VEC = "query_vec"
PARAM_THRESHOLD = "threshold"
PARAM_LIMIT = "limit"

LIKE_ESCAPE = "\\"

SQL_SEARCH_SIMILAR = f"""
    SELECT {COL_ID}, {COL_DOCUMENT_NAME}, {COL_CONTENT},
           1 - ({COL_EMBEDDING} <=> CAST(:{PARAM_QUERY_VEC} AS vector)) AS similarity
    FROM {TABLE_DOCUMENT_CHUNKS}
    WHERE {COL_EMBEDDING} IS NOT NULL
      AND 1 - ({COL_EMBEDDING} <=> CAST(:{PARAM_QUERY_VEC} AS vector)) > :{PARAM_THRESHOLD}
    ORDER BY {COL_EMBEDDING} <=> CAST(:{PARAM_QUERY_VEC} AS vector)
    LIMIT :{PARAM_LIMIT}
"""


def vector_literal(embedding: Sequence[float]) -> str:
    return "[" + ",".join(str(float(x)) for x in embedding) + "]"


def like_pattern(query: str) -> str:
    """``%query%`` with LIKE wildcards in *query* matched literally."""
    escaped = (
        query.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


async def search_similar(
    session: AsyncSession,
    query_embedding: Sequence[float],
    similarity_threshold: float,
    top_k: int,
) -> list[RetrievedPassage]:
    result = await session.execute(
        text(SQL_SEARCH_SIMILAR),
        {
            PARAM_QUERY_VEC: vector_literal(query_embedding),
            PARAM_THRESHOLD: similarity_threshold,
            PARAM_LIMIT: top_k,
        },
    )
    return [
        RetrievedPassage(
            text=row.content,
            relevance_score=float(row.similarity),
            passage_id=str(row.id),
            document_name=row.document_name,
        )
        for row in result.all()
    ]


async def search_keyword(
    session: AsyncSession, query: str, limit: int
) -> list[RetrievedPassage]:
    stmt = (
        select(DocumentChunk.id, DocumentChunk.document_name, DocumentChunk.content)
        .where(DocumentChunk.content.ilike(like_pattern(query), escape=LIKE_ESCAPE))
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [
        RetrievedPassage(
            text=row.content,
            relevance_score=0.0,
            passage_id=str(row.id),
            document_name=row.document_name,
        )
        for row in result.all()
    ]


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PgPassageIndex(PassageIndex):
    """Async passage index over ``document_chunks``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def search_similar(
        self,
        query_embedding: Sequence[float],
        similarity_threshold: float,
        top_k: int,
    ) -> list[RetrievedPassage]:
        async with self._session_factory() as session:
            results = await search_similar(
                session, query_embedding, similarity_threshold, top_k
            )
        logger.debug(
            "Chunk search: %d results (top_k=%d, threshold=%.2f)",
            len(results),
            top_k,
            similarity_threshold,
        )
        return results

    async def search_keyword(self, query: str, limit: int) -> list[RetrievedPassage]:
        async with self._session_factory() as session:
            return await search_keyword(session, query, limit)
