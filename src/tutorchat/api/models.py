"""Pydantic models for the HTTP API.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tutorchat.core.models import ChatResult
from tutorchat.core.retrieval import SearchHit


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatBody(CamelModel):
    """Request body of ``POST /api/v1/ai-chat``.

    ``message`` and ``student_id`` default to empty so that a missing
    field is reported with the domain validation error, not a schema error.
    """

    message: str = Field(default="", description="Student question")
    student_id: str = Field(default="", description="Requesting student id")
    activity_id: str | None = Field(default=None, description="Activity scope")
    use_rag: bool = Field(default=False, description="Append reference material")
    stream: bool = Field(default=False, description="Relay the provider stream")


class ChatResponse(CamelModel):
    response: str
    tokens_used: int
    model: str
    rag_used: bool

    @classmethod
    def from_result(cls, result: ChatResult) -> "ChatResponse":
        return cls(
            response=result.text,
            tokens_used=result.tokens_consumed,
            model=result.provider_model,
            rag_used=result.retrieval_used,
        )


# ---------------------------------------------------------------------------
# Reference search
# ---------------------------------------------------------------------------


class RagSearchBody(CamelModel):
    """Request body of ``POST /api/v1/rag-search``; unset limits use config."""

    query: str = Field(default="", description="Free-text search query")
    match_threshold: float | None = Field(
        default=None, ge=0.0, le=1.0, description="Minimum vector similarity"
    )
    match_count: int | None = Field(
        default=None, ge=1, le=50, description="Maximum number of results"
    )


class RagSearchResult(CamelModel):
    id: str | None = None
    document_name: str | None = None
    content: str
    similarity: float | None = None
    search_type: Literal["vector", "keyword"]
    score: float

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "RagSearchResult":
        passage = hit.passage
        return cls(
            id=passage.passage_id,
            document_name=passage.document_name,
            content=passage.text,
            similarity=passage.relevance_score if hit.search_type == "vector" else None,
            search_type=hit.search_type,  # type: ignore[arg-type]
            score=hit.score,
        )


class SearchTypeCounts(BaseModel):
    vector: int = 0
    keyword: int = 0


class RagSearchResponse(CamelModel):
    results: list[RagSearchResult]
    query: str
    total_found: int
    search_types: SearchTypeCounts


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorBody(BaseModel):
    """Every non-200 response body: ``{error, details?}``."""

    error: str
    details: str | None = None
