"""Chat and reference-search endpoints."""

from fastapi import APIRouter, Response
from fastapi.responses import StreamingResponse

from tutorchat.core.errors import ValidationError
from tutorchat.core.handler import StreamResult
from tutorchat.core.models import ChatRequest

from .deps import AppConfigDep, ChatHandlerDep, PassageSearchDep
from .models import (
    ChatBody,
    ChatResponse,
    RagSearchBody,
    RagSearchResponse,
    RagSearchResult,
    SearchTypeCounts,
)
from .streaming import STREAM_RESPONSE_HEADERS, relay_stream

REQUIRED_FIELDS_MESSAGE = "Message and studentId are required"
QUERY_REQUIRED_MESSAGE = "Query is required"

router = APIRouter(prefix="/api/v1", tags=["chat"])


@router.options("/ai-chat", include_in_schema=False)
async def chat_preflight() -> Response:
    """Bare preflight: 200 with an empty body."""
    return Response(status_code=200)


@router.post("/ai-chat", response_model=ChatResponse)
async def chat(
    body: ChatBody,
    handler: ChatHandlerDep,
    config: AppConfigDep,
) -> ChatResponse | StreamingResponse:
    """Answer one student message.

    Buffered requests return ``{response, tokensUsed, model, ragUsed}``.
    With ``stream=true`` and a streaming-capable model the provider's
    event stream is relayed unmodified as ``text/event-stream``; other
    models answer buffered.
    """
    if not body.message.strip() or not body.student_id.strip():
        raise ValidationError(REQUIRED_FIELDS_MESSAGE)

    result = await handler.handle(
        ChatRequest(
            message=body.message,
            requester_id=body.student_id,
            activity_id=body.activity_id or None,
            use_retrieval=body.use_rag,
            stream=body.stream,
        )
    )

    if isinstance(result, StreamResult):
        return StreamingResponse(
            relay_stream(result, stream_timeout=config.provider.stream_timeout),
            media_type=result.stream.media_type,
            headers=STREAM_RESPONSE_HEADERS,
        )
    return ChatResponse.from_result(result)


@router.post("/rag-search", response_model=RagSearchResponse)
async def rag_search(
    body: RagSearchBody,
    search: PassageSearchDep,
    config: AppConfigDep,
) -> RagSearchResponse:
    """Hybrid vector + keyword search over the reference passages."""
    if not body.query.strip():
        raise ValidationError(QUERY_REQUIRED_MESSAGE)

    threshold = (
        body.match_threshold
        if body.match_threshold is not None
        else config.rag.search_threshold
    )
    count = body.match_count if body.match_count is not None else config.rag.search_count

    hits = await search.search(body.query, threshold, count)
    results = [RagSearchResult.from_hit(hit) for hit in hits]
    return RagSearchResponse(
        results=results,
        query=body.query,
        total_found=len(results),
        search_types=SearchTypeCounts(
            vector=sum(1 for r in results if r.search_type == "vector"),
            keyword=sum(1 for r in results if r.search_type == "keyword"),
        ),
    )
