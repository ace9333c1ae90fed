"""Chat request handler -- sequences the pipeline stages.

    validate → context → retrieval → (cache) → dispatch → telemetry

Only ``ValidationError``, ``NotFoundError`` and ``ProviderError`` leave
:meth:`ChatHandler.handle`; retrieval and telemetry failures are
absorbed by their own stages.

``build_chat_handler`` is a lifespan dependency wiring the stages from
the collaborators the other ``build_*`` dependencies put on
``app.state``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI
from opentelemetry.trace import Span

from tutorchat.configs.config import AppConfig, get_app_config
from tutorchat.configs.system import ChatConfig
from tutorchat.infra.db.deps import build_stores
from tutorchat.infra.lifespan import get_app
from tutorchat.infra.telemetry import (
    ATTR_CHAT_CACHE_RESULT,
    ATTR_CHAT_STREAM,
    ATTR_CHAT_USE_RETRIEVAL,
    SPAN_CHAT_PIPELINE,
    tracer,
)

from .cache import ResponseCache, build_response_cache, cache_key
from .context import ContextAssembler
from .embedding import EmbeddingClient
from .errors import NotFoundError, ProviderError, ValidationError
from .metrics import (
    CACHE_LOOKUPS_TOTAL,
    CHAT_PIPELINE_DURATION_SECONDS,
    CHAT_REQUESTS_TOTAL,
)
from .models import AssembledContext, ChatRequest, ChatResult, ExchangeRecord
from .providers import ProviderDispatcher, ProviderStream, build_dispatcher
from .retrieval import HybridPassageSearch, RetrievalAugmenter, render_reference_section
from .sink import TelemetrySink, build_telemetry_sink

logger = logging.getLogger(__name__)

MODE_BUFFERED = "buffered"
MODE_STREAM = "stream"

CACHE_RESULT_HIT = "hit"
CACHE_RESULT_MISS = "miss"
CACHE_RESULT_SKIP = "skip"


class StreamResult:
    """A live provider stream plus what is needed to log it afterwards.

    The HTTP relay forwards :attr:`stream` and then calls exactly one of
    :meth:`complete` (body fully relayed) or :meth:`abandon`.
    """

    def __init__(
        self,
        stream: ProviderStream,
        request: ChatRequest,
        context: AssembledContext,
        retrieval_used: bool,
        sink: TelemetrySink,
        fallback_response: str,
    ) -> None:
        self.stream = stream
        self.retrieval_used = retrieval_used
        self._request = request
        self._context = context
        self._sink = sink
        self._fallback_response = fallback_response
        self._settled = False

    @property
    def provider_model(self) -> str:
        return self.stream.provider_model

    def complete(self) -> None:
        if self._settled:
            return
        self._settled = True
        CHAT_REQUESTS_TOTAL.labels(mode=MODE_STREAM, status="ok").inc()
        self._sink.record_exchange(
            ExchangeRecord(
                requester_id=self._context.requester.id,
                message=self._request.message,
                response=self.stream.text or self._fallback_response,
                provider_model=self.stream.provider_model,
                tokens_used=self.stream.tokens_consumed,
                activity_id=_activity_id(self._context),
            )
        )

    def abandon(self) -> None:
        if self._settled:
            return
        self._settled = True
        CHAT_REQUESTS_TOTAL.labels(mode=MODE_STREAM, status="abandoned").inc()
        self._sink.record_attempt(self._context.requester.id, self._request.message)


def _activity_id(context: AssembledContext) -> str | None:
    return context.activity.id if context.activity is not None else None


class ChatHandler:
    """Top-level coordinator of one chat request."""

    def __init__(
        self,
        assembler: ContextAssembler,
        augmenter: RetrievalAugmenter,
        dispatcher: ProviderDispatcher,
        sink: TelemetrySink,
        cache: ResponseCache | None,
        chat_config: ChatConfig,
        fallback_response: str,
    ) -> None:
        self._assembler = assembler
        self._augmenter = augmenter
        self._dispatcher = dispatcher
        self._sink = sink
        self._cache = cache
        self._chat_config = chat_config
        self._fallback_response = fallback_response

    async def handle(self, request: ChatRequest) -> ChatResult | StreamResult:
        mode = MODE_STREAM if request.stream else MODE_BUFFERED
        if len(request.message) > self._chat_config.message_max_length:
            CHAT_REQUESTS_TOTAL.labels(mode=mode, status="invalid").inc()
            raise ValidationError(
                f"message exceeds {self._chat_config.message_max_length} characters"
            )

        start = time.monotonic()
        with tracer.start_as_current_span(SPAN_CHAT_PIPELINE) as span:
            span.set_attribute(ATTR_CHAT_STREAM, request.stream)
            span.set_attribute(ATTR_CHAT_USE_RETRIEVAL, request.use_retrieval)
            try:
                return await self._run(request, mode, span)
            finally:
                CHAT_PIPELINE_DURATION_SECONDS.observe(time.monotonic() - start)

    async def _run(
        self, request: ChatRequest, mode: str, span: Span
    ) -> ChatResult | StreamResult:
        try:
            context = await self._assembler.assemble(
                request.requester_id, request.activity_id, request.message
            )
        except NotFoundError:
            CHAT_REQUESTS_TOTAL.labels(mode=mode, status="not_found").inc()
            raise
        except ProviderError:
            CHAT_REQUESTS_TOTAL.labels(mode=mode, status="provider_error").inc()
            self._sink.record_attempt(request.requester_id, request.message)
            raise

        passages = await self._augmenter.retrieve(
            request.message, request.use_retrieval
        )
        prompt = context.prompt.with_reference_material(
            render_reference_section(passages, self._augmenter.section_header)
        )
        retrieval_used = bool(passages)

        key: str | None = None
        if request.stream or self._cache is None:
            CACHE_LOOKUPS_TOTAL.labels(result=CACHE_RESULT_SKIP).inc()
            span.set_attribute(ATTR_CHAT_CACHE_RESULT, CACHE_RESULT_SKIP)
        else:
            key = cache_key(
                context.requester.id,
                _activity_id(context),
                request.message,
                context.settings,
                request.use_retrieval,
            )
            cached = await self._cache.get(key)
            if cached is not None:
                span.set_attribute(ATTR_CHAT_CACHE_RESULT, CACHE_RESULT_HIT)
                logger.info("Cache hit for requester %s", context.requester.id)
                self._record(request, context, cached.text, cached.provider_model, 0)
                CHAT_REQUESTS_TOTAL.labels(mode=mode, status="ok").inc()
                return ChatResult(
                    text=cached.text,
                    tokens_consumed=cached.tokens_consumed,
                    provider_model=cached.provider_model,
                    retrieval_used=retrieval_used,
                    cache_hit=True,
                )
            span.set_attribute(ATTR_CHAT_CACHE_RESULT, CACHE_RESULT_MISS)

        try:
            outcome = await self._dispatcher.dispatch(
                prompt, context.settings, stream=request.stream
            )
        except ProviderError as exc:
            CHAT_REQUESTS_TOTAL.labels(mode=mode, status="provider_error").inc()
            logger.warning("Provider call failed: %s", exc)
            self._sink.record_attempt(context.requester.id, request.message)
            raise

        if isinstance(outcome, ProviderStream):
            return StreamResult(
                stream=outcome,
                request=request,
                context=context,
                retrieval_used=retrieval_used,
                sink=self._sink,
                fallback_response=self._fallback_response,
            )

        if key is not None and self._cache is not None:
            await self._cache.put(key, outcome)
        self._record(
            request,
            context,
            outcome.text,
            outcome.provider_model,
            outcome.tokens_consumed,
        )
        CHAT_REQUESTS_TOTAL.labels(mode=MODE_BUFFERED, status="ok").inc()
        return ChatResult(
            text=outcome.text,
            tokens_consumed=outcome.tokens_consumed,
            provider_model=outcome.provider_model,
            retrieval_used=retrieval_used,
        )

    def _record(
        self,
        request: ChatRequest,
        context: AssembledContext,
        response: str,
        provider_model: str,
        tokens_used: int,
    ) -> None:
        self._sink.record_exchange(
            ExchangeRecord(
                requester_id=context.requester.id,
                message=request.message,
                response=response,
                provider_model=provider_model,
                tokens_used=tokens_used,
                activity_id=_activity_id(context),
            )
        )


# ------------------------------------------------------------------
# Lifespan dependency
# ------------------------------------------------------------------


async def build_chat_handler(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
    _stores: Annotated[None, Depends(build_stores)],
    _cache: Annotated[None, Depends(build_response_cache)],
    _dispatcher: Annotated[None, Depends(build_dispatcher)],
    _sink: Annotated[None, Depends(build_telemetry_sink)],
) -> AsyncGenerator[None, None]:
    """Wire the pipeline and the hybrid search onto ``app.state``."""
    embedder = EmbeddingClient(
        config=config.embedding,
        api_key=config.third_party.openai_api_key,
        base_url=config.third_party.openai_base_url,
    )
    app.state.chat_handler = ChatHandler(
        assembler=ContextAssembler(
            app.state.tutoring_store, config.provider, config.chat
        ),
        augmenter=RetrievalAugmenter(embedder, app.state.passage_index, config.rag),
        dispatcher=app.state.provider_dispatcher,
        sink=app.state.telemetry_sink,
        cache=app.state.response_cache,
        chat_config=config.chat,
        fallback_response=config.provider.fallback_response,
    )
    app.state.passage_search = HybridPassageSearch(embedder, app.state.passage_index)
    yield
    await embedder.aclose()
