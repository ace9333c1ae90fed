"""OpenTelemetry bootstrap: tracing initialisation and span constants.

Configures a ``TracerProvider`` with an OTLP HTTP exporter when tracing
is enabled via ``TracingConfig``.  When disabled the module is a no-op
and ``tracer`` hands out non-recording spans.

Auto-instrumentations wired here:

- **FastAPI** (inbound HTTP spans)
- **httpx** (outbound provider calls)
- **SQLAlchemy** (data-access spans)

Not to be confused with ``tutorchat.core.sink``, which persists the
chat exchange itself (conversation log, question frequency, liveness).
"""

from __future__ import annotations

import base64
import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI
from opentelemetry import trace

from tutorchat.configs.system import TracingConfig
from tutorchat.infra.db_engine import build_db
from tutorchat.infra.lifespan import get_app

logger = logging.getLogger(__name__)

_otel_enabled = False

tracer = trace.get_tracer("tutorchat")

# ---------------------------------------------------------------------------
# Span names
# ---------------------------------------------------------------------------

SPAN_CHAT_PIPELINE = "chat.pipeline"
SPAN_CHAT_CONTEXT = "chat.context"
SPAN_CHAT_RETRIEVE = "chat.retrieve"
SPAN_CHAT_DISPATCH = "chat.dispatch"
SPAN_EMBEDDING_EMBED = "embedding.embed"
SPAN_CHUNKS_SEARCH = "chunks.search"
SPAN_CACHE_SWEEP = "cache.sweep"
SPAN_STREAM_RELAY = "stream.relay"

# ---------------------------------------------------------------------------
# Span attribute keys
# ---------------------------------------------------------------------------

ATTR_CHAT_STREAM = "chat.stream"
ATTR_CHAT_USE_RETRIEVAL = "chat.use_retrieval"
ATTR_CHAT_CACHE_RESULT = "chat.cache_result"
ATTR_CHAT_HISTORY_TURNS = "chat.history_turns"
ATTR_CHAT_ACTIVITY_KIND = "chat.activity_kind"

ATTR_PROVIDER_FAMILY = "provider.family"
ATTR_PROVIDER_MODEL = "provider.model"
ATTR_PROVIDER_MODE = "provider.mode"
ATTR_PROVIDER_STATUS = "provider.status"

ATTR_RETRIEVAL_TOP_K = "retrieval.top_k"
ATTR_RETRIEVAL_THRESHOLD = "retrieval.threshold"
ATTR_RETRIEVAL_RESULT_COUNT = "retrieval.result_count"

ATTR_EMBEDDING_MODEL = "embedding.model"
ATTR_EMBEDDING_TEXT_LEN = "embedding.text_len"

ATTR_CACHE_EVICTED = "cache.evicted"

ATTR_STREAM_OUTCOME = "stream.outcome"
ATTR_STREAM_BYTES = "stream.bytes"


def init_telemetry(
    app: object | None = None,
    settings: TracingConfig | None = None,
) -> None:
    """Initialise the OTEL ``TracerProvider`` and auto-instrumentations.

    No-op when *settings* is ``None``, disabled, or missing the
    endpoint/credentials.
    """
    global _otel_enabled  # noqa: PLW0603

    if settings is None or not settings.enabled:
        logger.info("OpenTelemetry tracing disabled.")
        return

    if not settings.endpoint or not settings.username or not settings.password:
        logger.warning(
            "Tracing enabled but endpoint/credentials not configured, "
            "skipping OpenTelemetry setup."
        )
        return

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

    resource = Resource.create({"service.name": settings.service_name})
    sampler = ParentBased(root=TraceIdRatioBased(settings.sample_rate))
    provider = TracerProvider(resource=resource, sampler=sampler)

    credentials = f"{settings.username}:{settings.password}"
    encoded = base64.b64encode(credentials.encode()).decode()
    exporter = OTLPSpanExporter(
        endpoint=settings.endpoint,
        headers={"Authorization": f"Basic {encoded}"},
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    if app is not None:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        excluded = ",".join(settings.excluded_urls)
        FastAPIInstrumentor.instrument_app(app, excluded_urls=excluded)

    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()

    _otel_enabled = True
    logger.info(
        "OpenTelemetry tracing initialised (service=%s).", settings.service_name
    )


def instrument_sqlalchemy(engine: object) -> None:
    """Instrument a SQLAlchemy engine; no-op when OTEL is not enabled."""
    if not _otel_enabled:
        return

    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    sync_engine = getattr(engine, "sync_engine", engine)
    SQLAlchemyInstrumentor().instrument(engine=sync_engine)
    logger.info("SQLAlchemy engine instrumented for OTEL tracing.")


# ---------------------------------------------------------------------------
# Lifespan dependency
# ---------------------------------------------------------------------------


async def build_telemetry(
    app: Annotated[FastAPI, Depends(get_app)],
    _db: Annotated[None, Depends(build_db)],
) -> AsyncGenerator[None, None]:
    """Instrument the database engine once it exists.

    ``init_telemetry`` itself runs when the app is created, since the
    FastAPI instrumentation adds middleware.
    """
    instrument_sqlalchemy(app.state.engine)
    yield
