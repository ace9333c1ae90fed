"""Prometheus metrics for the tutorchat application.

Custom business metrics that complement the auto-instrumented HTTP
metrics provided by ``prometheus-fastapi-instrumentator``.

All metrics use the ``tutorchat_`` prefix.
"""

import logging

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator

from tutorchat.configs.config import AppConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Chat request metrics
# ---------------------------------------------------------------------------

CHAT_REQUESTS_TOTAL = Counter(
    "tutorchat_chat_requests_total",
    "Total chat requests by mode and outcome",
    ["mode", "status"],  # mode: buffered | stream; status: ok | invalid | not_found | provider_error | abandoned
)

CHAT_PIPELINE_DURATION_SECONDS = Histogram(
    "tutorchat_chat_pipeline_duration_seconds",
    "Duration of the chat pipeline up to the result, the stream hand-off or a failure",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)

# ---------------------------------------------------------------------------
# Provider metrics
# ---------------------------------------------------------------------------

PROVIDER_CALLS_TOTAL = Counter(
    "tutorchat_provider_calls_total",
    "Total provider calls by family, mode and outcome",
    ["family", "mode", "status"],  # status: ok | error
)

PROVIDER_LATENCY_SECONDS = Histogram(
    "tutorchat_provider_latency_seconds",
    "Latency of provider calls (time to full body or to stream open)",
    ["family", "mode"],
    buckets=(0.25, 0.5, 1, 2, 5, 10, 30, 60),
)

PROVIDER_TOKENS_TOTAL = Counter(
    "tutorchat_provider_tokens_total",
    "Tokens reported by providers",
    ["family"],
)

# ---------------------------------------------------------------------------
# Stream relay metrics
# ---------------------------------------------------------------------------

STREAM_RELAYS_ACTIVE = Gauge(
    "tutorchat_stream_relays_active",
    "Number of provider streams currently being relayed",
)

STREAM_RELAYS_TOTAL = Counter(
    "tutorchat_stream_relays_total",
    "Total relayed streams by outcome",
    ["status"],  # ok | error | cancelled | timeout
)

STREAM_RELAY_DURATION_SECONDS = Histogram(
    "tutorchat_stream_relay_duration_seconds",
    "Wall-clock duration of a relayed provider stream",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)

# ---------------------------------------------------------------------------
# Response cache metrics
# ---------------------------------------------------------------------------

CACHE_LOOKUPS_TOTAL = Counter(
    "tutorchat_cache_lookups_total",
    "Total response cache lookups by outcome",
    ["result"],  # hit | miss | expired | skip
)

CACHE_EVICTIONS_TOTAL = Counter(
    "tutorchat_cache_evictions_total",
    "Total expired cache entries removed",
    ["reason"],  # lazy | sweep
)

CACHE_ENTRIES = Gauge(
    "tutorchat_cache_entries",
    "Current number of entries held by the response cache",
)

# ---------------------------------------------------------------------------
# Retrieval metrics
# ---------------------------------------------------------------------------

EMBEDDING_LATENCY_SECONDS = Histogram(
    "tutorchat_embedding_latency_seconds",
    "Latency of embedding API calls",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

RETRIEVAL_LATENCY_SECONDS = Histogram(
    "tutorchat_retrieval_latency_seconds",
    "End-to-end retrieval latency (embed + search)",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10),
)

RETRIEVAL_PASSAGES_RETURNED = Histogram(
    "tutorchat_retrieval_passages_returned",
    "Number of passages returned per retrieval",
    buckets=(0, 1, 2, 3, 5, 10),
)

RETRIEVAL_FAILURES_TOTAL = Counter(
    "tutorchat_retrieval_failures_total",
    "Total retrieval failures absorbed by the pipeline",
    ["stage"],  # embed | search | timeout
)

# ---------------------------------------------------------------------------
# Telemetry sink metrics
# ---------------------------------------------------------------------------

SINK_WRITES_TOTAL = Counter(
    "tutorchat_sink_writes_total",
    "Total best-effort telemetry writes by operation and outcome",
    ["operation", "status"],  # status: ok | error
)

SINK_TASKS_PENDING = Gauge(
    "tutorchat_sink_tasks_pending",
    "Telemetry writes scheduled but not yet finished",
)


# ---------------------------------------------------------------------------
# HTTP instrumentation
# ---------------------------------------------------------------------------


def setup_metrics(app: FastAPI, config: AppConfig) -> None:
    """Attach ``prometheus-fastapi-instrumentator`` middleware and the
    ``/metrics`` endpoint to *app*.

    Called while the app is created; middleware cannot be added once
    it has started.
    """
    Instrumentator(
        should_instrument_requests_inprogress=True,
        excluded_handlers=config.tracing.excluded_urls,
    ).instrument(app).expose(app, endpoint="/metrics")

    logger.info("Prometheus metrics initialised")
