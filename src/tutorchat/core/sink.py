"""Best-effort persistence of a finished exchange.

Three independent writes are scheduled as background tasks once the
response is known:

* ``append_exchange`` -- conversation log row with tokens and model
* ``increment_question_frequency`` -- counter on the truncated question
* ``touch_session`` -- requester liveness

Failures are logged at error level and counted; they never propagate.
Not to be confused with ``tutorchat.infra.telemetry`` (OTEL tracing).

``build_telemetry_sink`` is a lifespan dependency that drains pending
writes on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Annotated

from fastapi import Depends, FastAPI

from tutorchat.configs.config import AppConfig, get_app_config
from tutorchat.infra.db.deps import build_stores
from tutorchat.infra.lifespan import get_app

from .errors import TelemetrySinkError
from .metrics import SINK_TASKS_PENDING, SINK_WRITES_TOTAL
from .models import ExchangeRecord
from .store import TutoringStore

logger = logging.getLogger(__name__)

OP_APPEND_EXCHANGE = "append_exchange"
OP_QUESTION_FREQUENCY = "question_frequency"
OP_TOUCH_SESSION = "touch_session"


class TelemetrySink:
    """Fire-and-forget writer; failures of one write never affect another."""

    def __init__(self, store: TutoringStore, question_text_limit: int) -> None:
        self._store = store
        self._question_text_limit = question_text_limit
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def record_exchange(self, record: ExchangeRecord) -> None:
        """Schedule all three writes for a completed exchange."""
        self._spawn(OP_APPEND_EXCHANGE, lambda: self._store.append_exchange(record))
        self.record_attempt(record.requester_id, record.message)

    def record_attempt(self, requester_id: str, message: str) -> None:
        """Schedule frequency + liveness only (no response to log)."""
        question = message[: self._question_text_limit]
        self._spawn(
            OP_QUESTION_FREQUENCY,
            lambda: self._store.increment_question_frequency(requester_id, question),
        )
        self._spawn(OP_TOUCH_SESSION, lambda: self._store.touch_session(requester_id))

    async def drain(self) -> None:
        """Wait for every scheduled write to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- internal ----------------------------------------------------

    def _spawn(
        self, operation: str, write: Callable[[], Awaitable[None]]
    ) -> None:
        task = asyncio.create_task(self._guarded(operation, write), name=f"sink-{operation}")
        self._tasks.add(task)
        SINK_TASKS_PENDING.set(len(self._tasks))
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        SINK_TASKS_PENDING.set(len(self._tasks))

    @staticmethod
    async def _guarded(operation: str, write: Callable[[], Awaitable[None]]) -> None:
        try:
            await write()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            SINK_WRITES_TOTAL.labels(operation=operation, status="error").inc()
            err = TelemetrySinkError(operation, exc)
            logger.error("%s", err, exc_info=exc)
            return
        SINK_WRITES_TOTAL.labels(operation=operation, status="ok").inc()


# ------------------------------------------------------------------
# Lifespan dependency
# ------------------------------------------------------------------


async def build_telemetry_sink(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
    _stores: Annotated[None, Depends(build_stores)],
) -> AsyncGenerator[None, None]:
    """Expose the sink on ``app.state``; flush pending writes on shutdown."""
    sink = TelemetrySink(
        store=app.state.tutoring_store,
        question_text_limit=config.chat.question_text_limit,
    )
    app.state.telemetry_sink = sink
    yield
    if sink.pending:
        logger.info("Draining %d pending telemetry writes", sink.pending)
    await sink.drain()
