"""Process-wide response cache with per-entry TTL.

Expiry is checked on every read, so an entry is never served after its
TTL even when the background sweep has not run yet.  The sweep only
bounds memory for keys that are never read again.

``build_response_cache`` is a lifespan dependency that creates the
cache, starts its sweep task, and stops it on shutdown.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import timedelta
from typing import Annotated, Callable

from fastapi import Depends, FastAPI

from tutorchat.configs.config import AppConfig, get_app_config
from tutorchat.infra.lifespan import get_app
from tutorchat.infra.telemetry import ATTR_CACHE_EVICTED, SPAN_CACHE_SWEEP, tracer

from .metrics import CACHE_ENTRIES, CACHE_EVICTIONS_TOTAL, CACHE_LOOKUPS_TOTAL
from .models import ProviderResponse, ProviderSettings

logger = logging.getLogger(__name__)


def normalize_message(message: str) -> str:
    """Trim, lower-case, and collapse whitespace runs."""
    return " ".join(message.lower().split())


def cache_key(
    requester_id: str,
    activity_id: str | None,
    message: str,
    settings: ProviderSettings,
    use_retrieval: bool,
) -> str:
    """Stable fingerprint of everything that shapes a buffered answer."""
    payload = json.dumps(
        [
            requester_id,
            activity_id,
            normalize_message(message),
            settings.fingerprint(),
            use_retrieval,
        ]
    )
    return hashlib.sha256(payload.encode()).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: ProviderResponse
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class ResponseCache:
    """In-memory TTL cache guarded by an ``asyncio.Lock``.

    Entries are never updated in place: ``put`` replaces the whole
    entry.  *clock* returns seconds and defaults to ``time.monotonic``.
    """

    def __init__(
        self,
        ttl: timedelta,
        sweep_interval: timedelta,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl.total_seconds()
        self._sweep_interval = sweep_interval.total_seconds()
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> ProviderResponse | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                CACHE_LOOKUPS_TOTAL.labels(result="miss").inc()
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                CACHE_LOOKUPS_TOTAL.labels(result="expired").inc()
                CACHE_EVICTIONS_TOTAL.labels(reason="lazy").inc()
                CACHE_ENTRIES.set(len(self._entries))
                return None
            CACHE_LOOKUPS_TOTAL.labels(result="hit").inc()
            return entry.value

    async def put(
        self,
        key: str,
        value: ProviderResponse,
        ttl: timedelta | None = None,
    ) -> None:
        seconds = ttl.total_seconds() if ttl is not None else self._ttl
        async with self._lock:
            self._entries[key] = CacheEntry(
                key=key, value=value, stored_at=self._clock(), ttl=seconds
            )
            CACHE_ENTRIES.set(len(self._entries))

    async def sweep(self) -> int:
        """Remove every expired entry; return how many were removed."""
        with tracer.start_as_current_span(SPAN_CACHE_SWEEP) as span:
            async with self._lock:
                now = self._clock()
                expired = [k for k, e in self._entries.items() if e.expired(now)]
                for key in expired:
                    del self._entries[key]
                CACHE_ENTRIES.set(len(self._entries))
            span.set_attribute(ATTR_CACHE_EVICTED, len(expired))
        if expired:
            CACHE_EVICTIONS_TOTAL.labels(reason="sweep").inc(len(expired))
            logger.debug("Cache sweep evicted %d entries", len(expired))
        return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            CACHE_ENTRIES.set(0)

    # -- sweep task lifecycle -------------------------------------------

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="response-cache-sweep")
        logger.info(
            "Response cache started (ttl=%ds, sweep=%ds)",
            self._ttl,
            self._sweep_interval,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Response cache stopped.")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Response cache sweep failed")


# ------------------------------------------------------------------
# Lifespan dependency
# ------------------------------------------------------------------


async def build_response_cache(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Create the response cache and run its sweep for the app's lifetime.

    ``app.state.response_cache`` is ``None`` when caching is disabled.
    """
    if not config.cache.enabled:
        app.state.response_cache = None
        logger.info("Response cache disabled.")
        yield
        return

    cache = ResponseCache(
        ttl=config.cache.ttl, sweep_interval=config.cache.sweep_interval
    )
    app.state.response_cache = cache
    await cache.start()
    yield
    await cache.stop()
