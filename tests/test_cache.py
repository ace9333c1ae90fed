"""Tests for the TTL response cache."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from tutorchat.core.cache import ResponseCache, cache_key, normalize_message
from tutorchat.core.models import ProviderFamily, ProviderResponse, ProviderSettings


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _cache(clock: FakeClock | None = None, ttl: float = 300) -> ResponseCache:
    kwargs = {"clock": clock} if clock is not None else {}
    return ResponseCache(
        ttl=timedelta(seconds=ttl), sweep_interval=timedelta(minutes=10), **kwargs
    )


def _response(text: str = "answer") -> ProviderResponse:
    return ProviderResponse(text=text, tokens_consumed=12, provider_model="gpt-3.5-turbo")


def _settings(**overrides) -> ProviderSettings:
    values = dict(
        provider_model="gpt-3.5-turbo",
        temperature=0.7,
        max_tokens=1000,
        prompt_template="Help {student_name}.",
        family=ProviderFamily.OPENAI,
    )
    values.update(overrides)
    return ProviderSettings(**values)


# =========================================================================
# get / put / expiry
# =========================================================================


class TestResponseCache:
    @pytest.mark.asyncio
    async def test_put_then_get_returns_value(self):
        cache = _cache()
        await cache.put("k", _response())
        assert await cache.get("k") == _response()

    @pytest.mark.asyncio
    async def test_missing_key_is_absent(self):
        assert await _cache().get("nope") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_absent_and_evicted(self):
        clock = FakeClock()
        cache = _cache(clock, ttl=60)
        await cache.put("k", _response())

        clock.advance(61)
        assert await cache.get("k") is None
        assert len(cache) == 0
        # A later read does not resurrect the value.
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_entry_at_exact_ttl_is_still_served(self):
        clock = FakeClock()
        cache = _cache(clock, ttl=60)
        await cache.put("k", _response())
        clock.advance(60)
        assert await cache.get("k") is not None

    @pytest.mark.asyncio
    async def test_short_ttl_with_real_clock(self):
        cache = _cache()
        await cache.put("k", _response(), ttl=timedelta(milliseconds=100))
        assert await cache.get("k") == _response()

        await asyncio.sleep(0.15)
        assert await cache.get("k") is None
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_put_overwrites_and_restarts_ttl(self):
        clock = FakeClock()
        cache = _cache(clock, ttl=60)
        await cache.put("k", _response("old"))
        clock.advance(50)
        await cache.put("k", _response("new"))
        clock.advance(50)
        assert (await cache.get("k")).text == "new"

    @pytest.mark.asyncio
    async def test_concurrent_access_is_consistent(self):
        cache = _cache()

        async def writer(i: int) -> None:
            await cache.put(f"k{i % 5}", _response(str(i)))
            await cache.get(f"k{(i + 1) % 5}")

        await asyncio.gather(*(writer(i) for i in range(100)))
        assert len(cache) == 5


# =========================================================================
# Sweep
# =========================================================================


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self):
        clock = FakeClock()
        cache = _cache(clock, ttl=60)
        await cache.put("old", _response())
        clock.advance(45)
        await cache.put("fresh", _response())
        clock.advance(30)

        assert await cache.sweep() == 1
        assert len(cache) == 1
        assert await cache.get("fresh") is not None

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self):
        clock = FakeClock()
        cache = _cache(clock, ttl=60)
        await cache.put("a", _response())
        await cache.put("b", _response())
        clock.advance(61)
        await cache.put("c", _response())

        await cache.sweep()
        after_first = len(cache)
        assert await cache.sweep() == 0
        assert len(cache) == after_first == 1

    @pytest.mark.asyncio
    async def test_background_sweep_runs_and_stops(self):
        clock = FakeClock()
        cache = ResponseCache(
            ttl=timedelta(seconds=1),
            sweep_interval=timedelta(milliseconds=20),
            clock=clock,
        )
        await cache.put("k", _response())
        clock.advance(5)

        await cache.start()
        try:
            await asyncio.sleep(0.1)
            assert len(cache) == 0
        finally:
            await cache.stop()
        # Stopping twice is harmless.
        await cache.stop()


# =========================================================================
# Key fingerprint
# =========================================================================


class TestCacheKey:
    def test_normalization_ignores_case_and_spacing(self):
        assert normalize_message("  What IS\n a   claim? ") == "what is a claim?"
        assert cache_key("s1", "a1", "What is a claim?", _settings(), False) == cache_key(
            "s1", "a1", "  what is   a CLAIM? ", _settings(), False
        )

    @pytest.mark.parametrize(
        "other",
        [
            ("s2", "a1", "q", False),
            ("s1", None, "q", False),
            ("s1", "a1", "another q", False),
            ("s1", "a1", "q", True),
        ],
    )
    def test_key_depends_on_request_fields(self, other):
        base = cache_key("s1", "a1", "q", _settings(), False)
        requester, activity, message, use_retrieval = other
        assert cache_key(requester, activity, message, _settings(), use_retrieval) != base

    def test_key_depends_on_settings(self):
        base = cache_key("s1", "a1", "q", _settings(), False)
        assert cache_key("s1", "a1", "q", _settings(temperature=0.2), False) != base
        assert cache_key("s1", "a1", "q", _settings(prompt_template="x"), False) != base
