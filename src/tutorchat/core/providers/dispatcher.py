"""Provider dispatch: exactly one outbound call per request.

``ProviderDispatcher.dispatch`` returns a :class:`ProviderResponse` in
buffered mode, or a :class:`ProviderStream` when streaming was asked for
and the resolved family supports it.  A streaming request against a
buffered-only family quietly becomes a buffered call.

Every upstream failure (transport error, timeout, non-2xx status,
undecodable or malformed body) is raised as ``ProviderError``; there is
no fallback to another provider.

``build_dispatcher`` is a lifespan dependency that owns the shared
``httpx.AsyncClient``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Annotated

import httpx
from fastapi import Depends, FastAPI

from tutorchat.configs.config import AppConfig, get_app_config
from tutorchat.configs.system import ProviderConfig, ThirdPartyConfig
from tutorchat.core.errors import ProviderError, truncate
from tutorchat.core.metrics import (
    PROVIDER_CALLS_TOTAL,
    PROVIDER_LATENCY_SECONDS,
    PROVIDER_TOKENS_TOTAL,
)
from tutorchat.core.models import (
    PromptContext,
    ProviderFamily,
    ProviderResponse,
    ProviderSettings,
)
from tutorchat.infra.lifespan import get_app
from tutorchat.infra.telemetry import (
    ATTR_PROVIDER_FAMILY,
    ATTR_PROVIDER_MODE,
    ATTR_PROVIDER_MODEL,
    ATTR_PROVIDER_STATUS,
    SPAN_CHAT_DISPATCH,
    tracer,
)

from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, ProviderRequest
from .openai import OpenAIAdapter, StreamCollector

logger = logging.getLogger(__name__)

MODE_BUFFERED = "buffered"
MODE_STREAM = "stream"


class ProviderStream:
    """An open provider response whose body is forwarded as it arrives.

    Iterate :meth:`iter_bytes` to relay the raw body; the collector reads
    the same bytes to recover the reply text and usage for logging.
    Always :meth:`aclose` when done, including on client disconnect.
    """

    media_type = "text/event-stream"

    def __init__(
        self,
        response: httpx.Response,
        provider_model: str,
        family: ProviderFamily,
        collector: StreamCollector | None = None,
    ) -> None:
        self._response = response
        self.provider_model = provider_model
        self.family = family
        self.collector = collector or StreamCollector()
        self.completed = False

    @property
    def text(self) -> str:
        return self.collector.text

    @property
    def tokens_consumed(self) -> int:
        return self.collector.total_tokens

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                self.collector.feed(chunk)
                yield chunk
        except httpx.HTTPError as exc:
            raise ProviderError(
                self.family.value, f"stream interrupted: {exc!r}"
            ) from exc
        self.collector.finish()
        self.completed = True
        if self.tokens_consumed:
            PROVIDER_TOKENS_TOTAL.labels(family=self.family.value).inc(
                self.tokens_consumed
            )

    async def aclose(self) -> None:
        await self._response.aclose()


class ProviderDispatcher:
    """Routes a prompt to the adapter of its resolved provider family."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        adapters: dict[ProviderFamily, ProviderAdapter],
        config: ProviderConfig,
        max_exchanges: int,
    ) -> None:
        self._client = client
        self._adapters = adapters
        self._config = config
        self._max_exchanges = max_exchanges

    def adapter_for(self, settings: ProviderSettings) -> ProviderAdapter:
        adapter = self._adapters.get(settings.family)
        if adapter is None:
            raise ProviderError(
                settings.family.value, "no adapter registered for this family"
            )
        return adapter

    def can_stream(self, settings: ProviderSettings) -> bool:
        return self.adapter_for(settings).supports_streaming

    async def dispatch(
        self,
        prompt: PromptContext,
        settings: ProviderSettings,
        stream: bool = False,
    ) -> ProviderResponse | ProviderStream:
        adapter = self.adapter_for(settings)
        if stream and not adapter.supports_streaming:
            logger.info(
                "%s does not stream, answering %s buffered",
                adapter.display_name,
                settings.provider_model,
            )
            stream = False

        request = adapter.build_request(
            prompt.to_messages(self._max_exchanges), settings, stream=stream
        )
        mode = MODE_STREAM if stream else MODE_BUFFERED
        with tracer.start_as_current_span(SPAN_CHAT_DISPATCH) as span:
            span.set_attribute(ATTR_PROVIDER_FAMILY, settings.family.value)
            span.set_attribute(ATTR_PROVIDER_MODEL, settings.provider_model)
            span.set_attribute(ATTR_PROVIDER_MODE, mode)

            start = time.monotonic()
            status = "error"
            try:
                if stream:
                    result: ProviderResponse | ProviderStream = await self._open_stream(
                        adapter, request, settings
                    )
                else:
                    result = await self._complete(adapter, request, settings)
                status = "ok"
                return result
            except ProviderError as exc:
                if exc.status is not None:
                    span.set_attribute(ATTR_PROVIDER_STATUS, exc.status)
                raise
            finally:
                PROVIDER_CALLS_TOTAL.labels(
                    family=settings.family.value, mode=mode, status=status
                ).inc()
                PROVIDER_LATENCY_SECONDS.labels(
                    family=settings.family.value, mode=mode
                ).observe(time.monotonic() - start)

    # -- internal ----------------------------------------------------

    async def _complete(
        self,
        adapter: ProviderAdapter,
        request: ProviderRequest,
        settings: ProviderSettings,
    ) -> ProviderResponse:
        name = adapter.display_name
        try:
            async with asyncio.timeout(self._config.timeout.total_seconds()):
                response = await self._client.post(
                    request.url, headers=request.headers, json=request.payload
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise ProviderError(name, "request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(name, f"transport failure: {exc!r}") from exc

        if not response.is_success:
            raise ProviderError(
                name,
                "non-success response",
                status=response.status_code,
                body=truncate(response.text, self._config.error_body_limit),
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(
                name,
                "malformed response: body is not JSON",
                status=response.status_code,
                body=truncate(response.text, self._config.error_body_limit),
            ) from exc

        parsed = adapter.parse_response(body, settings)
        if parsed.tokens_consumed:
            PROVIDER_TOKENS_TOTAL.labels(family=settings.family.value).inc(
                parsed.tokens_consumed
            )
        if not parsed.text.strip():
            logger.warning(
                "%s returned an empty completion for %s",
                name,
                settings.provider_model,
            )
            return ProviderResponse(
                text=self._config.fallback_response,
                tokens_consumed=parsed.tokens_consumed,
                provider_model=parsed.provider_model,
            )
        return parsed

    async def _open_stream(
        self,
        adapter: ProviderAdapter,
        request: ProviderRequest,
        settings: ProviderSettings,
    ) -> ProviderStream:
        name = adapter.display_name
        outbound = self._client.build_request(
            "POST", request.url, headers=request.headers, json=request.payload
        )
        try:
            async with asyncio.timeout(self._config.timeout.total_seconds()):
                response = await self._client.send(outbound, stream=True)
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise ProviderError(name, "request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(name, f"transport failure: {exc!r}") from exc

        if not response.is_success:
            try:
                await response.aread()
                body = truncate(response.text, self._config.error_body_limit)
            except httpx.HTTPError:
                body = ""
            finally:
                await response.aclose()
            raise ProviderError(
                name, "non-success response", status=response.status_code, body=body
            )

        return ProviderStream(
            response,
            provider_model=settings.provider_model,
            family=settings.family,
        )


def build_adapters(third_party: ThirdPartyConfig) -> dict[ProviderFamily, ProviderAdapter]:
    return {
        ProviderFamily.OPENAI: OpenAIAdapter(
            api_key=third_party.openai_api_key,
            base_url=third_party.openai_base_url,
        ),
        ProviderFamily.ANTHROPIC: AnthropicAdapter(
            api_key=third_party.anthropic_api_key,
            base_url=third_party.anthropic_base_url,
            api_version=third_party.anthropic_version,
        ),
    }


# ------------------------------------------------------------------
# Lifespan dependency
# ------------------------------------------------------------------


async def build_dispatcher(
    app: Annotated[FastAPI, Depends(get_app)],
    config: Annotated[AppConfig, Depends(get_app_config)],
) -> AsyncGenerator[None, None]:
    """Create the shared provider HTTP client and the dispatcher."""
    client = httpx.AsyncClient(timeout=config.provider.timeout.total_seconds())
    app.state.provider_dispatcher = ProviderDispatcher(
        client=client,
        adapters=build_adapters(config.third_party),
        config=config.provider,
        max_exchanges=config.chat.history_max_exchanges,
    )
    yield
    await client.aclose()
