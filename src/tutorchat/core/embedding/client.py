"""EmbeddingClient -- OpenAI-compatible query embeddings."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import openai

from tutorchat.configs.system import EmbeddingConfig
from tutorchat.core.metrics import EMBEDDING_LATENCY_SECONDS
from tutorchat.infra.telemetry import (
    ATTR_EMBEDDING_MODEL,
    ATTR_EMBEDDING_TEXT_LEN,
    SPAN_EMBEDDING_EMBED,
    tracer,
)

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Anything that turns text into a fixed-size vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]: ...


class EmbeddingClient(Embedder):
    """Calls the ``embeddings`` endpoint of an OpenAI-compatible API.

    The endpoint and key fall back to the OpenAI provider credentials
    when ``EmbeddingConfig`` leaves them unset.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        api_key: str,
        base_url: str,
    ) -> None:
        self._config = config
        self._openai = openai.AsyncOpenAI(
            base_url=config.endpoint or base_url,
            api_key=config.api_key or api_key or "unused",
            timeout=config.timeout.total_seconds(),
            max_retries=0,
        )

    @property
    def model_name(self) -> str:
        return self._config.model_name

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for *text*."""
        with tracer.start_as_current_span(SPAN_EMBEDDING_EMBED) as span:
            span.set_attribute(ATTR_EMBEDDING_MODEL, self._config.model_name)
            span.set_attribute(ATTR_EMBEDDING_TEXT_LEN, len(text))
            logger.debug(
                "Embedding text (model=%s, len=%d)",
                self._config.model_name,
                len(text),
            )
            start = time.monotonic()
            response = await self._openai.embeddings.create(
                input=text,
                model=self._config.model_name,
            )
            EMBEDDING_LATENCY_SECONDS.observe(time.monotonic() - start)
            embedding = response.data[0].embedding
            # Some local model servers (e.g. vLLM) wrap the vector in an
            # extra list, returning [[…]] instead of the standard flat [… ].
            if embedding and isinstance(embedding[0], list):
                embedding = embedding[0]
            return embedding

    async def aclose(self) -> None:
        await self._openai.close()
