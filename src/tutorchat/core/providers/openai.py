"""OpenAI-style chat completions: one flat message list, system inline."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

from langchain_core.messages import BaseMessage

from tutorchat.core.models import ProviderFamily, ProviderResponse, ProviderSettings

from .base import ProviderAdapter, ProviderRequest, to_wire_messages

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"
SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class OpenAIAdapter(ProviderAdapter):
    family = ProviderFamily.OPENAI
    display_name = "OpenAI"
    supports_streaming = True

    def __init__(self, api_key: str, base_url: str) -> None:
        self._api_key = api_key
        self._url = base_url.rstrip("/") + COMPLETIONS_PATH

    def build_request(
        self,
        messages: list[BaseMessage],
        settings: ProviderSettings,
        stream: bool = False,
    ) -> ProviderRequest:
        payload: dict[str, Any] = {
            "model": settings.provider_model,
            "messages": to_wire_messages(messages),
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
            "stream": stream,
        }
        if stream:
            # Ask for a final usage chunk so streamed exchanges log tokens.
            payload["stream_options"] = {"include_usage": True}
        return ProviderRequest(
            url=self._url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            payload=payload,
        )

    def parse_response(
        self, body: Any, settings: ProviderSettings
    ) -> ProviderResponse:
        if not isinstance(body, dict) or not isinstance(body.get("choices"), list):
            raise self.malformed("missing 'choices'")

        text = ""
        if body["choices"]:
            first = body["choices"][0]
            message = first.get("message") if isinstance(first, dict) else None
            if isinstance(message, dict):
                text = self.text_value(message.get("content"), "'message.content'")

        return ProviderResponse(
            text=text,
            tokens_consumed=self.usage_tokens(body, "total_tokens"),
            provider_model=settings.provider_model,
        )


class StreamCollector:
    """Reads delta text and usage out of forwarded SSE bytes.

    Fed the exact bytes the client receives; it never alters them.
    Lines that are not ``data:`` JSON events are ignored.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._parts: list[str] = []
        self.total_tokens = 0
        self.byte_count = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> None:
        self.byte_count += len(chunk)
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._consume_line(line)

    def finish(self) -> None:
        self._pending += self._decoder.decode(b"", final=True)
        if self._pending:
            self._consume_line(self._pending)
            self._pending = ""

    def _consume_line(self, line: str) -> None:
        line = line.strip()
        if not line.startswith(SSE_DATA_PREFIX):
            return
        data = line[len(SSE_DATA_PREFIX):].strip()
        if not data or data == SSE_DONE:
            return
        try:
            event = json.loads(data)
        except ValueError:
            logger.debug("Ignoring undecodable stream event: %.80s", data)
            return
        if not isinstance(event, dict):
            return

        choices = event.get("choices")
        for choice in choices if isinstance(choices, list) else []:
            delta = choice.get("delta") if isinstance(choice, dict) else None
            content = delta.get("content") if isinstance(delta, dict) else None
            if isinstance(content, str) and content:
                self._parts.append(content)

        usage = event.get("usage")
        tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
        if isinstance(tokens, int) and not isinstance(tokens, bool) and tokens > 0:
            self.total_tokens = tokens
