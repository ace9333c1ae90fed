"""Anthropic-style messages API: system prompt as a top-level field."""

from __future__ import annotations

from typing import Any

from langchain_core.messages import BaseMessage

from tutorchat.core.models import ProviderFamily, ProviderResponse, ProviderSettings

from .base import ROLE_SYSTEM, ProviderAdapter, ProviderRequest, to_wire_messages

MESSAGES_PATH = "/messages"
CONTENT_TYPE_TEXT = "text"


class AnthropicAdapter(ProviderAdapter):
    family = ProviderFamily.ANTHROPIC
    display_name = "Claude"
    supports_streaming = False

    def __init__(self, api_key: str, base_url: str, api_version: str) -> None:
        self._api_key = api_key
        self._api_version = api_version
        self._url = base_url.rstrip("/") + MESSAGES_PATH

    def build_request(
        self,
        messages: list[BaseMessage],
        settings: ProviderSettings,
        stream: bool = False,
    ) -> ProviderRequest:
        wire = to_wire_messages(messages)
        system = "\n\n".join(m["content"] for m in wire if m["role"] == ROLE_SYSTEM)
        return ProviderRequest(
            url=self._url,
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": self._api_version,
                "Content-Type": "application/json",
            },
            payload={
                "model": settings.provider_model,
                "max_tokens": settings.max_tokens,
                "temperature": settings.temperature,
                "system": system,
                "messages": [m for m in wire if m["role"] != ROLE_SYSTEM],
            },
        )

    def parse_response(
        self, body: Any, settings: ProviderSettings
    ) -> ProviderResponse:
        if not isinstance(body, dict) or not isinstance(body.get("content"), list):
            raise self.malformed("missing 'content'")

        text = "".join(
            self.text_value(block.get("text"), "'content[].text'")
            for block in body["content"]
            if isinstance(block, dict) and block.get("type", CONTENT_TYPE_TEXT) == CONTENT_TYPE_TEXT
        )
        return ProviderResponse(
            text=text,
            tokens_consumed=self.usage_tokens(body, "input_tokens", "output_tokens"),
            provider_model=settings.provider_model,
        )
