"""Provider adapter contract.

Each provider family is one adapter that knows two things: how to turn
a :class:`PromptContext` into an HTTP request, and how to read a
buffered completion back.  Nothing above the dispatcher sees these
shapes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import BaseMessage

from tutorchat.core.errors import ProviderError
from tutorchat.core.models import ProviderFamily, ProviderResponse, ProviderSettings

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

_ROLE_BY_MESSAGE_TYPE = {
    "system": ROLE_SYSTEM,
    "human": ROLE_USER,
    "ai": ROLE_ASSISTANT,
}


def to_wire_messages(messages: list[BaseMessage]) -> list[dict[str, str]]:
    """``[{"role": ..., "content": ...}]`` as both families expect it."""
    return [
        {"role": _ROLE_BY_MESSAGE_TYPE[m.type], "content": str(m.content)}
        for m in messages
    ]


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: dict[str, str]
    payload: dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(ABC):
    """Request builder + response parser for one provider family."""

    family: ProviderFamily
    display_name: str
    supports_streaming: bool = False

    @abstractmethod
    def build_request(
        self,
        messages: list[BaseMessage],
        settings: ProviderSettings,
        stream: bool = False,
    ) -> ProviderRequest:
        """Provider-specific request for *messages* under *settings*."""

    @abstractmethod
    def parse_response(
        self, body: Any, settings: ProviderSettings
    ) -> ProviderResponse:
        """Read a buffered completion.

        The returned text may be empty; the dispatcher substitutes the
        fallback reply.

        Raises:
            ProviderError: *body* does not have the expected shape.
        """

    def malformed(self, detail: str) -> ProviderError:
        return ProviderError(self.display_name, f"malformed response: {detail}")

    def text_value(self, value: Any, where: str) -> str:
        """*value* as reply text; ``None`` reads as empty."""
        if value is None:
            return ""
        if not isinstance(value, str):
            raise self.malformed(f"{where} is not a string")
        return value

    def usage_tokens(self, body: dict[str, Any], *fields: str) -> int:
        """Sum of the named ``usage`` counters in *body*; absent counters are 0."""
        usage = body.get("usage")
        if usage is None:
            return 0
        if not isinstance(usage, dict):
            raise self.malformed("'usage' is not an object")
        total = 0
        for name in fields:
            value = usage.get(name)
            if value is None:
                continue
            if isinstance(value, bool):
                raise self.malformed(f"'usage.{name}' is not a number")
            try:
                total += int(value)
            except (TypeError, ValueError) as exc:
                raise self.malformed(f"'usage.{name}' is not a number") from exc
        return total
