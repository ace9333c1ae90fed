"""Domain types of the chat pipeline.

Everything here is immutable: a request's profile, settings and prompt
are built fresh per call and never mutated afterwards.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from enum import Enum

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .errors import ValidationError


class ActivityKind(str, Enum):
    ARGUMENTATION = "argumentation"
    DISCUSSION = "discussion"
    EXPERIMENT = "experiment"


class ProviderFamily(str, Enum):
    """Provider families with their own request/response contract."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatRequest:
    """One student chat message, validated on construction."""

    message: str
    requester_id: str
    activity_id: str | None = None
    use_retrieval: bool = False
    stream: bool = False

    def __post_init__(self) -> None:
        if not self.message or not self.message.strip():
            raise ValidationError("message is required")
        if not self.requester_id or not self.requester_id.strip():
            raise ValidationError("studentId is required")


# ---------------------------------------------------------------------------
# Context pieces
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequesterProfile:
    id: str
    display_name: str
    cohort_name: str | None = None


@dataclass(frozen=True)
class ActivityDescriptor:
    id: str
    title: str
    kind: ActivityKind


@dataclass(frozen=True)
class SettingsOverride:
    """Per-(cohort, activity kind) settings row; any field may be unset."""

    provider_model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    prompt_template: str | None = None


@dataclass(frozen=True)
class ProviderSettings:
    provider_model: str
    temperature: float
    max_tokens: int
    prompt_template: str
    family: ProviderFamily

    def fingerprint(self) -> str:
        """Stable hash of every field that shapes a provider call."""
        payload = json.dumps(
            [
                self.provider_model,
                self.temperature,
                self.max_tokens,
                self.prompt_template,
                self.family.value,
            ]
        )
        return hashlib.sha256(payload.encode()).hexdigest()


@dataclass(frozen=True)
class ConversationTurn:
    user_text: str
    assistant_text: str


@dataclass(frozen=True)
class RetrievedPassage:
    text: str
    relevance_score: float
    passage_id: str | None = None
    document_name: str | None = None


@dataclass(frozen=True)
class PromptContext:
    """Fully assembled prompt; the only input the dispatcher depends on."""

    system_prompt: str
    user_message: str
    history: tuple[ConversationTurn, ...] = ()

    def with_reference_material(self, section: str) -> PromptContext:
        if not section:
            return self
        return PromptContext(
            system_prompt=self.system_prompt + section,
            user_message=self.user_message,
            history=self.history,
        )

    def to_messages(self, max_exchanges: int) -> list[BaseMessage]:
        """System message, the last *max_exchanges* turns, then the question."""
        turns = self.history[-max_exchanges:] if max_exchanges > 0 else ()
        messages: list[BaseMessage] = [SystemMessage(content=self.system_prompt)]
        for turn in turns:
            messages.append(HumanMessage(content=turn.user_text))
            messages.append(AIMessage(content=turn.assistant_text))
        messages.append(HumanMessage(content=self.user_message))
        return messages


@dataclass(frozen=True)
class AssembledContext:
    requester: RequesterProfile
    activity: ActivityDescriptor | None
    settings: ProviderSettings
    prompt: PromptContext


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderResponse:
    text: str
    tokens_consumed: int
    provider_model: str


@dataclass(frozen=True)
class ChatResult:
    """Buffered pipeline outcome returned to the HTTP layer."""

    text: str
    tokens_consumed: int
    provider_model: str
    retrieval_used: bool
    cache_hit: bool = False


@dataclass(frozen=True)
class ExchangeRecord:
    """One conversation-log row."""

    requester_id: str
    message: str
    response: str
    provider_model: str
    tokens_used: int = 0
    activity_id: str | None = None
