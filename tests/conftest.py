"""Shared fakes and fixtures for the chat pipeline tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Sequence

import httpx
import pytest

from tutorchat.configs.system import (
    ChatConfig,
    ProviderConfig,
    RagConfig,
    ThirdPartyConfig,
)
from tutorchat.core.embedding import Embedder
from tutorchat.core.models import (
    ActivityDescriptor,
    ActivityKind,
    ConversationTurn,
    ExchangeRecord,
    RequesterProfile,
    RetrievedPassage,
    SettingsOverride,
)
from tutorchat.core.providers.dispatcher import ProviderDispatcher, build_adapters
from tutorchat.core.store import PassageIndex, TutoringStore

STUDENT_ID = "s1"
ACTIVITY_ID = "a1"
COHORT = "3-2"

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


# =========================================================================
# In-memory collaborators
# =========================================================================


class FakeStore(TutoringStore):
    """Dict-backed store that records every write."""

    def __init__(self) -> None:
        self.requesters: dict[str, RequesterProfile] = {
            STUDENT_ID: RequesterProfile(
                id=STUDENT_ID, display_name="Mina", cohort_name=COHORT
            )
        }
        self.activities: dict[str, ActivityDescriptor] = {
            ACTIVITY_ID: ActivityDescriptor(
                id=ACTIVITY_ID,
                title="argumentation: school uniforms",
                kind=ActivityKind.ARGUMENTATION,
            )
        }
        self.overrides: dict[tuple[str, ActivityKind], SettingsOverride] = {}
        self.turns: dict[str, list[tuple[str | None, ConversationTurn]]] = {}

        self.exchanges: list[ExchangeRecord] = []
        self.questions: list[tuple[str, str]] = []
        self.touched: list[str] = []

        self.fail_activity = False
        self.fail_settings = False
        self.fail_history = False
        self.fail_writes: set[str] = set()
        self.history_calls: list[dict] = []

    def add_turns(
        self, requester_id: str, count: int, activity_id: str | None = None
    ) -> None:
        for i in range(count):
            self.turns.setdefault(requester_id, []).append(
                (activity_id, ConversationTurn(f"question {i}", f"answer {i}"))
            )

    async def get_requester(self, requester_id):
        return self.requesters.get(requester_id)

    async def get_activity(self, activity_id):
        if self.fail_activity:
            raise RuntimeError("activities table unavailable")
        return self.activities.get(activity_id)

    async def get_settings_override(self, cohort_name, kind):
        if self.fail_settings:
            raise RuntimeError("settings table unavailable")
        return self.overrides.get((cohort_name, kind))

    async def recent_turns(self, requester_id, limit, activity_id=None):
        self.history_calls.append(
            {"requester_id": requester_id, "limit": limit, "activity_id": activity_id}
        )
        if self.fail_history:
            raise RuntimeError("chat_logs unavailable")
        rows = [
            turn
            for scope, turn in self.turns.get(requester_id, [])
            if activity_id is None or scope == activity_id
        ]
        return rows[-limit:]

    async def append_exchange(self, record):
        if "append_exchange" in self.fail_writes:
            raise RuntimeError("insert failed")
        self.exchanges.append(record)

    async def increment_question_frequency(self, requester_id, question_text):
        if "question_frequency" in self.fail_writes:
            raise RuntimeError("upsert failed")
        self.questions.append((requester_id, question_text))

    async def touch_session(self, requester_id):
        if "touch_session" in self.fail_writes:
            raise RuntimeError("upsert failed")
        self.touched.append(requester_id)


class FakeIndex(PassageIndex):
    def __init__(
        self,
        passages: Sequence[RetrievedPassage] = (),
        keyword: Sequence[RetrievedPassage] = (),
    ) -> None:
        self.passages = list(passages)
        self.keyword = list(keyword)
        self.similar_calls: list[tuple[float, int]] = []
        self.keyword_calls: list[tuple[str, int]] = []
        self.fail_similar = False
        self.fail_keyword = False

    async def search_similar(self, query_embedding, similarity_threshold, top_k):
        self.similar_calls.append((similarity_threshold, top_k))
        if self.fail_similar:
            raise RuntimeError("pgvector unavailable")
        hits = [p for p in self.passages if p.relevance_score > similarity_threshold]
        hits.sort(key=lambda p: p.relevance_score, reverse=True)
        return hits[:top_k]

    async def search_keyword(self, query, limit):
        self.keyword_calls.append((query, limit))
        if self.fail_keyword:
            raise RuntimeError("ilike failed")
        return [p for p in self.keyword if query.lower() in p.text.lower()][:limit]


class FakeEmbedder(Embedder):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding endpoint down")
        return [0.1, 0.2, 0.3]


# =========================================================================
# Provider HTTP fakes
# =========================================================================


def openai_body(text: str = "Think about the other side.", tokens: int = 42) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"total_tokens": tokens},
    }


def anthropic_body(
    text: str = "Consider the evidence.", input_tokens: int = 10, output_tokens: int = 5
) -> dict:
    return {
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


def sse_body(parts: Sequence[str], total_tokens: int = 7) -> bytes:
    events = [
        {"choices": [{"delta": {"content": part}}]} for part in parts
    ] + [{"choices": [], "usage": {"total_tokens": total_tokens}}]
    lines = [f"data: {json.dumps(e)}\n\n" for e in events] + ["data: [DONE]\n\n"]
    return "".join(lines).encode()


class RecordingTransport:
    """Wraps a responder and keeps every outbound request."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def payload(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def default_responder(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/messages"):
        return httpx.Response(200, json=anthropic_body())
    payload = json.loads(request.content)
    if payload.get("stream"):
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=sse_body(["Think ", "again."]),
        )
    return httpx.Response(200, json=openai_body())


def make_dispatcher(
    transport: RecordingTransport,
    config: ProviderConfig | None = None,
    max_exchanges: int = 4,
) -> ProviderDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return ProviderDispatcher(
        client=client,
        adapters=build_adapters(
            ThirdPartyConfig(openai_api_key="sk-test", anthropic_api_key="ak-test")
        ),
        config=config or ProviderConfig(),
        max_exchanges=max_exchanges,
    )


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def index() -> FakeIndex:
    return FakeIndex(
        passages=[
            RetrievedPassage("A counterargument answers an objection.", 0.91, "c1", "guide.pdf"),
            RetrievedPassage("Claims need evidence.", 0.82, "c2", "guide.pdf"),
            RetrievedPassage("Rebuttals weaken the objection.", 0.75, "c3", "guide.pdf"),
            RetrievedPassage("Photosynthesis needs light.", 0.40, "c4", "bio.pdf"),
        ]
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig()


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig()


@pytest.fixture
def rag_config() -> RagConfig:
    return RagConfig()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport(default_responder)
