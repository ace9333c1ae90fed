"""Data-access collaborators consumed by the pipeline.

The PostgreSQL implementations live in ``tutorchat.infra.db``; tests
substitute in-memory fakes.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from .models import (
    ActivityDescriptor,
    ActivityKind,
    ConversationTurn,
    ExchangeRecord,
    RequesterProfile,
    RetrievedPassage,
    SettingsOverride,
)


class TutoringStore(ABC):
    """Requester, activity, settings and conversation-log access."""

    @abstractmethod
    async def get_requester(self, requester_id: str) -> RequesterProfile | None:
        """Return the requester, or ``None`` when it does not exist."""

    @abstractmethod
    async def get_activity(self, activity_id: str) -> ActivityDescriptor | None:
        """Return the activity, or ``None`` when it does not exist."""

    @abstractmethod
    async def get_settings_override(
        self, cohort_name: str, kind: ActivityKind
    ) -> SettingsOverride | None:
        """Return the class-specific settings row for *cohort_name* and *kind*."""

    @abstractmethod
    async def recent_turns(
        self,
        requester_id: str,
        limit: int,
        activity_id: str | None = None,
    ) -> list[ConversationTurn]:
        """Return at most *limit* logged turns, oldest first."""

    @abstractmethod
    async def append_exchange(self, record: ExchangeRecord) -> None:
        """Append one exchange to the conversation log."""

    @abstractmethod
    async def increment_question_frequency(
        self, requester_id: str, question_text: str
    ) -> None:
        """Add one to the counter of (*requester_id*, *question_text*)."""

    @abstractmethod
    async def touch_session(self, requester_id: str) -> None:
        """Mark the requester active now."""


class PassageIndex(ABC):
    """Pre-built index of reference passages."""

    @abstractmethod
    async def search_similar(
        self,
        query_embedding: Sequence[float],
        similarity_threshold: float,
        top_k: int,
    ) -> list[RetrievedPassage]:
        """Return passages above *similarity_threshold*, most similar first."""

    @abstractmethod
    async def search_keyword(self, query: str, limit: int) -> list[RetrievedPassage]:
        """Return passages whose text contains *query* (case-insensitive)."""
