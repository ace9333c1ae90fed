"""Async PostgreSQL infrastructure (ORM models, repositories)."""

from .chunks import PgPassageIndex
from .deps import build_stores
from .models import (
    Activity,
    Base,
    ChatLog,
    ClassPromptSetting,
    DocumentChunk,
    QuestionFrequency,
    Student,
    StudentSession,
)
from .repository import PgTutoringStore, parse_uuid

from tutorchat.infra.db_engine import build_db

__all__ = [
    "Activity",
    "Base",
    "build_db",
    "build_stores",
    "ChatLog",
    "ClassPromptSetting",
    "DocumentChunk",
    "parse_uuid",
    "PgPassageIndex",
    "PgTutoringStore",
    "QuestionFrequency",
    "Student",
    "StudentSession",
]
