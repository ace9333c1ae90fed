"""PostgreSQL implementation of :class:`TutoringStore`.

Each method opens its own session from the injected factory; writes
commit before returning.  Ids arrive as strings from the HTTP layer:
a malformed UUID can never match a row, so lookups treat it as absent.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tutorchat.core.models import (
    ActivityDescriptor,
    ActivityKind,
    ConversationTurn,
    ExchangeRecord,
    RequesterProfile,
    SettingsOverride,
)
from tutorchat.core.store import TutoringStore

from .models import (
    Activity,
    ChatLog,
    ClassPromptSetting,
    QuestionFrequency,
    Student,
    StudentSession,
)

logger = logging.getLogger(__name__)

QUESTION_CONFLICT_COLUMNS = ("student_id", "question_text")


def parse_uuid(value: str | None) -> uuid.UUID | None:
    """Return the UUID spelled by *value*, or ``None`` when it is not one."""
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class PgTutoringStore(TutoringStore):
    """Async repository over the tutoring tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_requester(self, requester_id: str) -> RequesterProfile | None:
        sid = parse_uuid(requester_id)
        if sid is None:
            return None
        async with self._session_factory() as session:
            row = await session.get(Student, sid)
        if row is None:
            return None
        return RequesterProfile(
            id=str(row.id), display_name=row.name, cohort_name=row.class_name
        )

    async def get_activity(self, activity_id: str) -> ActivityDescriptor | None:
        aid = parse_uuid(activity_id)
        if aid is None:
            return None
        async with self._session_factory() as session:
            row = await session.get(Activity, aid)
        if row is None:
            return None
        try:
            kind = ActivityKind(row.type)
        except ValueError:
            logger.warning("Activity %s has unknown type %r", row.id, row.type)
            return None
        return ActivityDescriptor(id=str(row.id), title=row.title, kind=kind)

    async def get_settings_override(
        self, cohort_name: str, kind: ActivityKind
    ) -> SettingsOverride | None:
        stmt = select(ClassPromptSetting).where(
            ClassPromptSetting.class_name == cohort_name,
            ClassPromptSetting.activity_type == kind.value,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return SettingsOverride(
            provider_model=row.ai_model,
            temperature=float(row.temperature) if row.temperature is not None else None,
            max_tokens=row.max_tokens,
            prompt_template=row.prompt_template,
        )

    async def recent_turns(
        self,
        requester_id: str,
        limit: int,
        activity_id: str | None = None,
    ) -> list[ConversationTurn]:
        sid = parse_uuid(requester_id)
        if sid is None or limit <= 0:
            return []
        stmt = (
            select(ChatLog.message, ChatLog.response)
            .where(ChatLog.student_id == sid)
            .order_by(ChatLog.created_at.desc())
            .limit(limit)
        )
        if activity_id is not None:
            stmt = stmt.where(ChatLog.activity_id == parse_uuid(activity_id))
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [
            ConversationTurn(user_text=row.message, assistant_text=row.response)
            for row in reversed(rows)
        ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def append_exchange(self, record: ExchangeRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                ChatLog(
                    student_id=uuid.UUID(record.requester_id),
                    message=record.message,
                    response=record.response,
                    activity_id=parse_uuid(record.activity_id),
                    tokens_used=record.tokens_used,
                    model_used=record.provider_model,
                )
            )
            await session.commit()

    async def increment_question_frequency(
        self, requester_id: str, question_text: str
    ) -> None:
        stmt = (
            pg_insert(QuestionFrequency)
            .values(
                student_id=uuid.UUID(requester_id),
                question_text=question_text,
                frequency_count=1,
            )
            .on_conflict_do_update(
                index_elements=list(QUESTION_CONFLICT_COLUMNS),
                set_={
                    "frequency_count": QuestionFrequency.frequency_count + 1,
                    "last_asked": func.now(),
                    "updated_at": func.now(),
                },
            )
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def touch_session(self, requester_id: str) -> None:
        """Refresh the active session row, or open one when none is active."""
        sid = uuid.UUID(requester_id)
        stmt = (
            update(StudentSession)
            .where(StudentSession.student_id == sid, StudentSession.is_active.is_(True))
            .values(last_activity=func.now())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                session.add(StudentSession(student_id=sid, is_active=True))
            await session.commit()
