"""Tests for the PostgreSQL store helpers (no database required)."""

from __future__ import annotations

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI

from tutorchat.configs.config import AppConfig
from tutorchat.core.models import ActivityKind
from tutorchat.infra.db import build_db, build_stores
from tutorchat.infra.db.chunks import like_pattern, vector_literal
from tutorchat.infra.db.repository import PgTutoringStore, parse_uuid


def _session_factory(session: AsyncMock) -> MagicMock:
    """``async with factory() as session`` yielding *session*."""
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=session)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=ctx)


# =========================================================================
# Pure helpers
# =========================================================================


class TestHelpers:
    def test_parse_uuid(self):
        ident = uuid.uuid4()
        assert parse_uuid(str(ident)) == ident
        assert parse_uuid("s1") is None
        assert parse_uuid("") is None
        assert parse_uuid(None) is None

    def test_like_pattern_escapes_wildcards(self):
        assert like_pattern("claim") == "%claim%"
        assert like_pattern("100%_sure") == "%100\\%\\_sure%"
        assert like_pattern("a\\b") == "%a\\\\b%"

    def test_vector_literal(self):
        assert vector_literal([1, 0.5, -2]) == "[1.0,0.5,-2.0]"


# =========================================================================
# PgTutoringStore
# =========================================================================


class TestPgTutoringStore:
    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found_without_query(self):
        factory = _session_factory(AsyncMock())
        store = PgTutoringStore(factory)

        assert await store.get_requester("not-a-uuid") is None
        assert await store.get_activity("nope") is None
        assert await store.recent_turns("nope", limit=5) == []
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_requester_row_is_mapped(self):
        ident = uuid.uuid4()
        session = AsyncMock()
        session.get.return_value = SimpleNamespace(id=ident, name="Mina", class_name="3-2")

        profile = await PgTutoringStore(_session_factory(session)).get_requester(str(ident))

        assert profile.id == str(ident)
        assert profile.display_name == "Mina"
        assert profile.cohort_name == "3-2"

    @pytest.mark.asyncio
    async def test_unknown_activity_type_is_treated_as_absent(self):
        session = AsyncMock()
        session.get.return_value = SimpleNamespace(
            id=uuid.uuid4(), title="Quiz", type="quiz"
        )
        store = PgTutoringStore(_session_factory(session))
        assert await store.get_activity(str(uuid.uuid4())) is None

    @pytest.mark.asyncio
    async def test_known_activity_type_is_mapped(self):
        ident = uuid.uuid4()
        session = AsyncMock()
        session.get.return_value = SimpleNamespace(
            id=ident, title="Plant growth", type="experiment"
        )
        activity = await PgTutoringStore(_session_factory(session)).get_activity(
            str(ident)
        )
        assert activity.kind is ActivityKind.EXPERIMENT
        assert activity.title == "Plant growth"

    @pytest.mark.asyncio
    async def test_touch_session_inserts_when_none_active(self):
        session = AsyncMock()
        session.add = MagicMock()
        session.execute.return_value = SimpleNamespace(rowcount=0)

        await PgTutoringStore(_session_factory(session)).touch_session(str(uuid.uuid4()))

        session.add.assert_called_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_touch_session_updates_existing(self):
        session = AsyncMock()
        session.add = MagicMock()
        session.execute.return_value = SimpleNamespace(rowcount=1)

        await PgTutoringStore(_session_factory(session)).touch_session(str(uuid.uuid4()))

        session.add.assert_not_called()
        session.commit.assert_awaited_once()


# =========================================================================
# Lifespan wiring
# =========================================================================


class TestLifespanWiring:
    @pytest.mark.asyncio
    async def test_stores_share_the_engine_session_factory(self):
        app = FastAPI()
        engine = MagicMock()
        engine.dispose = AsyncMock()

        with patch(
            "tutorchat.infra.db_engine.create_async_engine", return_value=engine
        ) as create:
            db = build_db(app, AppConfig())
            await db.__anext__()
        create.assert_called_once()

        stores = build_stores(app, None)
        await stores.__anext__()

        factory = app.state.session_factory
        assert app.state.engine is engine
        assert app.state.tutoring_store._session_factory is factory
        assert app.state.passage_index._session_factory is factory

        with pytest.raises(StopAsyncIteration):
            await db.__anext__()
        engine.dispose.assert_awaited_once()
