"""Lifespan dependency creating the PostgreSQL-backed collaborators.

The low-level engine + session plumbing lives in the sibling leaf
module ``tutorchat.infra.db_engine``; the repositories built here sit
on top of its session factory.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI

from tutorchat.infra.db_engine import build_db
from tutorchat.infra.lifespan import get_app

from .chunks import PgPassageIndex
from .repository import PgTutoringStore


async def build_stores(
    app: Annotated[FastAPI, Depends(get_app)],
    _db: Annotated[None, Depends(build_db)],
) -> AsyncGenerator[None, None]:
    """Attach the tutoring store and passage index to ``app.state``."""
    app.state.tutoring_store = PgTutoringStore(app.state.session_factory)
    app.state.passage_index = PgPassageIndex(app.state.session_factory)
    yield
