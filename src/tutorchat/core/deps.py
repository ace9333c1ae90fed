"""FastAPI dependency factories for the chat pipeline.

Everything here reads from ``app.state`` (populated by the ``build_*``
lifespan dependencies) and can be overridden in tests via
``app.dependency_overrides[get_xxx] = ...``.
"""

from fastapi import Request

from .handler import ChatHandler
from .retrieval import HybridPassageSearch


def get_chat_handler(request: Request) -> ChatHandler:
    """FastAPI dependency; reads from ``app.state``."""
    return request.app.state.chat_handler


def get_passage_search(request: Request) -> HybridPassageSearch:
    """FastAPI dependency; reads from ``app.state``."""
    return request.app.state.passage_search
