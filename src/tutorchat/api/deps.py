"""Centralized FastAPI dependency type aliases.

Import these ``*Dep`` aliases in route modules instead of manually
writing ``Annotated[T, Depends(get_xxx)]`` everywhere.  Each alias
corresponds to a single ``get_*`` factory and can be overridden in
tests via ``app.dependency_overrides[get_xxx] = ...``.
"""

from typing import Annotated

from fastapi import Depends

from tutorchat.configs.config import AppConfig, get_app_config
from tutorchat.core.deps import get_chat_handler, get_passage_search
from tutorchat.core.handler import ChatHandler
from tutorchat.core.retrieval import HybridPassageSearch

AppConfigDep = Annotated[AppConfig, Depends(get_app_config)]
ChatHandlerDep = Annotated[ChatHandler, Depends(get_chat_handler)]
PassageSearchDep = Annotated[HybridPassageSearch, Depends(get_passage_search)]
