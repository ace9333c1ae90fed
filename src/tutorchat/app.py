"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, FastAPI

from tutorchat.api.chat import router as chat_router
from tutorchat.api.cors import EmptyPreflightCORSMiddleware
from tutorchat.api.exceptions import register_exception_handlers
from tutorchat.configs.config import get_app_config
from tutorchat.core.handler import build_chat_handler
from tutorchat.core.metrics import setup_metrics
from tutorchat.infra.lifespan import inject
from tutorchat.infra.logging import setup_logging
from tutorchat.infra.telemetry import build_telemetry, init_telemetry

logger = logging.getLogger(__name__)


@inject
async def lifespan(
    app: FastAPI,
    _telemetry: Annotated[None, Depends(build_telemetry)],
    _handler: Annotated[None, Depends(build_chat_handler)],
) -> AsyncGenerator[None, None]:
    """Startup/shutdown of every process-wide collaborator.

    ``build_chat_handler`` pulls in the database, response cache,
    provider client and telemetry sink through its own dependencies.
    """
    logger.info("tutorchat started.")
    yield
    logger.info("tutorchat shutting down.")


def get_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_app_config()
    setup_logging(config.logging)

    app = FastAPI(
        title="tutorchat",
        description="AI tutoring chat orchestration service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        EmptyPreflightCORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    init_telemetry(app, config.tracing)
    setup_metrics(app, config)
    register_exception_handlers(app)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(chat_router)

    return app


app = get_app()
