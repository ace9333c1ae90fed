"""Global exception handlers.

Every error leaves the API as ``{error, details?}``.  Raw upstream
bodies only ever appear in ``details``.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tutorchat.core.errors import (
    PROVIDER_UNAVAILABLE_MESSAGE,
    NotFoundError,
    ProviderError,
    RetrievalError,
    ValidationError,
)

from .models import ErrorBody

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"
STUDENT_NOT_FOUND_MESSAGE = "Student not found"
INVALID_BODY_MESSAGE = "Invalid request body"


def error_response(
    status_code: int, error: str, details: str | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorBody(error=error, details=details).model_dump(exclude_none=True),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register the domain exception handlers on ``app``."""

    @app.exception_handler(ValidationError)
    async def handle_validation_error(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        return error_response(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        return error_response(400, INVALID_BODY_MESSAGE, first.get("msg"))

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return error_response(404, STUDENT_NOT_FOUND_MESSAGE, str(exc))

    @app.exception_handler(ProviderError)
    async def handle_provider_error(
        request: Request, exc: ProviderError
    ) -> JSONResponse:
        return error_response(500, PROVIDER_UNAVAILABLE_MESSAGE, str(exc))

    @app.exception_handler(RetrievalError)
    async def handle_retrieval_error(
        request: Request, exc: RetrievalError
    ) -> JSONResponse:
        logger.warning("Reference search failed: %s", exc)
        return error_response(500, INTERNAL_ERROR_MESSAGE)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return error_response(500, INTERNAL_ERROR_MESSAGE)
