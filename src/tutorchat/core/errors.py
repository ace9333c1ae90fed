"""Error taxonomy of the chat pipeline.

Only ``ValidationError``, ``NotFoundError`` and ``ProviderError`` end a
chat request with a non-200 status.  ``RetrievalError`` and
``TelemetrySinkError`` are absorbed at their own stage boundary.
"""

from __future__ import annotations

PROVIDER_UNAVAILABLE_MESSAGE = (
    "The assistant is temporarily unavailable. Please try again in a moment."
)


class TutorChatError(Exception):
    """Base class of every domain error raised by the pipeline."""


class ValidationError(TutorChatError):
    """A required request field is missing or empty."""


class NotFoundError(TutorChatError):
    """The requester cannot be resolved."""


class RetrievalError(TutorChatError):
    """Embedding or similarity search failed."""


class ProviderError(TutorChatError):
    """The dispatched provider failed, timed out, or sent a malformed body.

    ``status`` is the upstream HTTP status (``None`` for transport
    failures) and ``body`` the upstream error body, already truncated.
    Both are diagnostics only and never shown to the end user.
    """

    def __init__(
        self,
        provider: str,
        detail: str,
        *,
        status: int | None = None,
        body: str = "",
    ) -> None:
        self.provider = provider
        self.detail = detail
        self.status = status
        self.body = body
        super().__init__(self._describe())

    def _describe(self) -> str:
        parts = [f"{self.provider} API error: {self.detail}"]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.body:
            parts.append(self.body)
        return " ".join(parts)


class ProviderConfigurationError(ProviderError):
    """The configured model id does not belong to a known provider family."""

    def __init__(self, model: str) -> None:
        self.model = model
        super().__init__("unknown", f"unsupported model {model!r}")


class TelemetrySinkError(TutorChatError):
    """One of the best-effort persistence writes failed."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        self.operation = operation
        super().__init__(f"telemetry write {operation!r} failed: {cause!r}")


def truncate(text: str, limit: int) -> str:
    """Cut *text* to *limit* characters, marking the cut."""
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + "..."
