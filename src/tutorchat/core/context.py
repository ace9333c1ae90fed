"""Context assembly: who is asking, about what, with which settings.

Resolution order for one request:

1. requester profile (missing → ``NotFoundError``)
2. activity descriptor, when an id was given (any failure → general chat)
3. provider settings via :func:`resolve_settings`
4. recent conversation turns (any failure → empty history)
5. system prompt rendered from the resolved template
"""

from __future__ import annotations

import logging

from tutorchat.configs.system import ChatConfig, ProviderConfig
from tutorchat.infra.telemetry import (
    ATTR_CHAT_ACTIVITY_KIND,
    ATTR_CHAT_HISTORY_TURNS,
    SPAN_CHAT_CONTEXT,
    tracer,
)

from .errors import NotFoundError, ProviderConfigurationError
from .models import (
    ActivityDescriptor,
    AssembledContext,
    ConversationTurn,
    ProviderFamily,
    ProviderSettings,
    PromptContext,
    RequesterProfile,
    SettingsOverride,
)
from .store import TutoringStore

logger = logging.getLogger(__name__)

PLACEHOLDER_STUDENT_NAME = "{student_name}"
PLACEHOLDER_ACTIVITY_TITLE = "{activity_title}"
PLACEHOLDER_QUESTION = "{question}"


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def resolve_family(model: str, config: ProviderConfig) -> ProviderFamily:
    """Map a model id to its provider family by prefix.

    Raises:
        ProviderConfigurationError: no configured prefix matches.
    """
    lowered = model.lower()
    if any(lowered.startswith(p.lower()) for p in config.openai_model_prefixes):
        return ProviderFamily.OPENAI
    if any(lowered.startswith(p.lower()) for p in config.anthropic_model_prefixes):
        return ProviderFamily.ANTHROPIC
    raise ProviderConfigurationError(model)


def merge_settings(
    config: ProviderConfig, override: SettingsOverride | None
) -> ProviderSettings:
    """Field-wise merge of an override row onto the global defaults.

    A field of the override wins only when it is set and non-empty, so a
    partially filled row never blanks out the model or the template.
    The provider family is resolved once, from the merged model id.
    """
    model = config.default_model
    temperature = config.default_temperature
    max_tokens = config.default_max_tokens
    template = config.default_prompt_template

    if override is not None:
        if override.provider_model and override.provider_model.strip():
            model = override.provider_model.strip()
        if override.temperature is not None:
            temperature = override.temperature
        if override.max_tokens:
            max_tokens = override.max_tokens
        if override.prompt_template and override.prompt_template.strip():
            template = override.prompt_template

    return ProviderSettings(
        provider_model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        prompt_template=template,
        family=resolve_family(model, config),
    )


def render_system_prompt(
    template: str,
    student_name: str,
    activity_title: str,
    question: str,
) -> str:
    """Substitute every occurrence of the three supported placeholders.

    Plain replacement: any other braces in a class-authored template
    are left untouched.
    """
    return (
        template.replace(PLACEHOLDER_STUDENT_NAME, student_name)
        .replace(PLACEHOLDER_ACTIVITY_TITLE, activity_title)
        .replace(PLACEHOLDER_QUESTION, question)
    )


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class ContextAssembler:
    """Builds an :class:`AssembledContext` from the tutoring store."""

    def __init__(
        self,
        store: TutoringStore,
        provider_config: ProviderConfig,
        chat_config: ChatConfig,
    ) -> None:
        self._store = store
        self._provider_config = provider_config
        self._chat_config = chat_config

    async def assemble(
        self,
        requester_id: str,
        activity_id: str | None,
        message: str,
    ) -> AssembledContext:
        with tracer.start_as_current_span(SPAN_CHAT_CONTEXT) as span:
            requester = await self._store.get_requester(requester_id)
            if requester is None:
                raise NotFoundError(f"student {requester_id!r} not found")

            activity = await self._load_activity(activity_id)
            if activity is not None:
                span.set_attribute(ATTR_CHAT_ACTIVITY_KIND, activity.kind.value)

            settings = await self.resolve_settings(requester, activity)
            history = await self._load_history(
                requester_id, activity.id if activity is not None else None
            )
            span.set_attribute(ATTR_CHAT_HISTORY_TURNS, len(history))

            title = (
                activity.title
                if activity is not None
                else self._chat_config.fallback_activity_title
            )
            prompt = PromptContext(
                system_prompt=render_system_prompt(
                    settings.prompt_template,
                    student_name=requester.display_name,
                    activity_title=title,
                    question=message,
                ),
                user_message=message,
                history=tuple(history),
            )
            return AssembledContext(
                requester=requester,
                activity=activity,
                settings=settings,
                prompt=prompt,
            )

    async def resolve_settings(
        self,
        requester: RequesterProfile,
        activity: ActivityDescriptor | None,
    ) -> ProviderSettings:
        """Global default, overlaid by the (cohort, activity kind) row."""
        override: SettingsOverride | None = None
        if requester.cohort_name and activity is not None:
            try:
                override = await self._store.get_settings_override(
                    requester.cohort_name, activity.kind
                )
            except Exception:
                logger.warning(
                    "Settings lookup failed for cohort=%s kind=%s, "
                    "using global defaults",
                    requester.cohort_name,
                    activity.kind.value,
                    exc_info=True,
                )
        return merge_settings(self._provider_config, override)

    # -- internal ----------------------------------------------------

    async def _load_activity(
        self, activity_id: str | None
    ) -> ActivityDescriptor | None:
        if not activity_id:
            return None
        try:
            activity = await self._store.get_activity(activity_id)
        except Exception:
            logger.warning(
                "Activity lookup failed for %s, continuing as general chat",
                activity_id,
                exc_info=True,
            )
            return None
        if activity is None:
            logger.info("Activity %s not found, continuing as general chat", activity_id)
        return activity

    async def _load_history(
        self, requester_id: str, activity_id: str | None
    ) -> list[ConversationTurn]:
        limit = self._chat_config.history_read_limit
        if limit <= 0:
            return []
        scope = activity_id if self._chat_config.scope_history_to_activity else None
        try:
            turns = await self._store.recent_turns(
                requester_id, limit=limit, activity_id=scope
            )
            return turns[-limit:]
        except Exception:
            logger.warning(
                "Failed to load history for %s, continuing without it",
                requester_id,
                exc_info=True,
            )
            return []
