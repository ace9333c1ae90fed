"""Tests for context assembly and settings resolution."""

from __future__ import annotations

import pytest

from conftest import ACTIVITY_ID, COHORT, STUDENT_ID
from tutorchat.configs.system import ChatConfig, ProviderConfig
from tutorchat.core.context import (
    ContextAssembler,
    merge_settings,
    render_system_prompt,
    resolve_family,
)
from tutorchat.core.errors import (
    NotFoundError,
    ProviderConfigurationError,
    ProviderError,
)
from tutorchat.core.models import ActivityKind, ProviderFamily, SettingsOverride


def _assembler(store, provider_config=None, chat_config=None) -> ContextAssembler:
    return ContextAssembler(
        store, provider_config or ProviderConfig(), chat_config or ChatConfig()
    )


# =========================================================================
# Pure helpers
# =========================================================================


class TestResolveFamily:
    @pytest.mark.parametrize(
        "model,family",
        [
            ("gpt-3.5-turbo", ProviderFamily.OPENAI),
            ("gpt-4o-mini", ProviderFamily.OPENAI),
            ("GPT-4", ProviderFamily.OPENAI),
            ("o1-mini", ProviderFamily.OPENAI),
            ("claude-3-haiku-20240307", ProviderFamily.ANTHROPIC),
        ],
    )
    def test_known_prefixes(self, model, family):
        assert resolve_family(model, ProviderConfig()) is family

    def test_unknown_prefix_is_configuration_error(self):
        with pytest.raises(ProviderConfigurationError) as exc_info:
            resolve_family("gemini-pro", ProviderConfig())
        assert isinstance(exc_info.value, ProviderError)
        assert "gemini-pro" in str(exc_info.value)


class TestMergeSettings:
    def test_no_override_uses_global_defaults(self):
        settings = merge_settings(ProviderConfig(), None)
        assert settings.provider_model == "gpt-3.5-turbo"
        assert settings.temperature == 0.7
        assert settings.max_tokens == 1000
        assert settings.family is ProviderFamily.OPENAI

    def test_partial_override_keeps_remaining_defaults(self):
        settings = merge_settings(
            ProviderConfig(),
            SettingsOverride(provider_model="claude-3-haiku", temperature=0.2),
        )
        assert settings.provider_model == "claude-3-haiku"
        assert settings.temperature == 0.2
        assert settings.max_tokens == 1000
        assert settings.prompt_template == ProviderConfig().default_prompt_template
        assert settings.family is ProviderFamily.ANTHROPIC

    def test_blank_fields_do_not_win(self):
        settings = merge_settings(
            ProviderConfig(),
            SettingsOverride(provider_model="  ", prompt_template="", max_tokens=0),
        )
        assert settings.provider_model == "gpt-3.5-turbo"
        assert settings.max_tokens == 1000
        assert settings.prompt_template == ProviderConfig().default_prompt_template

    def test_zero_temperature_is_a_real_value(self):
        settings = merge_settings(ProviderConfig(), SettingsOverride(temperature=0.0))
        assert settings.temperature == 0.0


class TestRenderSystemPrompt:
    def test_replaces_every_occurrence(self):
        rendered = render_system_prompt(
            "Hi {student_name}! {student_name}, on {activity_title}: {question}",
            student_name="Mina",
            activity_title="uniforms",
            question="why?",
        )
        assert rendered == "Hi Mina! Mina, on uniforms: why?"

    def test_other_braces_are_left_alone(self):
        rendered = render_system_prompt(
            "Use {evidence} for {student_name}", "Mina", "t", "q"
        )
        assert rendered == "Use {evidence} for Mina"


# =========================================================================
# Assembler
# =========================================================================


class TestContextAssembler:
    @pytest.mark.asyncio
    async def test_unknown_requester_raises_not_found(self, store):
        with pytest.raises(NotFoundError):
            await _assembler(store).assemble("nobody", None, "hello")

    @pytest.mark.asyncio
    async def test_general_chat_uses_defaults_and_fallback_title(self, store):
        ctx = await _assembler(store).assemble(STUDENT_ID, None, "What is a claim?")

        assert ctx.activity is None
        assert ctx.settings.provider_model == "gpt-3.5-turbo"
        assert "Mina" in ctx.prompt.system_prompt
        assert "general study" in ctx.prompt.system_prompt
        assert ctx.prompt.user_message == "What is a claim?"

    @pytest.mark.asyncio
    async def test_cohort_override_applies_to_activity_kind(self, store):
        store.overrides[(COHORT, ActivityKind.ARGUMENTATION)] = SettingsOverride(
            provider_model="claude-3-haiku-20240307",
            prompt_template="Coach {student_name} on {activity_title}. Q: {question}",
        )
        ctx = await _assembler(store).assemble(STUDENT_ID, ACTIVITY_ID, "Is it fair?")

        assert ctx.activity.kind is ActivityKind.ARGUMENTATION
        assert ctx.settings.family is ProviderFamily.ANTHROPIC
        assert ctx.prompt.system_prompt == (
            "Coach Mina on argumentation: school uniforms. Q: Is it fair?"
        )

    @pytest.mark.asyncio
    async def test_override_for_other_kind_is_ignored(self, store):
        store.overrides[(COHORT, ActivityKind.EXPERIMENT)] = SettingsOverride(
            provider_model="claude-3-haiku"
        )
        ctx = await _assembler(store).assemble(STUDENT_ID, ACTIVITY_ID, "q")
        assert ctx.settings.provider_model == "gpt-3.5-turbo"

    @pytest.mark.asyncio
    async def test_settings_lookup_failure_falls_back_to_defaults(self, store):
        store.fail_settings = True
        ctx = await _assembler(store).assemble(STUDENT_ID, ACTIVITY_ID, "q")
        assert ctx.settings == merge_settings(ProviderConfig(), None)

    @pytest.mark.asyncio
    async def test_activity_lookup_failure_is_general_chat(self, store):
        store.fail_activity = True
        ctx = await _assembler(store).assemble(STUDENT_ID, ACTIVITY_ID, "q")
        assert ctx.activity is None
        assert "general study" in ctx.prompt.system_prompt

    @pytest.mark.asyncio
    async def test_missing_activity_is_general_chat(self, store):
        ctx = await _assembler(store).assemble(STUDENT_ID, "missing", "q")
        assert ctx.activity is None

    @pytest.mark.asyncio
    async def test_history_is_capped_to_read_limit(self, store):
        store.add_turns(STUDENT_ID, 10)
        ctx = await _assembler(store).assemble(STUDENT_ID, None, "q")

        assert len(ctx.prompt.history) == 5
        assert ctx.prompt.history[0].user_text == "question 5"
        assert ctx.prompt.history[-1].user_text == "question 9"

    @pytest.mark.asyncio
    async def test_history_is_not_scoped_by_default(self, store):
        store.add_turns(STUDENT_ID, 2, activity_id="other")
        await _assembler(store).assemble(STUDENT_ID, ACTIVITY_ID, "q")
        assert store.history_calls[-1]["activity_id"] is None

    @pytest.mark.asyncio
    async def test_history_can_be_scoped_to_activity(self, store):
        store.add_turns(STUDENT_ID, 2, activity_id="other")
        store.add_turns(STUDENT_ID, 1, activity_id=ACTIVITY_ID)
        ctx = await _assembler(
            store, chat_config=ChatConfig(scope_history_to_activity=True)
        ).assemble(STUDENT_ID, ACTIVITY_ID, "q")

        assert store.history_calls[-1]["activity_id"] == ACTIVITY_ID
        assert len(ctx.prompt.history) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("activity_id", ["missing", "not-a-uuid"])
    async def test_unresolved_activity_does_not_scope_history(self, store, activity_id):
        store.add_turns(STUDENT_ID, 2, activity_id="other")
        ctx = await _assembler(
            store, chat_config=ChatConfig(scope_history_to_activity=True)
        ).assemble(STUDENT_ID, activity_id, "q")

        assert ctx.activity is None
        assert store.history_calls[-1]["activity_id"] is None
        assert len(ctx.prompt.history) == 2

    @pytest.mark.asyncio
    async def test_failed_activity_lookup_does_not_scope_history(self, store):
        store.fail_activity = True
        await _assembler(
            store, chat_config=ChatConfig(scope_history_to_activity=True)
        ).assemble(STUDENT_ID, ACTIVITY_ID, "q")

        assert store.history_calls[-1]["activity_id"] is None

    @pytest.mark.asyncio
    async def test_history_failure_yields_empty_history(self, store):
        store.fail_history = True
        ctx = await _assembler(store).assemble(STUDENT_ID, None, "q")
        assert ctx.prompt.history == ()

    @pytest.mark.asyncio
    async def test_zero_read_limit_skips_history_lookup(self, store):
        store.add_turns(STUDENT_ID, 3)
        ctx = await _assembler(
            store, chat_config=ChatConfig(history_read_limit=0)
        ).assemble(STUDENT_ID, None, "q")
        assert ctx.prompt.history == ()
        assert store.history_calls == []

    @pytest.mark.asyncio
    async def test_unknown_default_model_is_configuration_error(self, store):
        with pytest.raises(ProviderConfigurationError):
            await _assembler(
                store, provider_config=ProviderConfig(default_model="llama-3")
            ).assemble(STUDENT_ID, None, "q")
