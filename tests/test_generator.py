"""Tests for template rendering and content generation."""

from unittest.mock import patch

import pytest

from alfafrens_bot.config import CharacterConfig, Config, GenerationConfig, LLMConfig, ModelTier
from alfafrens_bot.core.generator import (
    AnthropicBackend,
    ContentGenerator,
    GeminiBackend,
    GenerationAuthError,
    GenerationError,
    GenerationTimeout,
    build_backends,
    truncate_at_stop,
)
from alfafrens_bot.core.logging import get_session_stats
from alfafrens_bot.core.prompts import (
    DEFAULT_POST_TEMPLATE,
    DEFAULT_RESPONSE_TEMPLATE,
    character_variables,
    correction_prompt,
    render_template,
    template_for,
)

from conftest import FakeBackend


class TestRenderTemplate:
    """Tests for placeholder rendering."""

    def test_simple_and_grouped(self):
        out = render_template(
            "Hi {{name}}, you said {{message.content}}",
            {"name": "alice", "message": {"content": "gm"}},
        )
        assert out == "Hi alice, you said gm"

    def test_lists_join_with_commas(self):
        out = render_template("{{character.topics}}", {"character": {"topics": ["a", "b", "c"]}})
        assert out == "a, b, c"

    def test_unknown_placeholders_left_intact(self):
        out = render_template("{{missing}} and {{message.nope}}", {"message": {"content": "x"}})
        assert out == "{{missing}} and {{message.nope}}"

    def test_whitespace_inside_braces(self):
        assert render_template("{{ name }}", {"name": "bob"}) == "bob"

    def test_group_without_key_left_intact(self):
        assert render_template("{{message}}", {"message": {"content": "x"}}) == "{{message}}"

    def test_character_variables(self):
        variables = character_variables(
            CharacterConfig(name="Frenbot", adjectives=["witty"], topics=["base", "defi"])
        )
        out = render_template(DEFAULT_POST_TEMPLATE, variables)
        assert "You are Frenbot" in out
        assert "base, defi" in out
        assert "{{" not in out

    def test_template_for_prefers_configured(self):
        cfg = GenerationConfig()
        assert template_for(cfg, "response") == DEFAULT_RESPONSE_TEMPLATE
        cfg.response.template = "custom {{message.content}}"
        assert template_for(cfg, "response") == "custom {{message.content}}"

    def test_correction_prompt(self):
        out = correction_prompt("PROMPT", ["CORRECTION: one", "CORRECTION: two"])
        assert out.startswith("PROMPT")
        assert "CORRECTION: one\nCORRECTION: two" in out
        assert out.endswith("Revised response:")


class TestTruncateAtStop:
    """Tests for stop-sequence truncation."""

    def test_cuts_at_first_stop(self):
        assert truncate_at_stop("First line.\n\nSecond paragraph.", ["\n\n"]) == "First line."

    def test_leading_stop_ignored(self):
        assert truncate_at_stop("\n\nAnswer here", ["\n\n"]) == "Answer here"

    def test_no_stops(self):
        assert truncate_at_stop("  text  ", []) == "text"

    def test_earliest_of_several(self):
        assert truncate_at_stop("abc END def STOP", ["STOP", "END"]) == "abc"


class TestBuildBackends:
    """Tests for provider selection per tier."""

    def test_no_keys_no_backends(self):
        assert build_backends(LLMConfig()) == {}

    def test_claude_models_use_anthropic(self):
        llm = LLMConfig(google_api_key="g-key", anthropic_api_key="a-key")
        with patch("alfafrens_bot.core.generator.genai.Client"), patch(
            "alfafrens_bot.core.generator.anthropic.AsyncAnthropic"
        ):
            backends = build_backends(llm)

        assert isinstance(backends[ModelTier.SMALL], GeminiBackend)
        assert backends[ModelTier.SMALL] is backends[ModelTier.MEDIUM]
        assert isinstance(backends[ModelTier.LARGE], AnthropicBackend)

    def test_missing_key_skips_provider(self):
        llm = LLMConfig(google_api_key="g-key")
        with patch("alfafrens_bot.core.generator.genai.Client"):
            backends = build_backends(llm)
        assert ModelTier.LARGE not in backends
        assert ModelTier.SMALL in backends


class TestContentGenerator:
    """Tests for ContentGenerator with a scripted backend."""

    @pytest.mark.asyncio
    async def test_generate_renders_and_truncates(self, make_generator):
        backend = FakeBackend("Sure thing.\n\nExtra rambling.")
        generator = make_generator(backend)

        text = await generator.generate("Say hi to {{message.sender}}", {"message": {"sender": "alice"}})

        assert text == "Sure thing."
        assert backend.prompts == ["Say hi to alice"]
        assert backend.calls[0]["stop_sequences"] == ["\n\n"]

    @pytest.mark.asyncio
    async def test_tier_selects_model(self, make_generator, config: Config):
        backend = FakeBackend("ok")
        generator = make_generator(backend)

        await generator.generate_text("p", tier=ModelTier.LARGE)

        assert backend.calls[0]["model"] == config.llm.tier_models[ModelTier.LARGE]
        assert get_session_stats().api_calls == {config.llm.tier_models[ModelTier.LARGE]: 1}

    @pytest.mark.asyncio
    async def test_character_in_prompt(self, make_generator):
        backend = FakeBackend("ok")
        await make_generator(backend).generate("I am {{character.name}}")
        assert backend.prompts == ["I am AI Assistant"]

    @pytest.mark.asyncio
    async def test_timeout(self, make_generator):
        generator = make_generator(FakeBackend("late", delay=1.0))

        with pytest.raises(GenerationTimeout):
            await generator.generate_text("p", timeout_seconds=0.05)
        assert get_session_stats().generation_errors == 1

    @pytest.mark.asyncio
    async def test_timeout_is_generation_error(self, make_generator):
        generator = make_generator(FakeBackend("late", delay=1.0))
        with pytest.raises(GenerationError):
            await generator.generate_text("p", timeout_seconds=0.05)

    @pytest.mark.asyncio
    async def test_auth_failure_classified(self, make_generator):
        generator = make_generator(FakeBackend(error=RuntimeError("Invalid API key provided")))
        with pytest.raises(GenerationAuthError):
            await generator.generate_text("p")

    @pytest.mark.asyncio
    async def test_other_failure(self, make_generator):
        generator = make_generator(FakeBackend(error=RuntimeError("model overloaded")))
        with pytest.raises(GenerationError) as exc_info:
            await generator.generate_text("p")
        assert not isinstance(exc_info.value, (GenerationAuthError, GenerationTimeout))

    @pytest.mark.asyncio
    async def test_missing_backend_is_auth_error(self, config: Config):
        generator = ContentGenerator(config.generation, config.llm, backends={})
        with pytest.raises(GenerationAuthError):
            await generator.generate_text("p", tier=ModelTier.SMALL)

