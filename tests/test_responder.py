"""Tests for response generation with fact checking and correction."""

from unittest.mock import AsyncMock

import pytest

from alfafrens_bot.config import Config
from alfafrens_bot.core.generator import POST_FALLBACK, GenerationError
from alfafrens_bot.core.logging import get_session_stats
from alfafrens_bot.core.responder import (
    Responder,
    WebResult,
    WebSearchResponse,
    correction_lines,
)
from alfafrens_bot.memory.claims import Claim, FactValidator
from alfafrens_bot.memory.store import Memory, MemoryKind

from conftest import FakeBackend, InMemoryStore, fact_check_llm

LAUNCH_2023 = "The Base network launched in August of 2023 with great fanfare"
LAUNCH_2024 = "The Base network launched in August of 2024 with great fanfare"
CONTRADICTS = '{"contradicts": true, "confidence": 0.9, "explanation": "different years"}'


@pytest.fixture
def responder_for(make_generator, memory_store: InMemoryStore, config: Config):
    """Factory for a Responder whose generator and validator share one backend."""

    def _make(backend: FakeBackend, agent_id: str | None = None, web_search=None) -> Responder:
        if agent_id is not None:
            config.api.user_id = agent_id
        generator = make_generator(backend)
        validator = FactValidator(
            generator, memory_store, config.facts, agent_id=config.api.agent_id
        )
        return Responder(config, generator, validator, memory_store, web_search)

    return _make


class TestCorrectionLines:
    def test_contradiction_line(self):
        claim = Claim(text="A", confidence=0.2, source_id="x", contradictions=["B", "C"])
        assert correction_lines([claim], 0.7) == ['CORRECTION: "A" contradicts known facts: B, C']

    def test_low_confidence_line(self):
        claim = Claim(text="A", confidence=0.5, source_id="x")
        assert correction_lines([claim], 0.7) == ['CORRECTION: "A" has low confidence (0.50)']

    def test_accepted_claim_no_line(self):
        claim = Claim(text="A", confidence=0.7, source_id="x")
        assert correction_lines([claim], 0.7) == []


class TestRespond:
    """Tests for the generate-then-validate flow."""

    @pytest.mark.asyncio
    async def test_no_claims_returns_draft(self, responder_for):
        backend = FakeBackend(fact_check_llm(reply="gm! Welcome to the channel."))
        result = await responder_for(backend).respond("gm", "alice", [])

        assert result.text == "gm! Welcome to the channel."
        assert not result.corrected
        assert result.claims == []

    @pytest.mark.asyncio
    async def test_agent_claims_stored(self, responder_for, memory_store: InMemoryStore):
        backend = FakeBackend(fact_check_llm(
            reply="Base launched in 2023.",
            extraction='["Base launched in 2023"]',
        ))
        result = await responder_for(backend).respond("when did base launch?", "alice", [])

        assert result.text == "Base launched in 2023."
        assert not result.corrected
        facts = memory_store.of_kind(MemoryKind.FACT)
        assert [m.content for m in facts] == ["Base launched in 2023"]
        assert facts[0].source_id == "agent-1"

    @pytest.mark.asyncio
    async def test_contradiction_triggers_single_correction(
        self, responder_for, memory_store: InMemoryStore
    ):
        memory_store.add(Memory(content=LAUNCH_2023, kind=MemoryKind.FACT))
        drafts = iter(["Draft with a wrong year.", "Corrected answer."])
        checks = fact_check_llm(extraction=f'["{LAUNCH_2024}"]', contradiction=CONTRADICTS)

        def reply(prompt: str) -> str:
            if prompt.startswith("You are"):
                return next(drafts)
            return checks(prompt)

        backend = FakeBackend(reply)

        result = await responder_for(backend).respond("when did base launch?", "alice", [])

        assert result.corrected
        assert result.draft == "Draft with a wrong year."
        assert result.text == "Corrected answer."
        correction = backend.prompts[-1]
        assert "contradicts known facts" in correction
        assert LAUNCH_2023 in correction
        assert correction.endswith("Revised response:")
        assert get_session_stats().corrections == 1
        assert [m.content for m in memory_store.of_kind(MemoryKind.FACT)] == [LAUNCH_2023]

    @pytest.mark.asyncio
    async def test_unset_user_id_still_agent_authored(
        self, responder_for, memory_store: InMemoryStore, config: Config
    ):
        """Without a user id, generated claims are attributed to the username."""
        backend = FakeBackend(fact_check_llm(
            reply="Base launched in 2023.",
            extraction='["Base launched in 2023"]',
        ))
        result = await responder_for(backend, agent_id="").respond("when did base launch?", "bob", [])

        assert not result.corrected
        assert result.claims[0].confidence == pytest.approx(0.7)
        assert result.claims[0].source_id == config.api.username
        assert [m.content for m in memory_store.of_kind(MemoryKind.FACT)] == ["Base launched in 2023"]

    @pytest.mark.asyncio
    async def test_paris_low_confidence_triggers_correction(
        self, make_generator, memory_store: InMemoryStore, config: Config
    ):
        """Claims not attributed to the validator's agent score 0.5 and get corrected."""
        backend = FakeBackend(fact_check_llm(
            reply="Paris is the capital of France.",
            extraction='["Paris is the capital of France"]',
        ))
        generator = make_generator(backend)
        validator = FactValidator(generator, memory_store, config.facts, agent_id="other-agent")
        responder = Responder(config, generator, validator, memory_store)

        result = await responder.respond("capital of france?", "bob", [])

        assert result.corrected
        assert result.claims[0].confidence == 0.5
        assert "has low confidence (0.50)" in backend.prompts[-1]
        assert memory_store.of_kind(MemoryKind.FACT) == []

    @pytest.mark.asyncio
    async def test_validation_failure_returns_draft(self, responder_for):
        backend = FakeBackend(fact_check_llm(reply="Base launched in 2023."))
        responder = responder_for(backend)
        responder._validator.extract_claims = AsyncMock(side_effect=RuntimeError("store offline"))

        result = await responder.respond("when?", "alice", [])

        assert result.text == "Base launched in 2023."
        assert not result.corrected

    @pytest.mark.asyncio
    async def test_draft_failure_propagates(self, responder_for):
        backend = FakeBackend(error=RuntimeError("overloaded"))
        with pytest.raises(GenerationError):
            await responder_for(backend).respond("hi", "alice", [])

    @pytest.mark.asyncio
    async def test_validation_disabled(self, responder_for, config: Config):
        config.facts.enabled = False
        backend = FakeBackend(fact_check_llm(
            reply="Paris is the capital of France.",
            extraction='["Paris is the capital of France"]',
        ))
        result = await responder_for(backend).respond("capital?", "bob", [])

        assert result.text == "Paris is the capital of France."
        assert len(backend.calls) == 1


class TestPrompt:
    """Tests for the context that goes into the response prompt."""

    @pytest.mark.asyncio
    async def test_history_and_knowledge(
        self, responder_for, make_message, memory_store: InMemoryStore
    ):
        memory_store.add(Memory(content="AlfaFrens runs on Base.", kind=MemoryKind.KNOWLEDGE))
        history = [
            make_message("m1", body="gm", sender_id="user-2", handle="bob"),
            make_message("m2", body="gm bob", sender_id="agent-1", handle="AI Assistant"),
        ]
        prompt = await responder_for(FakeBackend()).build_prompt("what chain?", "carol", history)

        assert "USER (bob): gm\n\nASSISTANT: gm bob" in prompt
        assert "Relevant knowledge:\nAlfaFrens runs on Base." in prompt
        assert "USER (carol): what chain?" in prompt
        assert "{{" not in prompt

    @pytest.mark.asyncio
    async def test_web_search_context(self, responder_for):
        search = AsyncMock()
        search.search.return_value = WebSearchResponse(
            answer="Base is an Ethereum L2.",
            results=[WebResult(title="Base docs", url="https://docs.base.org")],
        )
        responder = responder_for(FakeBackend(), web_search=search)

        prompt = await responder.build_prompt("what is base?", "carol", [])

        assert "Base is an Ethereum L2." in prompt
        assert "1. Base docs - https://docs.base.org" in prompt

    @pytest.mark.asyncio
    async def test_web_search_failure_ignored(self, responder_for):
        search = AsyncMock()
        search.search.side_effect = RuntimeError("rate limited")
        responder = responder_for(FakeBackend(), web_search=search)

        assert await responder.web_context("anything") == ""

    @pytest.mark.asyncio
    async def test_empty_history(self, responder_for):
        prompt = await responder_for(FakeBackend()).build_prompt("hi", "carol", [])
        assert "No previous messages." in prompt


class TestComposePost:
    @pytest.mark.asyncio
    async def test_post(self, responder_for):
        backend = FakeBackend(fact_check_llm(reply="Community call on Friday!"))
        result = await responder_for(backend).compose_post()
        assert result.text == "Community call on Friday!"

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self, responder_for, config: Config):
        config.generation.timeout_seconds = 0.05
        backend = FakeBackend("too late", delay=1.0)
        result = await responder_for(backend).compose_post()
        assert result.text == POST_FALLBACK
        assert POST_FALLBACK == "I'm sorry, I couldn't generate a post at this time."

    @pytest.mark.asyncio
    async def test_empty_output_uses_fallback(self, responder_for):
        result = await responder_for(FakeBackend("   ")).compose_post()
        assert result.text == POST_FALLBACK
        assert not result.corrected

    @pytest.mark.asyncio
    async def test_error_uses_fallback(self, responder_for):
        backend = FakeBackend(error=RuntimeError("boom"))
        result = await responder_for(backend).compose_post()
        assert result.text == POST_FALLBACK
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_post_claims_validated(self, responder_for, memory_store: InMemoryStore):
        backend = FakeBackend(fact_check_llm(
            reply="AlfaFrens launched on Base in 2024.",
            extraction='["AlfaFrens launched on Base in 2024"]',
        ))
        result = await responder_for(backend).compose_post()

        assert result.text == "AlfaFrens launched on Base in 2024."
        assert [m.content for m in memory_store.of_kind(MemoryKind.FACT)] == [
            "AlfaFrens launched on Base in 2024"
        ]
