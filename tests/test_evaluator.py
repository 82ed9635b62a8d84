"""Tests for response-worthiness evaluation."""

import pytest

from alfafrens_bot.config import Config, EvaluationStrategy, ModelTier
from alfafrens_bot.core.evaluator import (
    AlwaysRespondEvaluator,
    EvaluationResult,
    LLMJudgeEvaluator,
    build_evaluator,
    parse_evaluation,
)
from alfafrens_bot.core.logging import get_session_stats

from conftest import FakeBackend


class TestParseEvaluation:
    """Tests for parsing evaluation answers."""

    def test_fenced_array(self):
        raw = '```json\n[true, "Direct question"]\n```'
        assert parse_evaluation(raw) == (True, "Direct question")

    def test_bare_array(self):
        assert parse_evaluation('[false, "too short"]') == (False, "too short")

    def test_array_with_surrounding_text(self):
        raw = 'Here is my answer: [true, "asks for help"] hope that helps'
        assert parse_evaluation(raw) == (True, "asks for help")

    def test_object_form(self):
        assert parse_evaluation('{"respond": true, "reason": "greeting"}') == (True, "greeting")

    def test_array_without_reason(self):
        assert parse_evaluation("[true]") == (True, "")

    @pytest.mark.parametrize(
        "raw",
        ["", "yes, respond", "[1, 2]", '["true", "quoted"]', "{not json}", '{"answer": true}'],
    )
    def test_unusable(self, raw):
        assert parse_evaluation(raw) is None


class TestAlwaysRespondEvaluator:
    @pytest.mark.asyncio
    async def test_always_true(self, make_message):
        result = await AlwaysRespondEvaluator().evaluate(make_message("m1", body="lol"))
        assert result.should_respond is True
        assert get_session_stats().evaluations_passed == 1


class TestLLMJudgeEvaluator:
    """Tests for the model-judged strategy."""

    @pytest.mark.asyncio
    async def test_positive_judgment(self, make_generator, make_message, config: Config):
        backend = FakeBackend('```json\n[true, "direct question"]\n```')
        config.evaluation.strategy = EvaluationStrategy.LLM
        judge = build_evaluator(config, make_generator(backend))
        assert isinstance(judge, LLMJudgeEvaluator)

        result = await judge.evaluate(make_message("m1", body="what is base?", handle="carol"))

        assert result.should_respond is True
        assert result.reason == "direct question"
        assert 'Message: "what is base?"' in backend.prompts[0]
        assert "Sender: carol" in backend.prompts[0]
        assert backend.calls[0]["stop_sequences"] == []

    @pytest.mark.asyncio
    async def test_unparseable_means_no(self, make_generator, make_message):
        backend = FakeBackend("Absolutely!")
        judge = LLMJudgeEvaluator(make_generator(backend), "{{message.content}}", ModelTier.SMALL)
        result = await judge.evaluate(make_message("m1"))
        assert result.should_respond is False
        assert result.raw_response == "Absolutely!"
        assert get_session_stats().evaluations_failed == 1

    @pytest.mark.asyncio
    async def test_generation_error_means_no(self, make_generator, make_message):
        backend = FakeBackend(error=RuntimeError("overloaded"))
        judge = LLMJudgeEvaluator(make_generator(backend), "{{message.content}}", ModelTier.SMALL)
        result = await judge.evaluate(make_message("m1"))
        assert result.should_respond is False
        assert result.reason.startswith("error")


class TestBuildEvaluator:
    def test_default_is_always(self, make_generator, config: Config):
        evaluator = build_evaluator(config, make_generator(FakeBackend()))
        assert isinstance(evaluator, AlwaysRespondEvaluator)

    def test_result_str(self):
        assert str(EvaluationResult(True, "ok")) == "Evaluate[PASS]: ok"
        assert str(EvaluationResult(False, "nah")) == "Evaluate[FAIL]: nah"
