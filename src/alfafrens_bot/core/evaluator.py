"""Response-worthiness evaluation strategies."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel

from alfafrens_bot.config import Config, EvaluationStrategy, ModelTier
from alfafrens_bot.core.generator import ContentGenerator, GenerationError
from alfafrens_bot.core.logging import get_session_stats
from alfafrens_bot.core.prompts import template_for
from alfafrens_bot.gateway.models import ChannelMessage

logger = logging.getLogger(__name__)


class EvaluationResponse(BaseModel):
    """Object form of an evaluation answer."""

    respond: bool
    reason: str = ""


@dataclass
class EvaluationResult:
    """Result of evaluating one message."""

    should_respond: bool
    reason: str
    raw_response: str = ""

    def __str__(self) -> str:
        status = "PASS" if self.should_respond else "FAIL"
        return f"Evaluate[{status}]: {self.reason}"


class Evaluator(Protocol):
    """Decides whether the pipeline should reply to a message."""

    async def evaluate(self, message: ChannelMessage) -> EvaluationResult: ...


def _record(result: EvaluationResult, message: ChannelMessage) -> EvaluationResult:
    stats = get_session_stats()
    stats.increment("evaluations_passed" if result.should_respond else "evaluations_failed")
    preview = message.body[:80] + "..." if len(message.body) > 80 else message.body
    logger.info(f"EVALUATE: '{preview}' from {message.sender_handle} -> {result}")
    return result


class AlwaysRespondEvaluator:
    """Replies to every message that reaches it."""

    async def evaluate(self, message: ChannelMessage) -> EvaluationResult:
        return _record(EvaluationResult(should_respond=True, reason="always respond"), message)


_FENCED = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_ARRAY = re.compile(r"\[.*\]", re.DOTALL)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_evaluation(raw: str) -> tuple[bool, str] | None:
    """Parse an evaluation answer.

    Accepts ``[true, "reason"]`` (optionally inside a fenced code block) or
    ``{"respond": true}``. Returns None when nothing usable is found.
    """
    if not raw:
        return None

    fenced = _FENCED.search(raw)
    text = fenced.group(1) if fenced else raw

    array = _ARRAY.search(text)
    if array:
        try:
            parsed = json.loads(array.group())
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list) and parsed and isinstance(parsed[0], bool):
            reason = str(parsed[1]) if len(parsed) > 1 else ""
            return parsed[0], reason

    obj = _OBJECT.search(text)
    if obj:
        try:
            parsed_obj = EvaluationResponse.model_validate_json(obj.group())
            return parsed_obj.respond, parsed_obj.reason
        except ValueError:
            pass

    return None


class LLMJudgeEvaluator:
    """Asks a small model whether the message deserves a reply."""

    def __init__(self, generator: ContentGenerator, template: str, tier: ModelTier):
        """Initialize the judge.

        Args:
            generator: Content generator used for the judgment call
            template: Evaluation template (``{{message.content}}``, ``{{message.sender}}``)
            tier: Model tier for the judgment call
        """
        self._generator = generator
        self._template = template
        self._tier = tier

    async def evaluate(self, message: ChannelMessage) -> EvaluationResult:
        variables = {"message": {"content": message.body, "sender": message.sender_handle}}
        try:
            raw = await self._generator.generate(
                self._template,
                variables,
                tier=self._tier,
                stop_sequences=[],
                purpose=f"eval-{message.id[:8]}",
            )
        except GenerationError as e:
            logger.error(f"Evaluation failed: {e}")
            return _record(
                EvaluationResult(should_respond=False, reason=f"error: {e}"), message
            )

        parsed = parse_evaluation(raw)
        if parsed is None:
            logger.warning(f"Could not parse evaluation from: {raw[:200]}")
            return _record(
                EvaluationResult(should_respond=False, reason="unparseable", raw_response=raw),
                message,
            )

        should_respond, reason = parsed
        return _record(
            EvaluationResult(should_respond=should_respond, reason=reason, raw_response=raw),
            message,
        )


def build_evaluator(config: Config, generator: ContentGenerator) -> Evaluator:
    """Create the evaluator selected by ``evaluation.strategy``."""
    if config.evaluation.strategy == EvaluationStrategy.LLM:
        return LLMJudgeEvaluator(
            generator,
            template_for(config.generation, "evaluation"),
            config.generation.tier_for("evaluation"),
        )
    return AlwaysRespondEvaluator()
