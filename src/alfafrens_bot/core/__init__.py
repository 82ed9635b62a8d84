"""Core bot logic."""

# responder is not re-exported here: it imports memory, which imports core.logging
from .evaluator import AlwaysRespondEvaluator, EvaluationResult, Evaluator, LLMJudgeEvaluator
from .generator import (
    ContentGenerator,
    GenerationAuthError,
    GenerationError,
    GenerationTimeout,
)
from .history import RollingHistory, SentMessageRegistry
from .scheduler import Scheduler

__all__ = [
    "AlwaysRespondEvaluator",
    "ContentGenerator",
    "EvaluationResult",
    "Evaluator",
    "GenerationAuthError",
    "GenerationError",
    "GenerationTimeout",
    "LLMJudgeEvaluator",
    "RollingHistory",
    "Scheduler",
    "SentMessageRegistry",
]
