"""Logging utilities for alfafrens-bot."""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Generator

# AI debug mode flag
_ai_debug: bool = False
_ai_debug_lock = Lock()


def set_ai_debug(enabled: bool) -> None:
    """Enable or disable AI debug logging."""
    global _ai_debug
    with _ai_debug_lock:
        _ai_debug = enabled


def is_ai_debug() -> bool:
    """Check if AI debug logging is enabled."""
    with _ai_debug_lock:
        return _ai_debug


# Dedicated logger for AI debug output
_ai_logger = logging.getLogger("alfafrens_bot.ai_debug")


def new_trace_id(purpose: str) -> str:
    """Short id tying a generation request to its log lines, e.g. ``response-1a2b3c4d``."""
    return f"{purpose}-{uuid.uuid4().hex[:8]}"


def log_llm_call(
    operation: str,
    model: str,
    system_prompt: str | None = None,
    user_prompt: str | None = None,
    config: dict[str, Any] | None = None,
) -> None:
    """Log the input to an LLM call when AI debug is enabled."""
    if not is_ai_debug():
        return

    parts = [
        f"\n{'='*80}",
        f"LLM CALL: {operation}",
        f"Model: {model}",
        f"{'='*80}",
    ]

    if system_prompt:
        parts.append(f"\n--- SYSTEM PROMPT ---\n{system_prompt}")

    if user_prompt:
        parts.append(f"\n--- USER PROMPT ---\n{user_prompt}")

    if config:
        parts.append(f"\n--- CONFIG ---\n{json.dumps(config, indent=2, default=str)}")

    _ai_logger.info("\n".join(parts))


def log_llm_response(
    operation: str,
    response_text: str | None = None,
    usage: dict[str, Any] | None = None,
) -> None:
    """Log the output from an LLM call when AI debug is enabled."""
    if not is_ai_debug():
        return

    parts = [
        f"\n{'-'*80}",
        f"LLM RESPONSE: {operation}",
        f"{'-'*80}",
        f"\n--- RESPONSE TEXT ---\n{response_text or '(empty)'}",
    ]

    if usage:
        parts.append(f"\n--- USAGE ---\n{json.dumps(usage, indent=2, default=str)}")

    parts.append(f"{'='*80}\n")

    _ai_logger.info("\n".join(parts))


def log_rag_query(
    operation: str,
    query: str,
    filters: dict[str, Any] | None = None,
    limit: int | None = None,
) -> None:
    """Log a memory query when AI debug is enabled."""
    if not is_ai_debug():
        return

    parts = [
        f"\n{'='*80}",
        f"RAG QUERY: {operation}",
        f"{'='*80}",
        f"\n--- QUERY ---\n{query}",
    ]

    if filters:
        parts.append(f"\n--- FILTERS ---\n{json.dumps(filters, indent=2, default=str)}")

    if limit is not None:
        parts.append(f"\n--- LIMIT ---\n{limit}")

    _ai_logger.info("\n".join(parts))


def log_rag_results(
    operation: str,
    results: list[Any],
    distances: list[float] | None = None,
) -> None:
    """Log memory query results when AI debug is enabled."""
    if not is_ai_debug():
        return

    parts = [
        f"\n{'-'*80}",
        f"RAG RESULTS: {operation} ({len(results)} results)",
        f"{'-'*80}",
    ]

    for i, result in enumerate(results):
        distance_str = f" (distance: {distances[i]:.4f})" if distances and i < len(distances) else ""
        if hasattr(result, "content"):
            parts.append(f"\n[{i+1}]{distance_str}\n{result.content}")
        else:
            parts.append(f"\n[{i+1}]{distance_str}\n{result}")

    parts.append(f"{'='*80}\n")

    _ai_logger.info("\n".join(parts))


@dataclass
class SessionStats:
    """Cumulative statistics for a session.

    Thread-safe counters for tracking bot activity metrics.
    """

    messages_fetched: int = 0
    messages_skipped_self: int = 0
    evaluations_passed: int = 0
    evaluations_failed: int = 0
    responses_sent: int = 0
    posts_created: int = 0
    corrections: int = 0
    facts_stored: int = 0
    facts_rejected: int = 0
    generation_errors: int = 0
    api_calls: dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def increment(self, stat: str, amount: int = 1) -> None:
        """Increment a stat counter."""
        with self._lock:
            if hasattr(self, stat) and stat != "_lock":
                current = getattr(self, stat)
                if isinstance(current, int):
                    setattr(self, stat, current + amount)

    def increment_api_call(self, model: str) -> None:
        """Track an API call to a specific model."""
        with self._lock:
            self.api_calls[model] = self.api_calls.get(model, 0) + 1

    def summary(self) -> dict[str, Any]:
        """Return a summary of all stats."""
        with self._lock:
            total_eval = self.evaluations_passed + self.evaluations_failed
            return {
                "fetched": self.messages_fetched,
                "skipped_self": self.messages_skipped_self,
                "eval_rate": f"{100 * self.evaluations_passed / max(1, total_eval):.0f}%",
                "responses": self.responses_sent,
                "posts": self.posts_created,
                "corrections": self.corrections,
                "facts_stored": self.facts_stored,
                "facts_rejected": self.facts_rejected,
                "generation_errors": self.generation_errors,
                "api_calls": dict(self.api_calls),
            }

    def summary_line(self) -> str:
        """Return a single-line summary for logging."""
        with self._lock:
            total_eval = self.evaluations_passed + self.evaluations_failed
            eval_pct = 100 * self.evaluations_passed / max(1, total_eval)

            return (
                f"fetched={self.messages_fetched} skipped_self={self.messages_skipped_self} "
                f"eval_rate={eval_pct:.0f}% responses={self.responses_sent} "
                f"posts={self.posts_created} corrections={self.corrections} "
                f"facts_stored={self.facts_stored} errors={self.generation_errors}"
            )


# Global session stats instance
_session_stats: SessionStats | None = None
_stats_lock = Lock()


def get_session_stats() -> SessionStats:
    """Get the global session stats instance."""
    global _session_stats
    with _stats_lock:
        if _session_stats is None:
            _session_stats = SessionStats()
        return _session_stats


def reset_session_stats() -> None:
    """Reset session stats (mainly for testing)."""
    global _session_stats
    with _stats_lock:
        _session_stats = SessionStats()


# Dedicated logger for LLM round summaries (always on)
_llm_logger = logging.getLogger("alfafrens_bot.llm")


def log_llm_round(
    component: str,
    model: str,
    tokens_in: int | None,
    tokens_out: int | None,
    elapsed_ms: float | None = None,
    stop_reason: str | None = None,
) -> None:
    """Log a summary of one LLM request (always on).

    Args:
        component: Which component made the call (e.g., "response-1a2b3c4d")
        model: Model name used
        tokens_in: Input token count (None if unavailable)
        tokens_out: Output token count (None if unavailable)
        elapsed_ms: Wall time of the request
        stop_reason: Stop/finish reason reported by the provider
    """
    tokens_str = f"in={tokens_in or '?'} out={tokens_out or '?'}"
    time_str = f" elapsed={elapsed_ms:.0f}ms" if elapsed_ms is not None else ""
    stop_str = f" stop={stop_reason}" if stop_reason else ""

    _llm_logger.info(f"LLM_ROUND [{component}] model={model} {tokens_str}{time_str}{stop_str}")


@contextmanager
def log_timing(
    logger: logging.Logger, operation: str
) -> Generator[None, None, None]:
    """Context manager for timing operations.

    Logs at DEBUG level on completion.

    Example:
        with log_timing(logger, "Poll cycle"):
            await orchestrator.process_cycle()
        # Logs: "Poll cycle completed in 1.23ms"
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{operation} completed in {elapsed_ms:.2f}ms")
