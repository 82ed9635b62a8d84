"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from dotenv import load_dotenv

from alfafrens_bot.config import APIConfig, Config, MemoryConfig, ModelTier
from alfafrens_bot.core.generator import ContentGenerator, GenerationOutput
from alfafrens_bot.core.logging import reset_session_stats
from alfafrens_bot.gateway.models import ChannelMessage, SendResult
from alfafrens_bot.memory.store import Memory, MemoryKind, SearchResult


load_dotenv()

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class MockEmbeddingFunction:
    """Mock embedding function for testing without GPU."""

    def __init__(self, dimension: int = 384):
        self._dimension = dimension

    @staticmethod
    def name() -> str:
        """Return function name for ChromaDB."""
        return "mock"

    def __call__(self, input: list[str]) -> list[list[float]]:
        """Generate deterministic mock embeddings."""
        result = []
        for text in input:
            h = hash(text)
            result.append([((h >> i) % 100 + 1) / 100.0 for i in range(self._dimension)])
        return result

    def embed_query(self, query: str) -> list[float]:
        """Embed a single query."""
        return self([query])[0]


class FakeBackend:
    """Scripted text backend.

    ``reply`` is either a fixed string or a function of the prompt.
    """

    def __init__(
        self,
        reply: str | Callable[[str], str] = "",
        delay: float = 0.0,
        error: Exception | None = None,
    ):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        stop_sequences: list[str],
        max_output_tokens: int,
    ) -> GenerationOutput:
        self.calls.append({"model": model, "prompt": prompt, "stop_sequences": stop_sequences})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        text = self.reply(prompt) if callable(self.reply) else self.reply
        return GenerationOutput(text=text, tokens_in=12, tokens_out=6, stop_reason="end_turn")

    @property
    def prompts(self) -> list[str]:
        return [call["prompt"] for call in self.calls]


NO_CONTRADICTION = '{"contradicts": false, "confidence": 0.1, "explanation": "unrelated"}'


def fact_check_llm(
    reply: str = "",
    extraction: str = "[]",
    contradiction: str = NO_CONTRADICTION,
    relationships: str = "[]",
) -> Callable[[str], str]:
    """Backend reply function that answers by prompt type."""

    def _reply(prompt: str) -> str:
        if prompt.startswith("Extract factual statements"):
            return extraction
        if prompt.startswith("Analyze if these two facts"):
            return contradiction
        if prompt.startswith("Extract relationships"):
            return relationships
        return reply

    return _reply


class InMemoryStore:
    """MessageStore kept in a list; search returns records in insertion order."""

    def __init__(self, records: list[Memory] | None = None):
        self.records: list[Memory] = list(records or [])

    def add(self, memory: Memory) -> str:
        self.records.append(memory)
        return memory.id

    def recent(self, kind: MemoryKind, limit: int) -> list[Memory]:
        matching = [m for m in self.records if m.kind == kind]
        matching.sort(key=lambda m: m.timestamp, reverse=True)
        return matching[:limit]

    def search(
        self, query: str, limit: int = 10, kind: MemoryKind | None = None
    ) -> list[SearchResult]:
        matching = [m for m in self.records if kind is None or m.kind == kind]
        return [SearchResult(memory=m, distance=0.2) for m in matching[:limit]]

    def of_kind(self, kind: MemoryKind) -> list[Memory]:
        return [m for m in self.records if m.kind == kind]


class FakeGateway:
    """Channel gateway serving queued fetch results and recording sends."""

    def __init__(self, batches: list[list[ChannelMessage]] | None = None):
        self.batches = list(batches or [])
        self.fetch_calls: list[dict[str, Any]] = []
        self.replies: list[tuple[str, str]] = []
        self.messages: list[str] = []
        self.posts: list[str] = []
        self.closed = False
        self._counter = 0

    async def fetch_messages(
        self,
        channel_id: str,
        since_ms: int | None = None,
        until_ms: int | None = None,
        include_replies: bool = False,
        include_reactions: bool = False,
    ) -> list[ChannelMessage]:
        self.fetch_calls.append({
            "channel_id": channel_id,
            "since_ms": since_ms,
            "until_ms": until_ms,
            "include_replies": include_replies,
        })
        return self.batches.pop(0) if self.batches else []

    def _result(self) -> SendResult:
        self._counter += 1
        return SendResult(id=f"sent-{self._counter}", timestamp=datetime.now(timezone.utc))

    async def post_message(self, channel_id: str, body: str) -> SendResult:
        self.messages.append(body)
        return self._result()

    async def reply_to_message(self, channel_id: str, body: str, parent_id: str) -> SendResult:
        self.replies.append((parent_id, body))
        return self._result()

    async def create_post(self, channel_id: str, body: str) -> SendResult:
        self.posts.append(body)
        return self._result()

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> "FakeGateway":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def pytest_runtest_setup(item: pytest.Item) -> None:
    """Each test starts with zeroed session counters."""
    reset_session_stats()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Configuration with API settings filled in and data under tmp_path."""
    return Config(
        api=APIConfig(
            api_key="test-key",
            channel_id="chan-1",
            user_id="agent-1",
            username="AI Assistant",
        ),
        memory=MemoryConfig(
            chroma_path=tmp_path / "chroma",
            checkpoint_path=tmp_path / "cache.db",
        ),
    )


@pytest.fixture
def make_message() -> Callable[..., ChannelMessage]:
    """Factory for channel messages offset from a fixed base time."""

    def _make(
        message_id: str,
        body: str = "hello there",
        sender_id: str = "user-1",
        handle: str = "alice",
        offset_seconds: float = 0,
        in_reply_to: str | None = None,
    ) -> ChannelMessage:
        return ChannelMessage(
            id=message_id,
            sender_id=sender_id,
            sender_handle=handle,
            body=body,
            created_at=BASE_TIME + timedelta(seconds=offset_seconds),
            in_reply_to=in_reply_to,
        )

    return _make


@pytest.fixture
def make_generator(config: Config) -> Callable[[FakeBackend], ContentGenerator]:
    """Factory for a ContentGenerator serving every tier from one backend."""

    def _make(backend: FakeBackend, cfg: Config | None = None) -> ContentGenerator:
        cfg = cfg or config
        return ContentGenerator(
            cfg.generation,
            cfg.llm,
            cfg.character,
            backends={tier: backend for tier in ModelTier},
        )

    return _make


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_content = """
api:
  api_key: "yaml-key"
  channel_id: "yaml-channel"
  user_id: "agent-9"
  username: "@helper"

polling:
  poll_interval_seconds: 30
  batch_size: 5

posting:
  enabled: true
  interval_min_seconds: 600
  interval_max_seconds: 900

generation:
  default_model_tier: "large"
  evaluation:
    model_tier: "small"
  response:
    template: "Reply to {{message.content}}"

evaluation:
  strategy: "llm"

character:
  name: "Frenbot"
  topics:
    - "crypto"
    - "community"
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path
