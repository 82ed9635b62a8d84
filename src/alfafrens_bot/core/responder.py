"""Response generation followed by fact validation and a single correction pass."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import BaseModel, Field

from alfafrens_bot.config import Config
from alfafrens_bot.core.generator import ContentGenerator, GenerationError, POST_FALLBACK
from alfafrens_bot.core.history import format_history
from alfafrens_bot.core.logging import get_session_stats
from alfafrens_bot.core.prompts import correction_prompt, template_for
from alfafrens_bot.gateway.models import ChannelMessage
from alfafrens_bot.memory.claims import Claim, FactValidator
from alfafrens_bot.memory.store import MemoryKind, MessageStore

logger = logging.getLogger(__name__)


class WebResult(BaseModel):
    title: str
    url: str


class WebSearchResponse(BaseModel):
    """Answer plus result list from a web search provider."""

    answer: str = ""
    results: list[WebResult] = Field(default_factory=list)


class WebSearchProvider(Protocol):
    """Optional web search capability supplied by the host."""

    async def search(self, query: str, limit: int = 3) -> WebSearchResponse: ...


@dataclass
class ResponseResult:
    """Result of response generation."""

    text: str
    draft: str = ""
    corrected: bool = False
    claims: list[Claim] = field(default_factory=list)


def correction_lines(claims: Sequence[Claim], threshold: float) -> list[str]:
    """One line per claim that needs correction, contradictions first."""
    lines = []
    for claim in claims:
        if claim.contradictions:
            lines.append(
                f'CORRECTION: "{claim.text}" contradicts known facts: {", ".join(claim.contradictions)}'
            )
        elif claim.confidence < threshold:
            lines.append(f'CORRECTION: "{claim.text}" has low confidence ({claim.confidence:.2f})')
    return lines


class Responder:
    """Generates replies and posts, then checks their factual claims."""

    def __init__(
        self,
        config: Config,
        generator: ContentGenerator,
        validator: FactValidator | None = None,
        store: MessageStore | None = None,
        web_search: WebSearchProvider | None = None,
    ):
        """Initialize the responder.

        Args:
            config: Application configuration
            generator: Content generator
            validator: Fact validator (None disables validation)
            store: Memory store used for knowledge lookups
            web_search: Optional web search capability
        """
        self._config = config
        self._generator = generator
        self._validator = validator if config.facts.enabled else None
        self._store = store
        self._web_search = web_search
        self._agent_id = config.api.agent_id

    async def knowledge_context(self, query: str) -> str:
        """Knowledge records similar to ``query``; empty on any failure."""
        limit = self._config.memory.knowledge_results
        if self._store is None or limit <= 0:
            return ""
        try:
            results = self._store.search(query, limit=limit, kind=MemoryKind.KNOWLEDGE)
        except Exception as e:
            logger.warning(f"Error fetching knowledge context: {e}")
            return ""
        texts = [r.memory.content for r in results if r.memory.content]
        if not texts:
            return ""
        return "\n\nRelevant knowledge:\n" + "\n\n".join(texts)

    async def web_context(self, query: str) -> str:
        """Web search answer and titled results; empty on any failure."""
        if self._web_search is None:
            return ""
        try:
            response = await self._web_search.search(query, limit=3)
        except Exception as e:
            logger.error(f"Error using web search: {e}")
            return ""
        if not response.results:
            return ""
        lines = [f"{i}. {r.title} - {r.url}" for i, r in enumerate(response.results, 1)]
        return f"{response.answer}\n\nRelevant web search results:\n" + "\n".join(lines)

    async def build_prompt(
        self, content: str, sender: str, history: Sequence[ChannelMessage]
    ) -> str:
        """Render the response template with history and context."""
        variables = {
            "message": {
                "content": content,
                "sender": sender,
                "history": format_history(history, self._config.api.user_id),
            },
            "knowledge": await self.knowledge_context(content),
            "websearch": await self.web_context(content),
        }
        return self._generator.render(template_for(self._config.generation, "response"), variables)

    async def respond(
        self, content: str, sender: str, history: Sequence[ChannelMessage]
    ) -> ResponseResult:
        """Generate a validated reply to ``content``.

        Raises:
            GenerationError: The first draft could not be generated
        """
        prompt = await self.build_prompt(content, sender, history)
        tier = self._config.generation.tier_for("response")
        draft = await self._generator.generate_text(prompt, tier=tier, purpose="response")
        return await self.check_and_correct(prompt, draft, kind="response")

    async def compose_post(self) -> ResponseResult:
        """Generate a validated post; the fallback text is used when generation fails."""
        prompt = self._generator.render(template_for(self._config.generation, "post"))
        tier = self._config.generation.tier_for("post")
        try:
            draft = await self._generator.generate_text(prompt, tier=tier, purpose="post")
        except GenerationError as e:
            logger.error(f"POST_GENERATION_FAILED: {e}")
            return ResponseResult(text=POST_FALLBACK, draft=POST_FALLBACK)
        if not draft:
            logger.warning("POST_GENERATION_EMPTY: using fallback text")
            return ResponseResult(text=POST_FALLBACK, draft=POST_FALLBACK)
        logger.info(f"POST_GENERATED: {draft[:100]}")
        return await self.check_and_correct(prompt, draft, kind="post")

    async def check_and_correct(self, prompt: str, draft: str, kind: str) -> ResponseResult:
        """Validate the claims in ``draft`` and regenerate once if any are flagged.

        Any failure here returns the draft unchanged. The corrected text is not
        validated again.
        """
        if self._validator is None:
            return ResponseResult(text=draft, draft=draft)

        validator = self._validator
        try:
            claims_text = await validator.extract_claims(draft)
            if not claims_text:
                return ResponseResult(text=draft, draft=draft)

            claims = [await validator.validate_claim(c, self._agent_id) for c in claims_text]
            lines = correction_lines(claims, validator.acceptance_threshold)

            if lines:
                logger.info(f"FACT_VALIDATION: {len(lines)} claims need correction, regenerating {kind}")
                revised = await self._generator.generate_text(
                    correction_prompt(prompt, lines),
                    tier=self._config.generation.tier_for(kind),
                    purpose=f"corrected-{kind}",
                )
                get_session_stats().increment("corrections")
                return ResponseResult(text=revised or draft, draft=draft, corrected=True, claims=claims)

            for claim in claims:
                validator.store_claim(claim)
            return ResponseResult(text=draft, draft=draft, claims=claims)

        except Exception as e:
            logger.error(f"Error during fact validation, returning original {kind}: {e}")
            return ResponseResult(text=draft, draft=draft)
