"""Content generation through Gemini or Claude with a hard deadline."""

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import anthropic
from google import genai
from google.genai import types

from alfafrens_bot.config import CharacterConfig, GenerationConfig, LLMConfig, ModelTier
from alfafrens_bot.core.logging import (
    get_session_stats,
    log_llm_call,
    log_llm_response,
    log_llm_round,
    new_trace_id,
)
from alfafrens_bot.core.prompts import character_variables, render_template

logger = logging.getLogger(__name__)

POST_FALLBACK = "I'm sorry, I couldn't generate a post at this time."


class GenerationError(Exception):
    """The text-generation service failed to produce text."""


class GenerationTimeout(GenerationError):
    """Generation did not finish before the deadline."""


class GenerationAuthError(GenerationError):
    """The provider rejected our credentials."""


@dataclass
class GenerationOutput:
    """Raw result of one provider call."""

    text: str
    tokens_in: int | None = None
    tokens_out: int | None = None
    stop_reason: str | None = None


class TextBackend(Protocol):
    """One text-generation provider."""

    async def complete(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        stop_sequences: list[str],
        max_output_tokens: int,
    ) -> GenerationOutput: ...


class GeminiBackend:
    """Google Gemini through google-genai."""

    def __init__(self, api_key: str):
        self._client = genai.Client(api_key=api_key)

    async def complete(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        stop_sequences: list[str],
        max_output_tokens: int,
    ) -> GenerationOutput:
        response = await self._client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=0.7,
                max_output_tokens=max_output_tokens,
                stop_sequences=stop_sequences or None,
            ),
        )
        usage = response.usage_metadata if response else None
        finish = None
        if response and response.candidates:
            finish = str(response.candidates[0].finish_reason)
        return GenerationOutput(
            text=(response.text or "") if response else "",
            tokens_in=usage.prompt_token_count if usage else None,
            tokens_out=usage.candidates_token_count if usage else None,
            stop_reason=finish,
        )


class AnthropicBackend:
    """Anthropic Claude through the messages API."""

    def __init__(self, api_key: str):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

    async def complete(
        self,
        model: str,
        prompt: str,
        system_prompt: str,
        stop_sequences: list[str],
        max_output_tokens: int,
    ) -> GenerationOutput:
        # whitespace-only stop sequences are rejected by the API; truncation
        # happens after the call instead
        stops = [s for s in stop_sequences if s.strip()]
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_output_tokens,
            system=system_prompt,
            stop_sequences=stops or anthropic.NOT_GIVEN,
            messages=[{"role": "user", "content": prompt}],
        )
        text = ""
        for block in response.content:
            if block.type == "text":
                text = block.text
                break
        return GenerationOutput(
            text=text,
            tokens_in=response.usage.input_tokens,
            tokens_out=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )


def build_backends(llm: LLMConfig) -> dict[ModelTier, TextBackend]:
    """Create a backend per tier from the configured model names.

    Claude model names go to Anthropic, everything else to Gemini. Tiers whose
    provider has no API key are left out.
    """
    gemini: GeminiBackend | None = None
    claude: AnthropicBackend | None = None
    backends: dict[ModelTier, TextBackend] = {}

    for tier, model in llm.tier_models.items():
        if model.startswith("claude"):
            if llm.anthropic_api_key is None:
                continue
            if claude is None:
                claude = AnthropicBackend(llm.anthropic_api_key.get_secret_value())
            backends[tier] = claude
        else:
            if llm.google_api_key is None:
                continue
            if gemini is None:
                gemini = GeminiBackend(llm.google_api_key.get_secret_value())
            backends[tier] = gemini

    return backends


def truncate_at_stop(text: str, stop_sequences: list[str]) -> str:
    """Cut ``text`` at the earliest stop sequence, ignoring a leading match."""
    stripped = text.strip()
    cut = len(stripped)
    for stop in stop_sequences:
        if not stop:
            continue
        index = stripped.find(stop)
        if index > 0:
            cut = min(cut, index)
    return stripped[:cut].strip()


def _is_auth_failure(error: Exception) -> bool:
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return True
    message = str(error).lower()
    return "authentication" in message or "api key" in message or "api_key" in message


class ContentGenerator:
    """Turns templates and context variables into text.

    Every call runs against a deadline; a call that misses it raises
    GenerationTimeout and the pending provider request is cancelled.
    """

    def __init__(
        self,
        config: GenerationConfig,
        llm: LLMConfig,
        character: CharacterConfig | None = None,
        backends: Mapping[ModelTier, TextBackend] | None = None,
    ):
        """Initialize the generator.

        Args:
            config: Templates, tiers, timeout and stop sequences
            llm: Provider keys and tier -> model mapping
            character: Persona used for ``{{character.*}}`` placeholders
            backends: Provider per tier (built from ``llm`` when omitted)
        """
        self._config = config
        self._llm = llm
        self._character = character or CharacterConfig()
        self._backends = dict(backends) if backends is not None else build_backends(llm)

    @property
    def config(self) -> GenerationConfig:
        return self._config

    def model_for(self, tier: ModelTier) -> str:
        return self._llm.tier_models.get(tier, self._llm.tier_models[ModelTier.MEDIUM])

    def render(self, template: str, variables: Mapping[str, Any] | None = None) -> str:
        """Render a template with persona variables plus ``variables``."""
        merged: dict[str, Any] = character_variables(self._character)
        if variables:
            merged.update(variables)
        return render_template(template, merged)

    async def generate(
        self,
        template: str,
        variables: Mapping[str, Any] | None = None,
        tier: ModelTier | None = None,
        timeout_seconds: float | None = None,
        stop_sequences: list[str] | None = None,
        purpose: str = "generate",
    ) -> str:
        """Render ``template`` and generate text from it.

        Raises:
            GenerationTimeout: The deadline passed first
            GenerationAuthError: The provider rejected the credentials
            GenerationError: Any other provider failure
        """
        prompt = self.render(template, variables)
        return await self.generate_text(
            prompt,
            tier=tier,
            timeout_seconds=timeout_seconds,
            stop_sequences=stop_sequences,
            purpose=purpose,
        )

    async def generate_text(
        self,
        prompt: str,
        tier: ModelTier | None = None,
        timeout_seconds: float | None = None,
        stop_sequences: list[str] | None = None,
        purpose: str = "generate",
    ) -> str:
        """Generate text from an already rendered prompt."""
        tier = tier or self._config.default_model_tier
        timeout = timeout_seconds if timeout_seconds is not None else self._config.timeout_seconds
        stops = self._config.stop_sequences if stop_sequences is None else stop_sequences
        model = self.model_for(tier)
        trace_id = new_trace_id(purpose)
        stats = get_session_stats()

        backend = self._backends.get(tier)
        if backend is None:
            stats.increment("generation_errors")
            logger.error(f"GENERATION_AUTH [{trace_id}]: no provider credentials for tier={tier.value}")
            raise GenerationAuthError(f"No API key configured for {tier.value} tier ({model})")

        log_llm_call(
            operation=f"Generation ({trace_id})",
            model=model,
            system_prompt=self._config.system_prompt,
            user_prompt=prompt,
            config={
                "tier": tier.value,
                "timeout_seconds": timeout,
                "stop_sequences": stops,
                "max_output_tokens": self._config.max_output_tokens,
            },
        )
        logger.debug(f"GENERATE [{trace_id}]: tier={tier.value} model={model} prompt_chars={len(prompt)}")

        start = time.perf_counter()
        try:
            output = await asyncio.wait_for(
                backend.complete(
                    model=model,
                    prompt=prompt,
                    system_prompt=self._config.system_prompt,
                    stop_sequences=list(stops),
                    max_output_tokens=self._config.max_output_tokens,
                ),
                timeout=timeout,
            )
        except TimeoutError as e:
            stats.increment("generation_errors")
            logger.error(f"GENERATION_TIMEOUT [{trace_id}]: model={model} after {timeout:.0f}s")
            raise GenerationTimeout(f"LLM request timed out after {timeout:.0f}s") from e
        except GenerationError:
            stats.increment("generation_errors")
            raise
        except Exception as e:
            stats.increment("generation_errors")
            if _is_auth_failure(e):
                logger.error(f"GENERATION_AUTH [{trace_id}]: authentication error with API: {e}")
                raise GenerationAuthError(str(e)) from e
            logger.error(f"GENERATION_ERROR [{trace_id}]: {e}")
            raise GenerationError(str(e)) from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        stats.increment_api_call(model)
        log_llm_round(
            component=f"{trace_id} tier={tier.value}",
            model=model,
            tokens_in=output.tokens_in,
            tokens_out=output.tokens_out,
            elapsed_ms=elapsed_ms,
            stop_reason=output.stop_reason,
        )
        log_llm_response(
            operation=f"Generation ({trace_id})",
            response_text=output.text,
            usage={"input_tokens": output.tokens_in, "output_tokens": output.tokens_out},
        )

        return truncate_at_stop(output.text, list(stops))
