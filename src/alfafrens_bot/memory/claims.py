"""Factual claim extraction, contradiction checking and storage."""

import json
import logging
import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from alfafrens_bot.config import FactConfig, ModelTier
from alfafrens_bot.core.generator import ContentGenerator, GenerationError
from alfafrens_bot.core.logging import get_session_stats
from alfafrens_bot.memory.store import Memory, MemoryKind, MessageStore

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Extract factual statements from this text. Return ONLY a JSON array of strings.
Only include clear, factual statements, not opinions or subjective content.
The JSON array must be properly formatted with square brackets and quoted strings.

Text: "{text}"

Example format:
["Fact 1", "Fact 2", "Fact 3"]
"""

CONTRADICTION_PROMPT = """Analyze if these two facts contradict each other:
Fact 1: {new}
Fact 2: {existing}

Return a JSON object with:
{{
    "contradicts": boolean,
    "confidence": number (0-1),
    "explanation": string
}}"""

RELATIONSHIP_PROMPT = """Extract relationships from this fact. Return them as a JSON array of objects.
Each object should have:
{{
    "sourceEntityId": string (the subject),
    "targetEntityId": string (the object),
    "tags": string[] (relationship types)
}}

Fact: "{claim}"
"""

_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_QUESTION_STARTS = ("what", "who", "when", "where", "why", "how")
_OPINION_WORDS = re.compile(
    r"think|feel|believe|opinion|seem|appear|likely|possibly|maybe|perhaps", re.IGNORECASE
)
_FACT_SIGNALS = re.compile(
    r"in \d{4}|\d{4}|founded|created|established|launched|developed|built|designed"
    r"|is a|was born|located|headquartered",
    re.IGNORECASE,
)

BASE_CONFIDENCE = 0.5
AGENT_SOURCE_BONUS = 0.2
CONTRADICTION_PENALTY = 0.3


class Relationship(BaseModel):
    """A (subject, object, tags) triple extracted from a claim."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: str = Field(alias="sourceEntityId")
    target: str = Field(alias="targetEntityId")
    tags: list[str] = Field(default_factory=list)


class Contradiction(BaseModel):
    """A prior claim judged to conflict with a new one."""

    claim: str
    existing_claim: str
    confidence: float = Field(ge=0.0, le=1.0)
    explanation: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)


class Claim(BaseModel):
    """An extracted factual assertion with its validation outcome."""

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    source_id: str
    timestamp: datetime = Field(default_factory=datetime.now)
    contradictions: list[str] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)

    @property
    def contradicted(self) -> bool:
        return bool(self.contradictions)


class ContradictionAnalysis(BaseModel):
    """Schema for a contradiction verdict."""

    contradicts: bool
    confidence: float = 0.0
    explanation: str = ""


def jaccard_similarity(a: str, b: str) -> float:
    """Word-set Jaccard similarity of two texts (lowercased, whitespace split)."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def heuristic_claims(text: str) -> list[str]:
    """Pick sentences that look like factual statements.

    Questions and opinion-worded sentences are dropped; the rest must carry a
    factual signal such as a year or "founded".
    """
    claims = []
    for sentence in _SENTENCE_SPLIT.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        lowered = sentence.lower()
        if "?" in sentence or lowered.startswith(_QUESTION_STARTS):
            continue
        if _OPINION_WORDS.search(sentence):
            continue
        if _FACT_SIGNALS.search(sentence):
            claims.append(sentence)
    return claims


def compute_confidence(source_id: str, agent_id: str, contradictions: list[Contradiction]) -> float:
    """Score a claim.

    0.5 base, +0.2 when the agent itself is the source, minus 0.3 times the
    mean contradiction confidence, clamped to [0, 1].
    """
    confidence = BASE_CONFIDENCE
    if agent_id and source_id == agent_id:
        confidence += AGENT_SOURCE_BONUS
    if contradictions:
        mean = sum(c.confidence for c in contradictions) / len(contradictions)
        confidence -= mean * CONTRADICTION_PENALTY
    return max(0.0, min(1.0, confidence))


class FactValidator:
    """Extracts claims from text and checks them against stored claims."""

    def __init__(
        self,
        generator: ContentGenerator,
        store: MessageStore,
        config: FactConfig,
        agent_id: str,
        tier: ModelTier = ModelTier.SMALL,
    ):
        """Initialize the validator.

        Args:
            generator: Used for extraction and contradiction judgments
            store: Where claims are read from and persisted
            config: Thresholds
            agent_id: Id of the agent; claims it authors get a confidence bonus
            tier: Model tier for the helper calls
        """
        self._generator = generator
        self._store = store
        self._config = config
        self._agent_id = agent_id
        self._tier = tier

    @property
    def acceptance_threshold(self) -> float:
        return self._config.acceptance_threshold

    async def _ask(self, prompt: str, purpose: str) -> str:
        return await self._generator.generate_text(
            prompt, tier=self._tier, stop_sequences=[], purpose=purpose
        )

    async def extract_claims(self, text: str) -> list[str]:
        """Extract factual statements; falls back to heuristics on any failure."""
        try:
            raw = await self._ask(EXTRACTION_PROMPT.format(text=text), "facts")
        except GenerationError as e:
            logger.error(f"Claim extraction failed: {e}")
            return heuristic_claims(text)

        match = _JSON_ARRAY.search(raw)
        if not match:
            logger.warning(f"No JSON array in claim extraction result: {raw[:200]}")
            return heuristic_claims(text)
        try:
            parsed = json.loads(match.group())
        except json.JSONDecodeError as e:
            logger.warning(f"Could not parse claim extraction result: {e}")
            return heuristic_claims(text)
        if not isinstance(parsed, list):
            return heuristic_claims(text)

        claims = [item.strip() for item in parsed if isinstance(item, str) and item.strip()]
        logger.debug(f"Extracted {len(claims)} claims")
        return claims

    def get_relevant_claims(self, claim: str) -> list[Memory]:
        """Recent stored claims whose word overlap with ``claim`` exceeds the relevance threshold."""
        try:
            recent = self._store.recent(MemoryKind.FACT, self._config.recent_window)
        except Exception as e:
            logger.error(f"Failed to load stored claims: {e}")
            return []
        return [
            m for m in recent
            if jaccard_similarity(claim, m.content) > self._config.relevance_threshold
        ]

    async def analyze_contradiction(self, claim: str, existing: str) -> ContradictionAnalysis | None:
        """Ask the model whether two claims conflict. None when unsure or on failure."""
        try:
            raw = await self._ask(
                CONTRADICTION_PROMPT.format(new=claim, existing=existing), "contradiction"
            )
        except GenerationError as e:
            logger.error(f"Contradiction analysis failed: {e}")
            return None

        match = _JSON_OBJECT.search(raw)
        if not match:
            return None
        try:
            analysis = ContradictionAnalysis.model_validate_json(match.group())
        except ValidationError as e:
            logger.warning(f"Could not parse contradiction analysis: {e}")
            return None

        if analysis.contradicts and analysis.confidence > self._config.contradiction_confidence:
            return analysis
        return None

    async def detect_contradictions(self, claim: str, existing: list[Memory]) -> list[Contradiction]:
        """Check near-duplicate stored claims for conflict, in order."""
        contradictions: list[Contradiction] = []
        for memory in existing:
            if jaccard_similarity(claim, memory.content) <= self._config.contradiction_similarity:
                continue
            analysis = await self.analyze_contradiction(claim, memory.content)
            if analysis is None:
                continue
            contradictions.append(
                Contradiction(
                    claim=claim,
                    existing_claim=memory.content,
                    confidence=min(1.0, analysis.confidence),
                    explanation=analysis.explanation,
                )
            )
        return contradictions

    async def extract_relationships(self, claim: str) -> list[Relationship]:
        """Extract relationship triples; empty on any failure."""
        try:
            raw = await self._ask(RELATIONSHIP_PROMPT.format(claim=claim), "relationships")
        except GenerationError as e:
            logger.error(f"Relationship extraction failed: {e}")
            return []

        match = _JSON_ARRAY.search(raw)
        if not match:
            return []
        try:
            items = json.loads(match.group())
            return [Relationship.model_validate(item) for item in items if isinstance(item, dict)]
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Could not parse relationships: {e}")
            return []

    async def validate_claim(self, claim: str, source_id: str) -> Claim:
        """Score ``claim`` against stored claims."""
        existing = self.get_relevant_claims(claim)
        contradictions = await self.detect_contradictions(claim, existing)
        confidence = compute_confidence(source_id, self._agent_id, contradictions)
        relationships = await self.extract_relationships(claim)

        result = Claim(
            text=claim,
            confidence=confidence,
            source_id=source_id,
            contradictions=[c.existing_claim for c in contradictions],
            relationships=relationships,
        )
        logger.info(
            f"FACT_VALIDATION: '{claim[:80]}' confidence={confidence:.2f} "
            f"relevant={len(existing)} contradictions={len(contradictions)}"
        )
        return result

    def store_claim(self, claim: Claim, allow_contradictions: bool = False) -> bool:
        """Persist an accepted claim.

        Claims below the acceptance threshold are never stored; contradicted
        claims only when ``allow_contradictions`` is set.

        Returns:
            True if the claim was written
        """
        stats = get_session_stats()
        if claim.confidence < self._config.acceptance_threshold or (
            claim.contradicted and not allow_contradictions
        ):
            stats.increment("facts_rejected")
            logger.debug(f"FACT_STORE: skipping '{claim.text[:80]}' confidence={claim.confidence:.2f}")
            return False

        metadata: dict[str, str | int | float | bool] = {}
        if claim.relationships:
            metadata["relationships"] = json.dumps(
                [r.model_dump(by_alias=True) for r in claim.relationships]
            )
        if claim.contradictions:
            metadata["contradictions"] = json.dumps(claim.contradictions)

        try:
            self._store.add(
                Memory(
                    content=claim.text,
                    kind=MemoryKind.FACT,
                    source_id=claim.source_id,
                    room=self._agent_id,
                    confidence=claim.confidence,
                    timestamp=claim.timestamp,
                    metadata=metadata,
                )
            )
        except Exception as e:
            logger.error(f"Failed to store claim: {e}")
            return False

        stats.increment("facts_stored")
        logger.info(f"FACT_STORE: '{claim.text[:80]}' confidence={claim.confidence:.2f}")
        return True
