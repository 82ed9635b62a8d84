"""Memory store, claim validation and checkpoint cache."""

from .checkpoint import CheckpointStore
from .claims import Claim, Contradiction, FactValidator
from .embeddings import LocalEmbeddingFunction
from .knowledge import ingest_knowledge, split_knowledge
from .store import Memory, MemoryKind, MemoryStore, MessageStore, SearchResult

__all__ = [
    "CheckpointStore",
    "Claim",
    "Contradiction",
    "FactValidator",
    "LocalEmbeddingFunction",
    "Memory",
    "MemoryKind",
    "MemoryStore",
    "MessageStore",
    "SearchResult",
    "ingest_knowledge",
    "split_knowledge",
]
