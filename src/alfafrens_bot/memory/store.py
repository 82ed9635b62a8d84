"""ChromaDB-based memory store for messages, claims and knowledge."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

import chromadb
from chromadb.config import Settings
from pydantic import BaseModel, Field

from alfafrens_bot.config import MemoryConfig
from alfafrens_bot.core.logging import log_rag_query, log_rag_results
from alfafrens_bot.memory.embeddings import LocalEmbeddingFunction

logger = logging.getLogger(__name__)


class MemoryKind(str, Enum):
    """Kinds of stored records."""

    MESSAGE = "message"  # Inbound or outbound chat message
    FACT = "fact"  # Validated factual claim
    KNOWLEDGE = "knowledge"  # Reference material for responses


class Memory(BaseModel):
    """A stored record."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    content: str
    kind: MemoryKind = MemoryKind.MESSAGE
    source_id: str = ""  # Sender id, or the agent's own id
    room: str = ""  # Channel id
    message_id: str | None = None  # Remote message id, for chat messages
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)

    def to_chroma_metadata(self) -> dict[str, Any]:
        """Convert to ChromaDB metadata format (no None values)."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "source_id": self.source_id,
            "room": self.room,
            "timestamp": self.timestamp.isoformat(),
            "timestamp_ms": int(self.timestamp.timestamp() * 1000),
            **self.metadata,
        }
        if self.message_id is not None:
            data["message_id"] = self.message_id
        if self.confidence is not None:
            data["confidence"] = self.confidence
        return data

    @classmethod
    def from_chroma(cls, memory_id: str, document: str, metadata: dict[str, Any] | None) -> "Memory":
        metadata = dict(metadata or {})
        known = {"kind", "source_id", "room", "timestamp", "timestamp_ms", "message_id", "confidence"}
        return cls(
            id=memory_id,
            content=document or "",
            kind=MemoryKind(metadata.get("kind", "message")),
            source_id=metadata.get("source_id", ""),
            room=metadata.get("room", ""),
            message_id=metadata.get("message_id"),
            confidence=metadata.get("confidence"),
            timestamp=datetime.fromisoformat(metadata.get("timestamp", datetime.now().isoformat())),
            metadata={k: v for k, v in metadata.items() if k not in known},
        )


@dataclass
class SearchResult:
    """Result from a memory search."""

    memory: Memory
    distance: float  # Cosine distance, lower is more similar

    @property
    def similarity(self) -> float:
        """Cosine similarity (0-1)."""
        return max(0.0, 1.0 - self.distance)


class MessageStore(Protocol):
    """Durable record store with similarity search."""

    def add(self, memory: Memory) -> str: ...

    def recent(self, kind: MemoryKind, limit: int) -> list[Memory]: ...

    def search(
        self, query: str, limit: int = 10, kind: MemoryKind | None = None
    ) -> list[SearchResult]: ...


class MemoryStore:
    """ChromaDB-backed record storage with local embeddings."""

    COLLECTION_NAME = "alfafrens_memories"

    def __init__(self, config: MemoryConfig):
        self._config = config
        self._embedding_fn = LocalEmbeddingFunction(config.embedding_model)
        self._recent_cutoffs: dict[tuple[MemoryKind, int], int] = {}

        chroma_path = Path(config.chroma_path)
        chroma_path.mkdir(parents=True, exist_ok=True)

        self._client = chromadb.PersistentClient(
            path=str(chroma_path),
            settings=Settings(anonymized_telemetry=False),
        )
        self._collection = self._client.get_or_create_collection(
            name=self.COLLECTION_NAME,
            embedding_function=self._embedding_fn,
            metadata={"hnsw:space": "cosine"},
        )

        logger.info(f"Memory store initialized at {chroma_path}")
        logger.info(f"Collection '{self.COLLECTION_NAME}' has {self._collection.count()} records")

    def add(self, memory: Memory) -> str:
        """Add a record to the store.

        Returns:
            The record ID
        """
        self._collection.add(
            ids=[memory.id],
            documents=[memory.content],
            metadatas=[memory.to_chroma_metadata()],
        )
        logger.debug(
            f"MEMORY_ADD: id={memory.id[:8]}... kind={memory.kind.value} "
            f"source={memory.source_id or '-'} chars={len(memory.content)}"
        )
        return memory.id

    def recent(self, kind: MemoryKind, limit: int) -> list[Memory]:
        """Most recent records of one kind, newest first.

        Once a full window has been read, later calls only look at records at or
        after the oldest timestamp in it. Records are never removed, so the newest
        ``limit`` records always lie inside that range.
        """
        if limit <= 0:
            return []

        where: dict[str, Any] = {"kind": {"$eq": kind.value}}
        cutoff = self._recent_cutoffs.get((kind, limit))
        if cutoff is not None:
            where = {"$and": [where, {"timestamp_ms": {"$gte": cutoff}}]}

        # Rank on metadata alone, then load documents for the window only
        index = self._collection.get(where=where, include=["metadatas"])
        ids = index["ids"] or []
        metadatas = index["metadatas"] or [{} for _ in ids]
        ranked = sorted(
            zip(ids, metadatas),
            key=lambda item: item[1].get("timestamp_ms", 0),
            reverse=True,
        )[:limit]
        if not ranked:
            return []
        if len(ranked) == limit:
            self._recent_cutoffs[(kind, limit)] = ranked[-1][1].get("timestamp_ms", 0)

        window = [memory_id for memory_id, _ in ranked]
        results = self._collection.get(ids=window, include=["documents", "metadatas"])
        by_id: dict[str, Memory] = {}
        for i, memory_id in enumerate(results["ids"]):
            metadata = results["metadatas"][i] if results["metadatas"] else {}
            document = results["documents"][i] if results["documents"] else ""
            by_id[memory_id] = Memory.from_chroma(memory_id, document, metadata)
        return [by_id[memory_id] for memory_id in window if memory_id in by_id]

    def search(
        self,
        query: str,
        limit: int = 10,
        kind: MemoryKind | None = None,
    ) -> list[SearchResult]:
        """Search for records similar to ``query``.

        Args:
            query: Search query
            limit: Maximum results to return
            kind: Restrict to one kind of record

        Returns:
            List of search results, most similar first
        """
        if limit <= 0 or self._collection.count() == 0:
            return []

        where = {"kind": {"$eq": kind.value}} if kind else None
        log_rag_query(
            operation="Memory Search",
            query=query,
            filters={"kind": kind.value if kind else None},
            limit=limit,
        )

        query_embedding = self._embedding_fn.embed_query(query)
        results = self._collection.query(
            query_embeddings=[query_embedding],
            n_results=limit,
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        search_results: list[SearchResult] = []
        if results["ids"] and results["ids"][0]:
            for i, memory_id in enumerate(results["ids"][0]):
                metadata = results["metadatas"][0][i] if results["metadatas"] else {}
                document = results["documents"][0][i] if results["documents"] else ""
                distance = results["distances"][0][i] if results["distances"] else 0.0
                search_results.append(
                    SearchResult(memory=Memory.from_chroma(memory_id, document, metadata), distance=distance)
                )

        query_preview = query[:50] + "..." if len(query) > 50 else query
        logger.info(
            f"MEMORY_SEARCH: query='{query_preview}' kind={kind.value if kind else 'any'} "
            f"limit={limit} -> {len(search_results)} results"
        )
        log_rag_results(
            operation="Memory Search",
            results=[sr.memory for sr in search_results],
            distances=[sr.distance for sr in search_results],
        )
        return search_results

    def count(self) -> int:
        """Get total number of records."""
        return self._collection.count()
