"""Local sentence-transformer embeddings for the memory store."""

import logging
from functools import lru_cache

import torch
from chromadb import EmbeddingFunction
from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

# Model families trained with asymmetric query/document prefixes
_PREFIXES: dict[str, tuple[str, str]] = {
    "nomic": ("search_query: ", "search_document: "),
    "e5": ("query: ", "passage: "),
}


def get_device() -> str:
    """Get the best available device for embeddings."""
    if torch.cuda.is_available():
        logger.info(f"Using CUDA device: {torch.cuda.get_device_name(0)}")
        return "cuda"
    logger.info("CUDA not available, using CPU for embeddings")
    return "cpu"


@lru_cache(maxsize=2)
def get_embedding_model(model_name: str) -> SentenceTransformer:
    """Load and cache the embedding model on the best available device."""
    logger.info(f"Loading embedding model: {model_name}")
    model = SentenceTransformer(model_name, device=get_device())
    logger.info(f"Embedding model loaded (dimension: {model.get_sentence_embedding_dimension()})")
    return model


class LocalEmbeddingFunction(EmbeddingFunction[list[str]]):
    """ChromaDB-compatible embedding function backed by sentence-transformers."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self._model_name = model_name
        self._model: SentenceTransformer | None = None
        self._query_prefix, self._document_prefix = "", ""
        for family, prefixes in _PREFIXES.items():
            if family in model_name.lower():
                self._query_prefix, self._document_prefix = prefixes
                break

    @staticmethod
    def name() -> str:
        return "alfafrens-local"

    @property
    def model(self) -> SentenceTransformer:
        """Lazy-load the model."""
        if self._model is None:
            self._model = get_embedding_model(self._model_name)
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        embeddings = self.model.encode(texts, convert_to_numpy=True, show_progress_bar=False)
        return embeddings.tolist()

    def __call__(self, input: list[str]) -> list[list[float]]:
        """Embed documents for storage."""
        return self._encode([f"{self._document_prefix}{text}" for text in input])

    def embed_query(self, query: str) -> list[float]:
        """Embed a single search query."""
        return self._encode([f"{self._query_prefix}{query}"])[0]
