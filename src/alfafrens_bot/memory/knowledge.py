"""Loading reference text into the memory store as knowledge records."""

import logging
from pathlib import Path

from alfafrens_bot.memory.store import Memory, MemoryKind, MessageStore

logger = logging.getLogger(__name__)

MAX_CHUNK_CHARS = 1000


def split_knowledge(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[str]:
    """Split text into chunks on blank lines.

    Consecutive paragraphs are joined while they fit in ``max_chars``; a single
    paragraph longer than that becomes its own chunk.
    """
    paragraphs = [" ".join(p.split()) for p in text.split("\n\n")]
    chunks: list[str] = []
    current = ""
    for paragraph in paragraphs:
        if not paragraph:
            continue
        if current and len(current) + 2 + len(paragraph) > max_chars:
            chunks.append(current)
            current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph
    if current:
        chunks.append(current)
    return chunks


def ingest_knowledge(store: MessageStore, path: Path | str, max_chars: int = MAX_CHUNK_CHARS) -> int:
    """Add the chunks of a text file to ``store`` as knowledge records.

    Returns:
        Number of records written

    Raises:
        OSError: The file could not be read
    """
    path = Path(path)
    chunks = split_knowledge(path.read_text(encoding="utf-8"), max_chars)
    for i, chunk in enumerate(chunks):
        store.add(Memory(
            content=chunk,
            kind=MemoryKind.KNOWLEDGE,
            source_id=path.name,
            metadata={"chunk": i},
        ))
    logger.info(f"KNOWLEDGE_INGEST: {path.name} -> {len(chunks)} records")
    return len(chunks)
