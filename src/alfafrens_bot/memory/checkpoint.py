"""SQLite key/value cache holding the polling checkpoint."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

CHECKPOINT_KEY = "alfafrens_last_processed_time"


class CheckpointStore:
    """SQLite-backed string cache, used for the last-processed timestamp."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()
        logger.info(f"CheckpointStore initialized at {self.db_path}")

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS cache (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP NOT NULL
            );
        """)
        self._conn.commit()

    def get(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM cache WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO cache (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, datetime.now().isoformat()),
        )
        self._conn.commit()

    def load_checkpoint(self) -> int | None:
        """Last processed timestamp in epoch ms, or None if never saved."""
        value = self.get(CHECKPOINT_KEY)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring malformed checkpoint value: {value!r}")
            return None

    def save_checkpoint(self, timestamp_ms: int) -> None:
        self.set(CHECKPOINT_KEY, str(timestamp_ms))
        logger.debug(f"CHECKPOINT: saved {timestamp_ms}")

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
