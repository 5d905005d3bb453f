import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path


def _utc_now_iso():
    return datetime.now(timezone.utc).isoformat()


class SQLiteKeyValueStore:
    """SQLite-backed durable store for serialized documents keyed by a namespaced name."""

    def __init__(self, db_path):
        self.db_path = Path(db_path)
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                key TEXT PRIMARY KEY,
                payload TEXT,
                updated_at TEXT
            )
            """
        )
        self._conn.commit()

    def load(self, key):
        with self._lock:
            row = self._conn.execute("SELECT payload FROM documents WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def save(self, key, payload):
        now = _utc_now_iso()
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO documents (key, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    payload=excluded.payload,
                    updated_at=excluded.updated_at
                """,
                (key, payload, now),
            )
            self._conn.commit()

    def delete(self, key):
        with self._lock:
            self._conn.execute("DELETE FROM documents WHERE key = ?", (key,))
            self._conn.commit()

    def close(self):
        with self._lock:
            self._conn.close()
