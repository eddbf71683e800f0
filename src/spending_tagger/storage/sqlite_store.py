import json
import logging
import threading
from typing import Any, List, Optional

from spending_tagger.storage.base import KeyValueStore
from spending_tagger.storage.connection import DatabaseManager
from spending_tagger.utils.timestamps import isoformat, utc_now

logger = logging.getLogger(__name__)


class SQLiteKeyValueStore(KeyValueStore):
    """
    SQLite implementation of the KeyValueStore.

    One row per key in the `kv_store` table, values stored as JSON text.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self._lock = threading.Lock()
        self.db.initialize_schema()

    def get(self, key: str) -> Optional[Any]:
        """Retrieve a value, or None if missing or corrupt"""
        with self._lock:
            conn = self.db.get_connection()
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?",
                (key,)
            ).fetchone()

        if row is None:
            return None

        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            logger.warning("Stored value for '%s' is corrupt, ignoring it: %s", key, e)
            return None

    def set(self, key: str, value: Any) -> None:
        """Insert or replace a value"""
        raw = json.dumps(value)
        with self._lock, self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, raw, isoformat(utc_now())),
            )

    def delete(self, key: str) -> bool:
        with self._lock, self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def keys(self) -> List[str]:
        with self._lock:
            conn = self.db.get_connection()
            rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row["key"] for row in rows]

    def __repr__(self) -> str:
        return f"SQLiteKeyValueStore({self.db.config.db_path})"
