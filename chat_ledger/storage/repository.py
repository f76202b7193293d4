"""
Repository pattern for data access.

A small persistent key-value store (the local counterpart of browser
storage) plus typed repositories for the values kept in it: usage stats,
the selected model, and cached conversations.

Values are JSON text. There is no schema versioning; records written by an
incompatible version are not migrated.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    CONVERSATION_KEY_PREFIX,
    SELECTED_MODEL_KEY,
    USAGE_STATS_KEY,
    UsageStats,
    conversation_key,
)

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """String-to-string persistent store."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the kv_store table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class SqliteKeyValueStore:
    """Key-value store persisted in a SQLite table.

    Writes are last-write-wins; there is no locking between processes.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store, creating the table when needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        initialize_schema(db_path)

    def get(self, key: str) -> Optional[str]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at
            """, (key, value, datetime.now(timezone.utc).isoformat()))
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def keys(self, prefix: str = "") -> List[str]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()


class InMemoryKeyValueStore:
    """Process-local store for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


def _load_json(store: KeyValueStore, key: str) -> Optional[Any]:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable value stored under %r", key)
        return None


class UsageStatsRepository:
    """Loads and saves UsageStats under the fixed usage key."""

    def __init__(self, store: KeyValueStore, key: str = USAGE_STATS_KEY):
        self.store = store
        self.key = key

    def load(self) -> UsageStats:
        """Return the stored stats, or empty stats if none are stored or readable."""
        data = _load_json(self.store, self.key)
        if not isinstance(data, dict):
            return UsageStats()
        try:
            return UsageStats.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to load usage stats: %s", e)
            return UsageStats()

    def save(self, stats: UsageStats) -> None:
        self.store.set(self.key, json.dumps(stats.to_dict()))


class SelectedModelRepository:
    """Remembers the model the user last chose."""

    def __init__(self, store: KeyValueStore, default_model: str):
        self.store = store
        self.default_model = default_model

    def load(self) -> str:
        return self.store.get(SELECTED_MODEL_KEY) or self.default_model

    def save(self, model: str) -> None:
        if not model or not model.strip():
            raise ValueError("model cannot be empty")
        self.store.set(SELECTED_MODEL_KEY, model)


class ConversationRepository:
    """Locally cached message lists, one key per conversation."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self, conversation_id: str) -> List[Dict[str, Any]]:
        data = _load_json(self.store, conversation_key(conversation_id))
        return data if isinstance(data, list) else []

    def save(self, conversation_id: str, messages: List[Dict[str, Any]]) -> None:
        self.store.set(conversation_key(conversation_id), json.dumps(messages))

    def delete(self, conversation_id: str) -> None:
        self.store.delete(conversation_key(conversation_id))

    def list_ids(self) -> List[str]:
        return [key[len(CONVERSATION_KEY_PREFIX):] for key in self.store.keys(CONVERSATION_KEY_PREFIX)]
