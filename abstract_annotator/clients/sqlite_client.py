"""SQLite-backed flat key-value store with cross-context change notification."""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Writes to keys with these prefixes are announced to other contexts
NOTIFY_PREFIXES = ("file-data-", "annotation-")

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


@dataclass(frozen=True)
class StorageChange:
    """A write observed on a shared key-value store."""

    key: str
    deleted: bool


class ChangeFeed:
    """Delivers key changes from one context to the listeners of all others.

    Several clients opened on the same database share one feed. A client
    never hears about its own writes, mirroring how browser tabs only receive
    storage events fired by other tabs.
    """

    def __init__(self):
        self._listeners: list[tuple[int, Callable[[StorageChange], None]]] = []

    def subscribe(self, origin: int, listener: Callable[[StorageChange], None]) -> Callable[[], None]:
        """Register a listener for changes made outside ``origin``.

        Returns:
            A callable that removes the listener.
        """
        entry = (origin, listener)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def publish(self, origin: int, change: StorageChange) -> None:
        """Notify every listener not registered by ``origin``."""
        if not change.key.startswith(NOTIFY_PREFIXES):
            return
        for listener_origin, listener in list(self._listeners):
            if listener_origin == origin:
                continue
            try:
                listener(change)
            except Exception:
                logger.exception(f"Change listener failed for key {change.key}")


class SqliteKeyValueClient:
    """SQLite key-value client with connection management.

    Every call is a single statement committed immediately: writes are
    durable, but no multi-key transaction is offered to callers.
    """

    def __init__(self, connection_string: str, change_feed: Optional[ChangeFeed] = None):
        self.connection_string = connection_string
        self._connection = sqlite3.connect(self.connection_string, check_same_thread=False)
        self._change_feed = change_feed or ChangeFeed()
        self.execute_query(CREATE_TABLE_SQL)

    def execute_query(self, query: str, params=None):
        """Execute a query and return all results."""
        cursor = self._connection.cursor()
        if params:
            cursor.execute(query, params)
        else:
            cursor.execute(query)

        # Commit for write operations
        if query.strip().upper().startswith(("INSERT", "UPDATE", "DELETE", "CREATE")):
            self._connection.commit()

        results = cursor.fetchall()
        cursor.close()
        return results

    def get(self, key: str) -> Optional[str]:
        """Return the raw value stored under ``key`` or None."""
        result = self.execute_query("SELECT value FROM kv_store WHERE key = ?", (key,))
        if not result:
            return None
        return result[0][0]

    def put(self, key: str, value: str) -> None:
        """Insert or overwrite ``key``."""
        self.execute_query(
            "INSERT INTO kv_store (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        logger.debug(f"Stored key {key}")
        self._change_feed.publish(id(self), StorageChange(key=key, deleted=False))

    def delete(self, key: str) -> bool:
        """Remove ``key``; returns False if it was absent."""
        cursor = self._connection.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        self._connection.commit()
        removed = cursor.rowcount > 0
        cursor.close()
        if removed:
            logger.debug(f"Removed key {key}")
            self._change_feed.publish(id(self), StorageChange(key=key, deleted=True))
        return removed

    def keys_with_prefix(self, prefix: str) -> list[str]:
        """List keys starting with ``prefix`` in key order."""
        rows = self.execute_query(
            "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        )
        return [row[0] for row in rows]

    def subscribe(self, listener: Callable[[StorageChange], None]) -> Callable[[], None]:
        """Listen for changes written by other clients sharing the feed."""
        return self._change_feed.subscribe(id(self), listener)

    def close(self):
        """Close the database connection."""
        self._connection.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.close()
        return False
