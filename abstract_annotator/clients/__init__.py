"""Client modules for durable storage."""

from abstract_annotator.clients.sqlite_client import (
    ChangeFeed,
    SqliteKeyValueClient,
    StorageChange,
)

__all__ = [
    "ChangeFeed",
    "SqliteKeyValueClient",
    "StorageChange",
]
