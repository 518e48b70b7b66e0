"""Tests for the SQLite key-value client and change feed."""

import os
import tempfile

import pytest

from abstract_annotator.clients import ChangeFeed, SqliteKeyValueClient, StorageChange


class TestSqliteKeyValueClient:
    """Test single-key operations."""

    @pytest.fixture
    def temp_db_path(self):
        """Create a temporary database file for testing."""
        fd, path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        yield path
        # Cleanup
        if os.path.exists(path):
            os.remove(path)

    @pytest.fixture
    def client(self, temp_db_path):
        client = SqliteKeyValueClient(temp_db_path)
        yield client
        client.close()

    def test_get_missing_key(self, client):
        """Test that absent keys read as None."""
        assert client.get("file-data-missing") is None

    def test_put_and_overwrite(self, client):
        """Test that put inserts and then overwrites the same key."""
        client.put("annotation-a-0-0--1", "first")
        client.put("annotation-a-0-0--1", "second")

        assert client.get("annotation-a-0-0--1") == "second"

    def test_delete(self, client):
        """Test deleting present and absent keys."""
        client.put("last-position-a", "{}")

        assert client.delete("last-position-a") is True
        assert client.delete("last-position-a") is False
        assert client.get("last-position-a") is None

    def test_keys_with_prefix(self, client):
        """Test prefix listing matches the exact prefix only."""
        client.put("file-data-a", "1")
        client.put("file-data-b", "2")
        client.put("file_data_c", "3")
        client.put("annotation-a-0-0--1", "4")

        assert client.keys_with_prefix("file-data-") == ["file-data-a", "file-data-b"]
        assert client.keys_with_prefix("file_data_") == ["file_data_c"]

    def test_writes_are_durable(self, temp_db_path):
        """Test that a second connection sees committed writes."""
        with SqliteKeyValueClient(temp_db_path) as writer:
            writer.put("file-data-a", "value")

        with SqliteKeyValueClient(temp_db_path) as reader:
            assert reader.get("file-data-a") == "value"


class TestChangeFeed:
    """Test cross-context change notification."""

    @pytest.fixture
    def temp_db_path(self):
        fd, path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        yield path
        if os.path.exists(path):
            os.remove(path)

    def test_other_context_is_notified(self, temp_db_path):
        """Test that writes reach listeners of other clients only."""
        feed = ChangeFeed()
        first = SqliteKeyValueClient(temp_db_path, feed)
        second = SqliteKeyValueClient(temp_db_path, feed)
        seen_by_first = []
        seen_by_second = []
        first.subscribe(seen_by_first.append)
        second.subscribe(seen_by_second.append)

        first.put("annotation-a-0-0--1", "{}")
        first.delete("annotation-a-0-0--1")

        assert seen_by_first == []
        assert seen_by_second == [
            StorageChange(key="annotation-a-0-0--1", deleted=False),
            StorageChange(key="annotation-a-0-0--1", deleted=True),
        ]
        first.close()
        second.close()

    def test_last_position_writes_are_not_announced(self, temp_db_path):
        """Test that only document and annotation keys are announced."""
        feed = ChangeFeed()
        writer = SqliteKeyValueClient(temp_db_path, feed)
        reader = SqliteKeyValueClient(temp_db_path, feed)
        seen = []
        reader.subscribe(seen.append)

        writer.put("last-position-a", "{}")
        writer.put("file-data-a", "{}")

        assert [change.key for change in seen] == ["file-data-a"]
        writer.close()
        reader.close()

    def test_unsubscribe_and_failing_listener(self, temp_db_path):
        """Test that a failing listener does not break the write."""
        feed = ChangeFeed()
        writer = SqliteKeyValueClient(temp_db_path, feed)
        reader = SqliteKeyValueClient(temp_db_path, feed)
        seen = []

        def broken(change):
            raise RuntimeError("listener bug")

        reader.subscribe(broken)
        unsubscribe = reader.subscribe(seen.append)

        writer.put("file-data-a", "1")
        unsubscribe()
        writer.put("file-data-a", "2")

        assert writer.get("file-data-a") == "2"
        assert len(seen) == 1
        writer.close()
        reader.close()
