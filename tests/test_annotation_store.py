"""Tests for the annotation store.

These tests verify:
- Documents, annotations and last positions round-trip through the store
- The documented key layout
- Cascading deletes
- Strict parsing of stored values
"""

import json
import os
import tempfile
from datetime import datetime, timezone

import pytest

from abstract_annotator.clients import SqliteKeyValueClient
from abstract_annotator.errors import NotFoundError, ValidationError
from abstract_annotator.models import Abstract, Document, Entity, Position, Sentence
from abstract_annotator.services.annotation_store import AnnotationStore


def make_document(document_id: str = "file-1") -> Document:
    return Document(
        id=document_id,
        name="papers.json",
        abstracts=(
            Abstract(
                code="P1",
                text="Abstract one.",
                sentences=(
                    Sentence(code="P1-S1", text="First.", entities=(Entity("alpha"), Entity("beta"))),
                    Sentence(code="P1-S2", text="Second.", entities=()),
                ),
            ),
        ),
        upload_timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        progress_percent=0.0,
        total_steps=4,
    )


class TestAnnotationStore:
    """Test AnnotationStore functionality."""

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

    @pytest.fixture
    def store(self, client):
        return AnnotationStore(client)

    @pytest.mark.asyncio
    async def test_document_round_trip(self, store, client):
        """Test that a stored document reads back equal."""
        document = make_document()
        await store.put_document(document)

        assert await store.get_document("file-1") == document
        assert client.get("file-data-file-1") is not None

    @pytest.mark.asyncio
    async def test_get_missing_document(self, store):
        """Test that a missing document raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.get_document("file-404")

    @pytest.mark.asyncio
    async def test_annotation_key_layout(self, store, client):
        """Test annotation keys, including the sentence-level -1 index."""
        await store.put_annotation("file-1", Position("file-1", 0, 0, -1), "Methods/Approach")
        await store.put_annotation("file-1", Position("file-1", 0, 0, 1), "Agent/Subject")

        assert json.loads(client.get("annotation-file-1-0-0--1"))["answer_tag"] == "Methods/Approach"
        assert json.loads(client.get("annotation-file-1-0-0-1"))["answer_tag"] == "Agent/Subject"

    @pytest.mark.asyncio
    async def test_annotation_overwrite(self, store):
        """Test that re-answering overwrites the record at the same key."""
        position = Position("file-1", 0, 0, 0)
        await store.put_annotation("file-1", position, "Agent/Subject")
        record = await store.put_annotation("file-1", position, "Outcome/Effect")

        stored = await store.get_annotation("file-1", position)
        assert stored.answer_tag == "Outcome/Effect"
        assert stored.timestamp == record.timestamp
        assert stored.position == position

    @pytest.mark.asyncio
    async def test_missing_annotation_is_none(self, store):
        """Test that unanswered positions read as None."""
        assert await store.get_annotation("file-1", Position("file-1", 0, 0, 0)) is None

    @pytest.mark.asyncio
    async def test_last_position_round_trip(self, store, client):
        """Test saving, reading and deleting the last position."""
        position = Position("file-1", 0, 1, -1)
        await store.put_last_position("file-1", position)

        last = await store.get_last_position("file-1")
        assert last.position == position
        assert json.loads(client.get("last-position-file-1")) == {
            "abstract_index": 0,
            "sentence_index": 1,
            "entity_index": -1,
        }

        assert await store.delete_last_position("file-1") is True
        assert await store.get_last_position("file-1") is None

    @pytest.mark.asyncio
    async def test_delete_document_cascades(self, store, client):
        """Test that deleting a document removes its annotations and last position."""
        await store.put_document(make_document("file-1"))
        await store.put_document(make_document("file-2"))
        await store.put_annotation("file-1", Position("file-1", 0, 0, -1), "Not sure")
        await store.put_annotation("file-1", Position("file-1", 0, 1, -1), "Not sure")
        await store.put_annotation("file-2", Position("file-2", 0, 0, -1), "Not sure")
        await store.put_last_position("file-1", Position("file-1", 0, 1, -1))

        await store.delete_document("file-1")

        assert client.keys_with_prefix("annotation-file-1-") == []
        assert client.get("last-position-file-1") is None
        assert client.get("file-data-file-1") is None
        assert client.get("annotation-file-2-0-0--1") is not None

    @pytest.mark.asyncio
    async def test_delete_missing_document(self, store):
        """Test deleting an unknown document raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await store.delete_document("file-404")

    @pytest.mark.asyncio
    async def test_list_documents(self, store):
        """Test listing every stored document."""
        await store.put_document(make_document("file-1"))
        await store.put_document(make_document("file-2"))

        ids = [document.id for document in await store.list_documents()]
        assert ids == ["file-1", "file-2"]

    @pytest.mark.asyncio
    async def test_malformed_document_raises_validation_error(self, store, client):
        """Test that stored documents are parsed strictly."""
        client.put("file-data-file-1", json.dumps({"id": "file-1", "name": "x"}))

        with pytest.raises(ValidationError, match="malformed"):
            await store.get_document("file-1")

    @pytest.mark.asyncio
    async def test_invalid_json_raises_validation_error(self, store, client):
        """Test that undecodable stored values are rejected."""
        client.put("annotation-file-1-0-0--1", "{not json")

        with pytest.raises(ValidationError, match="not valid JSON"):
            await store.get_annotation("file-1", Position("file-1", 0, 0, -1))

    @pytest.mark.asyncio
    async def test_malformed_last_position(self, store, client):
        """Test that last positions need integer indexes."""
        client.put("last-position-file-1", json.dumps({
            "abstract_index": "0",
            "sentence_index": 0,
            "entity_index": -1,
        }))

        with pytest.raises(ValidationError, match="non-integer"):
            await store.get_last_position("file-1")
