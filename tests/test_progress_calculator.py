"""Tests for progress accounting.

These tests verify:
- Step counting over sentences and entities
- Half-up rounding to one decimal and the zero-step guard
- Recomputing and caching progress on the document
- Scan deadlines and degraded aggregate statistics
"""

import logging
import os
import tempfile

import pytest

from abstract_annotator.clients import SqliteKeyValueClient
from abstract_annotator.errors import OperationTimeoutError
from abstract_annotator.models import Position
from abstract_annotator.services import AnnotationService, AnnotationStore
from abstract_annotator.services.locking import Deadline, LockRegistry
from abstract_annotator.services.progress_calculator import progress_percent, round1, total_steps


def abstracts_with(*entity_counts):
    """One abstract with a sentence per entry, each with the given number of entities."""
    return [
        {
            "code": "P1",
            "text": "Abstract.",
            "sentences": [
                {
                    "code": f"S{s_idx}",
                    "text": f"Sentence {s_idx}.",
                    "entities": [{"text": f"e{e_idx}"} for e_idx in range(count)],
                }
                for s_idx, count in enumerate(entity_counts)
            ],
        }
    ]


class TestPureFunctions:
    """Test step counting and rounding."""

    def test_round1_half_up(self):
        """Test rounding to one decimal, halves going up."""
        assert round1(33.333) == 33.3
        assert round1(66.666) == 66.7
        assert round1(12.25) == 12.3
        assert round1(100.0) == 100.0

    def test_progress_percent_zero_total(self):
        """Test that documents without steps report 0 instead of failing."""
        assert progress_percent(0, 0) == 0.0

    def test_progress_percent(self):
        """Test percentage computation."""
        assert progress_percent(1, 3) == 33.3
        assert progress_percent(3, 3) == 100.0


class TestProgressCalculator:
    """Test ProgressCalculator against a real store."""

    @pytest.fixture
    def temp_db_path(self):
        """Create a temporary database file for testing."""
        fd, path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        yield path
        if os.path.exists(path):
            os.remove(path)

    @pytest.fixture
    def service(self, temp_db_path):
        client = SqliteKeyValueClient(temp_db_path)
        service = AnnotationService(AnnotationStore(client, LockRegistry(poll_interval=0.01, timeout=1.0)))
        yield service
        client.close()

    @pytest.mark.asyncio
    async def test_total_steps_single_sentence(self, service):
        """Test that one sentence without entities is one step."""
        document = await service.ingest(abstracts_with(0), "one.json")
        assert total_steps(document) == 1
        assert document.total_steps == 1

    @pytest.mark.asyncio
    async def test_total_steps_counts_entities(self, service):
        """Test that each sentence contributes one plus its entities."""
        document = await service.ingest(abstracts_with(2, 0, 3), "many.json")
        assert total_steps(document) == 3 + 1 + 4

    @pytest.mark.asyncio
    async def test_total_steps_no_sentences(self, service):
        """Test that a document without sentences has zero steps and 0%."""
        document = await service.ingest([{"code": "P1", "text": "Empty.", "sentences": []}], "empty.json")

        report = await service.compute_progress(document.id)

        assert document.total_steps == 0
        assert report.progress_percent == 0.0

    @pytest.mark.asyncio
    async def test_compute_progress_caches_on_document(self, service):
        """Test that recomputed progress is written back to the document."""
        document = await service.ingest(abstracts_with(2), "doc.json")
        await service.store.put_annotation(document.id, Position(document.id, 0, 0, -1), "Not sure")

        report = await service.compute_progress(document.id)

        assert report.completed_steps == 1
        assert report.total_steps == 3
        assert report.progress_percent == 33.3
        assert (await service.get_document(document.id)).progress_percent == 33.3

    @pytest.mark.asyncio
    async def test_empty_answer_does_not_count(self, service):
        """Test that records without an answer tag are not completed steps."""
        document = await service.ingest(abstracts_with(0, 0), "doc.json")
        await service.store.put_annotation(document.id, Position(document.id, 0, 0, -1), "")

        report = await service.compute_progress(document.id)

        assert report.completed_steps == 0

    @pytest.mark.asyncio
    async def test_scan_deadline(self, service):
        """Test that an expired deadline fails the scan instead of reporting a value."""
        document = await service.ingest(abstracts_with(1, 1), "doc.json")

        with pytest.raises(OperationTimeoutError):
            await service.progress.completed_steps(document, Deadline.start(0.0))

    @pytest.mark.asyncio
    async def test_compute_progress_waits_for_lock(self, service):
        """Test that progress computation times out while another caller holds the lock."""
        document = await service.ingest(abstracts_with(1), "doc.json")
        service.store.locks.try_acquire(document.id)

        with pytest.raises(OperationTimeoutError):
            await service.compute_progress(document.id)

        service.store.locks.release(document.id)

    @pytest.mark.asyncio
    async def test_stats_aggregate(self, service):
        """Test aggregate statistics across documents."""
        done = await service.ingest(abstracts_with(1), "done.json")
        partial = await service.ingest(abstracts_with(0, 2), "partial.json")
        await service.save_annotation(done.id, 0, 0, -1, "Not sure")
        await service.save_annotation(done.id, 0, 0, 0, "Not sure")
        await service.save_annotation(partial.id, 0, 1, -1, "Not sure")

        stats = await service.calculate_stats()

        assert stats.total_sentences == 3
        assert stats.total_entities == 3
        assert stats.total_annotations == 6
        assert stats.completed_annotations == 3
        assert stats.completed_files == 1
        assert stats.failed_documents == 0

    @pytest.mark.asyncio
    async def test_stats_degrade_on_locked_document(self, service):
        """Test that a document whose progress times out contributes zero."""
        free = await service.ingest(abstracts_with(1), "free.json")
        stuck = await service.ingest(abstracts_with(5), "stuck.json")
        await service.save_annotation(free.id, 0, 0, -1, "Not sure")
        service.store.locks.try_acquire(stuck.id)

        stats = await service.calculate_stats()

        assert stats.failed_documents == 1
        assert stats.total_sentences == 1
        assert stats.total_entities == 1
        assert stats.completed_annotations == 1
        service.store.locks.release(stuck.id)

    @pytest.mark.asyncio
    async def test_stats_skip_malformed_document(self, service, temp_db_path):
        """Test that an unreadable stored document is counted as failed, not fatal."""
        valid = await service.ingest(abstracts_with(2), "valid.json")
        await service.save_annotation(valid.id, 0, 0, -1, "Not sure")
        with SqliteKeyValueClient(temp_db_path) as other:
            other.put("file-data-broken", "{not json")

        stats = await service.calculate_stats()

        assert stats.failed_documents == 1
        assert stats.total_sentences == 1
        assert stats.total_entities == 2
        assert stats.completed_annotations == 1
        assert stats.completed_files == 0

    @pytest.mark.asyncio
    async def test_stats_report_stale_locks(self, temp_db_path, caplog):
        """Test that statistics log holders past the stale threshold without releasing them."""
        client = SqliteKeyValueClient(temp_db_path)
        locks = LockRegistry(poll_interval=0.01, timeout=0.2, stale_after=0.0)
        service = AnnotationService(AnnotationStore(client, locks))
        locks.try_acquire("file-orphan")

        with caplog.at_level(logging.WARNING, logger="abstract_annotator.services.locking"):
            stats = await service.calculate_stats()

        assert "Lock on file-orphan held" in caplog.text
        assert locks.is_held("file-orphan")
        assert stats.failed_documents == 0
        client.close()
