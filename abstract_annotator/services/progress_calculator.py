"""Progress accounting for annotated documents.

A document's progress is derived by scanning every position for a stored
answer. The result is cached on the document as ``progress_percent`` and
rewritten after every annotation write, always under the document lock.
"""

import asyncio
import logging
import math
from typing import Optional

from ..errors import NotFoundError, OperationTimeoutError, ValidationError
from ..models import AnnotationStats, Document, ProgressReport
from .annotation_store import AnnotationStore
from .locking import Deadline
from .traversal import iter_positions

logger = logging.getLogger(__name__)


def total_steps(document: Document) -> int:
    """Number of questions: one per sentence plus one per entity."""
    return sum(
        1 + len(sentence.entities)
        for abstract in document.abstracts
        for sentence in abstract.sentences
    )


def round1(value: float) -> float:
    """Round half-up to one decimal place."""
    return math.floor(value * 10 + 0.5) / 10


def progress_percent(completed: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round1(100 * completed / total)


class ProgressCalculator:
    """Derives completion figures from the annotation store."""

    def __init__(self, store: AnnotationStore):
        self._store = store

    async def completed_steps(self, document: Document, deadline: Optional[Deadline] = None) -> int:
        """
        Count answered positions of ``document``.

        Args:
            document: Document to scan.
            deadline: Budget for the scan; defaults to the lock timeout.

        Returns:
            Number of positions holding a non-empty answer.

        Raises:
            OperationTimeoutError: If the scan outlives the deadline. Progress
                is then unknown and must not be reported.
        """
        deadline = deadline or self._store.locks.new_deadline()
        completed = 0
        current_sentence = None
        for position in iter_positions(document):
            sentence_key = (position.abstract_index, position.sentence_index)
            if sentence_key != current_sentence:
                current_sentence = sentence_key
                deadline.check(f"Progress scan of document {document.id}")
                # Let other pending operations run between sentences
                await asyncio.sleep(0)
            record = await self._store.get_annotation(document.id, position)
            if record is not None and record.answer_tag:
                completed += 1
        return completed

    async def recompute_locked(self, document_id: str, deadline: Deadline) -> ProgressReport:
        """Recompute and store progress; the caller must hold the document lock."""
        document = await self._store.get_document(document_id)
        completed = await self.completed_steps(document, deadline)
        total = total_steps(document)
        percent = progress_percent(completed, total)
        await self._store.put_document(document.with_progress(percent))
        logger.debug(f"Progress of {document_id}: {completed}/{total} ({percent}%)")
        return ProgressReport(
            document_id=document_id,
            completed_steps=completed,
            total_steps=total,
            progress_percent=percent,
        )

    async def compute_progress(self, document_id: str) -> ProgressReport:
        """Recompute progress for one document under its lock."""
        async with self._store.locks.hold(document_id) as deadline:
            return await self.recompute_locked(document_id, deadline)

    async def calculate_stats(self) -> AnnotationStats:
        """
        Aggregate statistics over every stored document.

        A document that cannot be loaded or whose progress cannot be computed
        is logged and left out of the totals instead of failing the whole
        aggregation. Lock holders older than the stale threshold are reported
        first.
        """
        self._store.locks.sweep_stale()

        total_sentences = 0
        total_entities = 0
        completed_annotations = 0
        completed_files = 0
        failed = 0

        for document_id in await self._store.list_document_ids():
            try:
                document = await self._store.get_document(document_id)
                report = await self.compute_progress(document_id)
            except (OperationTimeoutError, NotFoundError, ValidationError) as e:
                logger.warning(f"Skipping document {document_id} in statistics: {e}")
                failed += 1
                continue

            for abstract in document.abstracts:
                total_sentences += len(abstract.sentences)
                total_entities += sum(len(sentence.entities) for sentence in abstract.sentences)
            completed_annotations += report.completed_steps
            if report.is_complete:
                completed_files += 1

        return AnnotationStats(
            total_sentences=total_sentences,
            total_entities=total_entities,
            total_annotations=total_sentences + total_entities,
            completed_annotations=completed_annotations,
            completed_files=completed_files,
            failed_documents=failed,
        )
