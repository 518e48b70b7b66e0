"""Annotation service: ingest, annotate, reset, delete and export documents.

All read-modify-write sequences on a document run under that document's
lock with a single operation deadline, so same-context callers never see
each other's half-finished writes.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Union

from ..clients import ChangeFeed, SqliteKeyValueClient
from ..config import AppConfig
from ..errors import OperationTimeoutError, ValidationError
from ..models import AnnotationStats, Document, Position, ProgressReport
from .annotation_store import AnnotationStore
from .locking import LockRegistry
from .progress_calculator import ProgressCalculator, total_steps
from .schema_validator import load_upload, parse_document_collection
from .traversal import AnnotationSession, iter_positions, require_position

logger = logging.getLogger(__name__)


def export_file_name(name: str) -> str:
    """Name for the exported file: ``abstracts.json`` → ``abstracts_annotated.json``."""
    if name.lower().endswith(".json"):
        return f"{name[:-5]}_annotated.json"
    return f"{name}_annotated.json"


class AnnotationService:
    """Service for managing annotated documents in one context."""

    def __init__(self, store: AnnotationStore):
        """Initialize the annotation service.

        Args:
            store: Annotation store for this context.
        """
        self._store = store
        self._progress = ProgressCalculator(store)
        self._client: Optional[SqliteKeyValueClient] = None

    @classmethod
    def from_config(cls, config: AppConfig, change_feed: Optional[ChangeFeed] = None) -> "AnnotationService":
        """Open the configured database as a new context."""
        client = SqliteKeyValueClient(config.storage.path, change_feed)
        locks = LockRegistry(
            poll_interval=config.lock.poll_interval,
            timeout=config.lock.operation_timeout,
            stale_after=config.lock.stale_after,
        )
        service = cls(AnnotationStore(client, locks))
        service._client = client
        return service

    @property
    def store(self) -> AnnotationStore:
        return self._store

    @property
    def progress(self) -> ProgressCalculator:
        return self._progress

    # --- ingest ---

    async def ingest(self, abstracts_data: Any, file_name: str) -> Document:
        """
        Validate and store an uploaded abstract collection.

        Args:
            abstracts_data: Parsed JSON list of abstracts.
            file_name: Name the document is listed under.

        Returns:
            The stored document with progress 0.

        Raises:
            ValidationError: If the collection is malformed; nothing is stored.
        """
        abstracts = parse_document_collection(abstracts_data)
        return await self._store_new_document(abstracts, file_name)

    async def ingest_upload(self, raw_text: str, file_name: str) -> Document:
        """Ingest the raw contents of an uploaded ``.json`` file."""
        abstracts = load_upload(raw_text, file_name)
        return await self._store_new_document(abstracts, file_name)

    async def _store_new_document(self, abstracts, file_name: str) -> Document:
        document = Document(
            id=f"file-{uuid.uuid4().hex}",
            name=file_name,
            abstracts=abstracts,
            upload_timestamp=datetime.now(timezone.utc),
            progress_percent=0.0,
            total_steps=0,
        )
        document = replace(document, total_steps=total_steps(document))
        await self._store.put_document(document)
        logger.info(f"Ingested {file_name} as {document.id} with {document.total_steps} questions")
        return document

    # --- queries ---

    async def get_document(self, document_id: str) -> Document:
        return await self._store.get_document(document_id)

    async def list_documents(self) -> List[Document]:
        """All stored documents, most recently uploaded first."""
        documents = await self._store.list_documents()
        return sorted(documents, key=lambda document: document.upload_timestamp, reverse=True)

    async def compute_progress(self, document_id: str) -> ProgressReport:
        return await self._progress.compute_progress(document_id)

    async def calculate_stats(self) -> AnnotationStats:
        return await self._progress.calculate_stats()

    async def open_session(self, document_id: str) -> AnnotationSession:
        """Load or resume annotation of a document."""
        return await AnnotationSession.open(self, document_id)

    # --- mutations ---

    async def save_annotation(
        self,
        document_id: str,
        abstract_index: int,
        sentence_index: int,
        entity_index: int,
        answer_tag: Union[str, Enum],
    ) -> ProgressReport:
        """
        Save an answer and recompute the document's progress atomically.

        Args:
            document_id: Document being annotated.
            abstract_index: Abstract of the question.
            sentence_index: Sentence of the question.
            entity_index: Entity of the question, -1 for the sentence itself.
            answer_tag: A label from the vocabulary of the question's level.

        Returns:
            The recomputed progress.

        Raises:
            ValidationError: If the tag is not in the vocabulary.
            NotFoundError: If the document or position does not exist.
            OperationTimeoutError: If the lock or the scan exceeds the deadline.
        """
        position = Position(document_id, abstract_index, sentence_index, entity_index)
        tag = self._validate_tag(position, answer_tag)

        async with self._store.locks.hold(document_id) as deadline:
            document = await self._store.get_document(document_id)
            require_position(document, position)
            previous = await self._store.get_annotation(document_id, position)
            await self._store.put_annotation(document_id, position, tag)
            try:
                report = await self._progress.recompute_locked(document_id, deadline)
            except OperationTimeoutError:
                # Cached progress was not rewritten, so the answer must not stay either
                await self._store.restore_annotation(document_id, position, previous)
                logger.warning(f"Rolled back answer at {position}: progress recompute timed out")
                raise

        logger.debug(f"Saved {tag!r} at {position}")
        return report

    @staticmethod
    def _validate_tag(position: Position, answer_tag: Union[str, Enum]) -> str:
        tag = answer_tag.value if isinstance(answer_tag, Enum) else answer_tag
        labels = position.labels()
        if tag not in {label.value for label in labels}:
            raise ValidationError(f"{tag!r} is not a valid {labels.__name__}")
        return tag

    async def reset_document(self, document_id: str) -> Document:
        """Clear every answer and the saved position so the document can be re-annotated."""
        async with self._store.locks.hold(document_id) as deadline:
            document = await self._store.get_document(document_id)
            removed = 0
            for position in iter_positions(document):
                deadline.check(f"Reset of document {document_id}")
                if await self._store.delete_annotation(document_id, position):
                    removed += 1
            await self._store.delete_last_position(document_id)
            document = document.with_progress(0.0)
            await self._store.put_document(document)

        logger.info(f"Reset document {document_id}, cleared {removed} annotations")
        return document

    async def delete_document(self, document_id: str) -> None:
        """Delete a document and everything recorded for it."""
        async with self._store.locks.hold(document_id):
            await self._store.delete_document(document_id)

    # --- export ---

    async def export(self, document_id: str) -> dict:
        """
        Build the export payload for a document.

        Every sentence and entity appears exactly once; questions without an
        answer carry ``None``.
        """
        document = await self._store.get_document(document_id)

        async def tag_at(a_idx: int, s_idx: int, e_idx: int) -> Optional[str]:
            record = await self._store.get_annotation(document_id, Position(document_id, a_idx, s_idx, e_idx))
            return record.answer_tag if record is not None and record.answer_tag else None

        abstracts = []
        for a_idx, abstract in enumerate(document.abstracts):
            sentences = []
            for s_idx, sentence in enumerate(abstract.sentences):
                sentences.append({
                    "code": sentence.code,
                    "text": sentence.text,
                    "sentence_answer_tag": await tag_at(a_idx, s_idx, -1),
                    "entities": [
                        {"text": entity.text, "answer_tag": await tag_at(a_idx, s_idx, e_idx)}
                        for e_idx, entity in enumerate(sentence.entities)
                    ],
                })
            abstracts.append({"code": abstract.code, "text": abstract.text, "sentences": sentences})

        logger.info(f"Exported document {document_id}")
        return {
            "file_name": document.name,
            "export_file_name": export_file_name(document.name),
            "export_timestamp": datetime.now(timezone.utc).isoformat(),
            "abstracts": abstracts,
        }

    def close(self) -> None:
        """Close the database connection opened by ``from_config``."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.close()
        return False
