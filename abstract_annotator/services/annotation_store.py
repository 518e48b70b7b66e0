"""Annotation store over the flat key-value namespace.

Key layout (internal to this module):

    file-data-{document_id}                     serialized Document
    last-position-{document_id}                 serialized LastPosition
    annotation-{document_id}-{a}-{s}-{e}        serialized AnnotationRecord

Each method is a single key read or write, except ``delete_document`` which
is a sequence of single-key deletes. Nothing here is atomic across keys;
callers serialize read-modify-write sequences through ``locks``.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..clients import SqliteKeyValueClient, StorageChange
from ..errors import NotFoundError, ValidationError
from ..models import (
    Abstract,
    AnnotationRecord,
    Document,
    Entity,
    LastPosition,
    Position,
    Sentence,
)
from .locking import LockRegistry

logger = logging.getLogger(__name__)

DOCUMENT_PREFIX = "file-data-"
LAST_POSITION_PREFIX = "last-position-"
ANNOTATION_PREFIX = "annotation-"


def document_key(document_id: str) -> str:
    return f"{DOCUMENT_PREFIX}{document_id}"


def last_position_key(document_id: str) -> str:
    return f"{LAST_POSITION_PREFIX}{document_id}"


def annotation_key(document_id: str, position: Position) -> str:
    return (
        f"{ANNOTATION_PREFIX}{document_id}-{position.abstract_index}"
        f"-{position.sentence_index}-{position.entity_index}"
    )


# --- Serialization ---


def _document_to_json(document: Document) -> str:
    return json.dumps({
        "id": document.id,
        "name": document.name,
        "upload_timestamp": document.upload_timestamp.isoformat(),
        "progress_percent": document.progress_percent,
        "total_steps": document.total_steps,
        "abstracts": [
            {
                "code": abstract.code,
                "text": abstract.text,
                "sentences": [
                    {
                        "code": sentence.code,
                        "text": sentence.text,
                        "entities": [{"text": entity.text} for entity in sentence.entities],
                    }
                    for sentence in abstract.sentences
                ],
            }
            for abstract in document.abstracts
        ],
    })


def _load_json(key: str, raw: str) -> dict:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Stored value for {key} is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise ValidationError(f"Stored value for {key} is not an object")
    return value


def _document_from_json(key: str, raw: str) -> Document:
    value = _load_json(key, raw)
    try:
        return Document(
            id=str(value["id"]),
            name=str(value["name"]),
            upload_timestamp=datetime.fromisoformat(value["upload_timestamp"]),
            progress_percent=float(value["progress_percent"]),
            total_steps=int(value["total_steps"]),
            abstracts=tuple(
                Abstract(
                    code=abstract["code"],
                    text=abstract["text"],
                    sentences=tuple(
                        Sentence(
                            code=sentence["code"],
                            text=sentence["text"],
                            entities=tuple(Entity(text=entity["text"]) for entity in sentence["entities"]),
                        )
                        for sentence in abstract["sentences"]
                    ),
                )
                for abstract in value["abstracts"]
            ),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Stored document {key} is malformed: {e}") from e


def _position_from_json(key: str, document_id: str, value: dict) -> Position:
    try:
        indices = (value["abstract_index"], value["sentence_index"], value["entity_index"])
    except KeyError as e:
        raise ValidationError(f"Stored position {key} is missing {e}") from e
    if not all(isinstance(index, int) and not isinstance(index, bool) for index in indices):
        raise ValidationError(f"Stored position {key} has non-integer indexes")
    return Position(document_id, *indices)


class AnnotationStore:
    """Typed access to documents, annotation records and last positions."""

    def __init__(self, client: SqliteKeyValueClient, locks: Optional[LockRegistry] = None):
        """Initialize the store.

        Args:
            client: Durable key-value client.
            locks: Lock registry for this context; a default one is created
                when omitted.
        """
        self._client = client
        self._locks = locks or LockRegistry()

    @property
    def locks(self) -> LockRegistry:
        return self._locks

    # --- documents ---

    async def get_document(self, document_id: str) -> Document:
        """Load a document.

        Raises:
            NotFoundError: If no document is stored under ``document_id``.
            ValidationError: If the stored value is malformed.
        """
        key = document_key(document_id)
        raw = self._client.get(key)
        if raw is None:
            raise NotFoundError(f"Document {document_id} not found")
        return _document_from_json(key, raw)

    async def put_document(self, document: Document) -> None:
        self._client.put(document_key(document.id), _document_to_json(document))

    async def list_document_ids(self) -> List[str]:
        """Ids of every stored document in key order, without parsing them."""
        return [key[len(DOCUMENT_PREFIX):] for key in self._client.keys_with_prefix(DOCUMENT_PREFIX)]

    async def list_documents(self) -> List[Document]:
        """Load every stored document in key order."""
        documents = []
        for key in self._client.keys_with_prefix(DOCUMENT_PREFIX):
            raw = self._client.get(key)
            if raw is not None:
                documents.append(_document_from_json(key, raw))
        return documents

    async def delete_document(self, document_id: str) -> None:
        """Delete a document with all of its annotation records and its last position.

        Raises:
            NotFoundError: If the document does not exist.
        """
        document = await self.get_document(document_id)
        removed = 0
        for a_idx, abstract in enumerate(document.abstracts):
            for s_idx, sentence in enumerate(abstract.sentences):
                for e_idx in range(-1, len(sentence.entities)):
                    if self._client.delete(annotation_key(document_id, Position(document_id, a_idx, s_idx, e_idx))):
                        removed += 1
        self._client.delete(last_position_key(document_id))
        self._client.delete(document_key(document_id))
        logger.info(f"Deleted document {document_id} and {removed} annotation records")

    # --- annotations ---

    async def get_annotation(self, document_id: str, position: Position) -> Optional[AnnotationRecord]:
        key = annotation_key(document_id, position)
        raw = self._client.get(key)
        if raw is None:
            return None
        value = _load_json(key, raw)
        try:
            return AnnotationRecord(
                position=position,
                answer_tag=str(value["answer_tag"]) if value["answer_tag"] is not None else "",
                timestamp=datetime.fromisoformat(value["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Stored annotation {key} is malformed: {e}") from e

    async def put_annotation(self, document_id: str, position: Position, tag: str) -> AnnotationRecord:
        """Create or overwrite the record at ``position``."""
        record = AnnotationRecord(position=position, answer_tag=tag, timestamp=datetime.now(timezone.utc))
        self._write_annotation(document_id, record)
        return record

    async def restore_annotation(
        self,
        document_id: str,
        position: Position,
        previous: Optional[AnnotationRecord],
    ) -> None:
        """Put back ``previous`` at ``position``, or remove the record if there was none."""
        if previous is None:
            self._client.delete(annotation_key(document_id, position))
        else:
            self._write_annotation(document_id, previous)

    def _write_annotation(self, document_id: str, record: AnnotationRecord) -> None:
        self._client.put(
            annotation_key(document_id, record.position),
            json.dumps({"answer_tag": record.answer_tag, "timestamp": record.timestamp.isoformat()}),
        )

    async def delete_annotation(self, document_id: str, position: Position) -> bool:
        return self._client.delete(annotation_key(document_id, position))

    # --- last position ---

    async def get_last_position(self, document_id: str) -> Optional[LastPosition]:
        key = last_position_key(document_id)
        raw = self._client.get(key)
        if raw is None:
            return None
        position = _position_from_json(key, document_id, _load_json(key, raw))
        return LastPosition(document_id=document_id, position=position)

    async def put_last_position(self, document_id: str, position: Position) -> None:
        self._client.put(
            last_position_key(document_id),
            json.dumps({
                "abstract_index": position.abstract_index,
                "sentence_index": position.sentence_index,
                "entity_index": position.entity_index,
            }),
        )

    async def delete_last_position(self, document_id: str) -> bool:
        return self._client.delete(last_position_key(document_id))

    # --- change notification ---

    def subscribe(self, listener: Callable[[StorageChange], None]) -> Callable[[], None]:
        """Listen for document and annotation writes made by other contexts."""
        return self._client.subscribe(listener)
