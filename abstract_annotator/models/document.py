"""Document models for the abstract → sentence → entity hierarchy."""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Tuple


@dataclass(frozen=True)
class Entity:
    """An extracted entity inside a sentence."""

    text: str


@dataclass(frozen=True)
class Sentence:
    """A sentence of an abstract with its extracted entities, in order."""

    code: str
    text: str
    entities: Tuple[Entity, ...]


@dataclass(frozen=True)
class Abstract:
    """A paper abstract; insertion order is traversal order."""

    code: str
    text: str
    sentences: Tuple[Sentence, ...]


@dataclass(frozen=True)
class Document:
    """An ingested collection of abstracts.

    ``progress_percent`` is a cached value derived from the stored
    annotation records, never an independent source of truth.
    """

    id: str  # Assigned at ingest, immutable
    name: str  # Original upload file name
    abstracts: Tuple[Abstract, ...]
    upload_timestamp: datetime
    progress_percent: float
    total_steps: int  # One step per sentence plus one per entity

    def with_progress(self, progress_percent: float) -> "Document":
        """Return a copy carrying a freshly computed progress value."""
        return replace(self, progress_percent=progress_percent)
