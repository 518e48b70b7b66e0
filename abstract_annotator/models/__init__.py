"""Data models module."""

from abstract_annotator.models.annotation import (
    SENTENCE_LEVEL,
    AnnotationRecord,
    EntityLabel,
    LastPosition,
    Position,
    SentenceLabel,
)
from abstract_annotator.models.document import Abstract, Document, Entity, Sentence
from abstract_annotator.models.progress import AnnotationStats, ProgressReport

__all__ = [
    "SENTENCE_LEVEL",
    "Abstract",
    "AnnotationRecord",
    "AnnotationStats",
    "Document",
    "Entity",
    "EntityLabel",
    "LastPosition",
    "Position",
    "ProgressReport",
    "Sentence",
    "SentenceLabel",
]
