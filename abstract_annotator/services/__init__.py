"""Annotation services: validation, storage, locking, progress and traversal."""

from abstract_annotator.services.annotation_service import AnnotationService, export_file_name
from abstract_annotator.services.annotation_store import AnnotationStore
from abstract_annotator.services.locking import Deadline, LockRegistry
from abstract_annotator.services.progress_calculator import (
    ProgressCalculator,
    progress_percent,
    round1,
    total_steps,
)
from abstract_annotator.services.schema_validator import (
    load_upload,
    parse_document_collection,
    validate_document_collection,
)
from abstract_annotator.services.traversal import (
    AnnotationSession,
    TraversalState,
    find_first_unanswered,
    first_position,
    is_valid_position,
    iter_positions,
    last_position,
    next_position,
    previous_position,
)

__all__ = [
    "AnnotationService",
    "AnnotationSession",
    "AnnotationStore",
    "Deadline",
    "LockRegistry",
    "ProgressCalculator",
    "TraversalState",
    "export_file_name",
    "find_first_unanswered",
    "first_position",
    "is_valid_position",
    "iter_positions",
    "last_position",
    "load_upload",
    "next_position",
    "parse_document_collection",
    "previous_position",
    "progress_percent",
    "round1",
    "total_steps",
    "validate_document_collection",
]
