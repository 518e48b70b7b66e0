"""Progress accounting models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ProgressReport:
    """Completion of a single document at the time of computation."""

    document_id: str
    completed_steps: int
    total_steps: int
    progress_percent: float

    @property
    def is_complete(self) -> bool:
        return self.total_steps > 0 and self.completed_steps == self.total_steps


@dataclass(frozen=True)
class AnnotationStats:
    """Aggregate statistics across every stored document."""

    total_sentences: int
    total_entities: int
    total_annotations: int  # Sentences plus entities
    completed_annotations: int
    completed_files: int
    failed_documents: int  # Documents whose progress could not be computed
