"""Position resolution and the traversal state machine.

Positions linearize the abstract → sentence → entity tree: every sentence
contributes its sentence-level question (entity index -1) followed by one
question per entity. ``next_position`` and ``previous_position`` walk that
sequence; ``AnnotationSession`` drives it for one open document and records
where the user is so a reload resumes at the same question.
"""

import logging
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING, Iterator, List, Optional

from ..errors import NotFoundError, ValidationError
from ..models import SENTENCE_LEVEL, Document, Entity, Position, ProgressReport, Sentence
from .annotation_store import AnnotationStore
from .locking import Deadline

if TYPE_CHECKING:
    from .annotation_service import AnnotationService

logger = logging.getLogger(__name__)


class TraversalState(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def iter_positions(document: Document) -> Iterator[Position]:
    """Yield every position of ``document`` in canonical order."""
    for a_idx, abstract in enumerate(document.abstracts):
        for s_idx, sentence in enumerate(abstract.sentences):
            for e_idx in range(SENTENCE_LEVEL, len(sentence.entities)):
                yield Position(document.id, a_idx, s_idx, e_idx)


def is_valid_position(document: Document, position: Position) -> bool:
    if position.document_id != document.id:
        return False
    if not 0 <= position.abstract_index < len(document.abstracts):
        return False
    sentences = document.abstracts[position.abstract_index].sentences
    if not 0 <= position.sentence_index < len(sentences):
        return False
    entities = sentences[position.sentence_index].entities
    return SENTENCE_LEVEL <= position.entity_index < len(entities)


def require_position(document: Document, position: Position) -> Position:
    """Return ``position`` or raise NotFoundError if it is outside ``document``."""
    if not is_valid_position(document, position):
        raise NotFoundError(
            f"Position ({position.abstract_index}, {position.sentence_index}, "
            f"{position.entity_index}) does not exist in document {document.id}"
        )
    return position


def _first_position_from(document: Document, abstract_index: int, sentence_index: int) -> Optional[Position]:
    # Abstracts without sentences contribute no positions
    while abstract_index < len(document.abstracts):
        if sentence_index < len(document.abstracts[abstract_index].sentences):
            return Position(document.id, abstract_index, sentence_index, SENTENCE_LEVEL)
        abstract_index += 1
        sentence_index = 0
    return None


def _last_position_before(document: Document, abstract_index: int, sentence_index: int) -> Optional[Position]:
    sentence_index -= 1
    while abstract_index >= 0:
        if sentence_index >= 0:
            entities = document.abstracts[abstract_index].sentences[sentence_index].entities
            return Position(document.id, abstract_index, sentence_index, len(entities) - 1)
        abstract_index -= 1
        if abstract_index >= 0:
            sentence_index = len(document.abstracts[abstract_index].sentences) - 1
    return None


def first_position(document: Document) -> Position:
    """The canonical first position, normally (0, 0, -1).

    Raises:
        NotFoundError: If the document has no sentences at all.
    """
    position = _first_position_from(document, 0, 0)
    if position is None:
        raise NotFoundError(f"Document {document.id} has no sentences to annotate")
    return position


def last_position(document: Document) -> Position:
    """The final position of the traversal sequence."""
    position = _last_position_before(document, len(document.abstracts), 0)
    if position is None:
        raise NotFoundError(f"Document {document.id} has no sentences to annotate")
    return position


def next_position(document: Document, position: Position) -> Optional[Position]:
    """
    Step forward one question.

    Returns:
        The following position, or None when ``position`` is the last one
        (the traversal is complete).

    Raises:
        NotFoundError: If ``position`` is not part of ``document``.
    """
    require_position(document, position)
    sentence = document.abstracts[position.abstract_index].sentences[position.sentence_index]
    if position.entity_index + 1 < len(sentence.entities):
        return replace(position, entity_index=position.entity_index + 1)
    return _first_position_from(document, position.abstract_index, position.sentence_index + 1)


def previous_position(document: Document, position: Position) -> Position:
    """Step back one question; a no-op at the very first position."""
    require_position(document, position)
    if position.entity_index > SENTENCE_LEVEL:
        return replace(position, entity_index=position.entity_index - 1)
    previous = _last_position_before(document, position.abstract_index, position.sentence_index)
    return previous if previous is not None else position


async def find_first_unanswered(
    store: AnnotationStore,
    document: Document,
    deadline: Optional[Deadline] = None,
) -> Position:
    """
    Find where annotation should resume.

    Returns:
        The first position without an answer, or the last position when every
        question is answered, so a finished document stays viewable.
    """
    last = None
    for position in iter_positions(document):
        if deadline is not None:
            deadline.check(f"Scanning document {document.id}")
        record = await store.get_annotation(document.id, position)
        if record is None or not record.answer_tag:
            return position
        last = position
    if last is None:
        raise NotFoundError(f"Document {document.id} has no sentences to annotate")
    return last


class AnnotationSession:
    """Navigation state for one open document.

    Opening is a single idempotent load-or-resume step. Selecting an answer
    saves it without moving; ``advance`` only moves once the current question
    has an answer. Every move is written back as the document's last position.
    """

    def __init__(self, service: "AnnotationService", document: Document, position: Position):
        self._service = service
        self._store = service.store
        self._document = document
        self._position = position
        self._state = TraversalState.IN_PROGRESS
        self._current_answer: Optional[str] = None

    @classmethod
    async def open(cls, service: "AnnotationService", document_id: str) -> "AnnotationSession":
        """Load ``document_id`` and resume where the user left off."""
        document = await service.store.get_document(document_id)
        session = cls(service, document, first_position(document))
        await session._resume()
        return session

    async def reload(self) -> None:
        """Refresh the document and current position from the store."""
        self._document = await self._store.get_document(self._document.id)
        await self._resume()

    async def _resume(self) -> None:
        saved = await self._store.get_last_position(self._document.id)
        if saved is not None and is_valid_position(self._document, saved.position):
            position = saved.position
        else:
            if saved is not None:
                logger.warning(
                    f"Stored position {saved.position} is outside document {self._document.id}, "
                    f"resuming at first unanswered question"
                )
            position = await find_first_unanswered(
                self._store, self._document, self._store.locks.new_deadline()
            )
        self._state = TraversalState.IN_PROGRESS
        await self._move_to(position)

    async def _move_to(self, position: Position) -> Position:
        self._position = position
        await self._store.put_last_position(self._document.id, position)
        record = await self._store.get_annotation(self._document.id, position)
        self._current_answer = record.answer_tag if record is not None and record.answer_tag else None
        return position

    @property
    def document(self) -> Document:
        return self._document

    @property
    def position(self) -> Position:
        return self._position

    @property
    def state(self) -> TraversalState:
        return self._state

    @property
    def is_completed(self) -> bool:
        return self._state is TraversalState.COMPLETED

    @property
    def current_answer(self) -> Optional[str]:
        return self._current_answer

    @property
    def current_sentence(self) -> Sentence:
        return self._document.abstracts[self._position.abstract_index].sentences[self._position.sentence_index]

    @property
    def current_entity(self) -> Optional[Entity]:
        if self._position.is_sentence_level:
            return None
        return self.current_sentence.entities[self._position.entity_index]

    def question_prompts(self) -> List[dict]:
        """Answer options for the current question, tag and prompt text."""
        return [{"tag": label.value, "prompt": label.prompt} for label in self._position.labels()]

    async def select_answer(self, answer_tag: str) -> ProgressReport:
        """Save an answer at the current position without moving."""
        if self.is_completed:
            raise ValidationError(f"Document {self._document.id} traversal is already completed")
        report = await self._service.save_annotation(
            self._document.id,
            self._position.abstract_index,
            self._position.sentence_index,
            self._position.entity_index,
            answer_tag,
        )
        record = await self._store.get_annotation(self._document.id, self._position)
        self._current_answer = record.answer_tag if record is not None else None
        self._document = self._document.with_progress(report.progress_percent)
        return report

    async def advance(self) -> Optional[Position]:
        """
        Move to the next question.

        Returns:
            The new position; the unchanged position when the current question
            has no answer yet; None once the last question is passed and the
            session is completed.
        """
        if self.is_completed:
            return None
        if not self._current_answer:
            logger.debug(f"Advance ignored at {self._position}: no answer selected")
            return self._position
        following = next_position(self._document, self._position)
        if following is None:
            self._state = TraversalState.COMPLETED
            logger.info(f"Completed traversal of document {self._document.id}")
            return None
        return await self._move_to(following)

    async def go_back(self) -> Position:
        """Move to the previous question; stays put at the first one."""
        if self.is_completed:
            return self._position
        preceding = previous_position(self._document, self._position)
        if preceding == self._position:
            return self._position
        return await self._move_to(preceding)

    async def jump_to(self, abstract_index: int, sentence_index: int, entity_index: int) -> Position:
        """Move directly to any position of the document.

        Raises:
            NotFoundError: If the position does not exist.
        """
        target = require_position(
            self._document,
            Position(self._document.id, abstract_index, sentence_index, entity_index),
        )
        self._state = TraversalState.IN_PROGRESS
        return await self._move_to(target)
