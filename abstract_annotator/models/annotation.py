"""Annotation models: positions, answer vocabularies and persisted records."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

SENTENCE_LEVEL = -1


class SentenceLabel(str, Enum):
    """Answers for the sentence-level question."""

    BACKGROUND = "Background/Introduction"
    METHODS = "Methods/Approach"
    RESULTS = "Results/Findings"
    CONCLUSIONS = "Conclusions/Implications"
    NOT_SURE = "Not sure"

    @property
    def prompt(self) -> str:
        return _SENTENCE_PROMPTS[self]


class EntityLabel(str, Enum):
    """Answers for the question asked about each entity."""

    AGENT = "Agent/Subject"
    OBJECT = "Object/Recipient"
    OUTCOME = "Outcome/Effect"
    CONTEXT = "Context/Condition"
    NOT_SURE = "Not sure"

    @property
    def prompt(self) -> str:
        return _ENTITY_PROMPTS[self]


_SENTENCE_PROMPTS = {
    SentenceLabel.BACKGROUND: "What is the background or the main problem discussed by this research?",
    SentenceLabel.METHODS: "What methods or approaches are used to conduct the research?",
    SentenceLabel.RESULTS: "What are the key findings or outcomes of this study?",
    SentenceLabel.CONCLUSIONS: (
        "What are the implications of these findings, and what future directions are suggested?"
    ),
    SentenceLabel.NOT_SURE: "Not sure",
}

_ENTITY_PROMPTS = {
    EntityLabel.AGENT: "What is the main focus or who/what is performing the action in the sentence?",
    EntityLabel.OBJECT: "What is receiving the action or being acted upon in the sentence?",
    EntityLabel.OUTCOME: "What is the result or effect of the action or focus in the sentence?",
    EntityLabel.CONTEXT: (
        "What background conditions or circumstances are relevant to the action "
        "or subject in the sentence?"
    ),
    EntityLabel.NOT_SURE: "Not sure",
}


@dataclass(frozen=True, order=True)
class Position:
    """One answerable question inside a document.

    ``entity_index == -1`` is the sentence-level question. Positions order
    lexicographically, which is the canonical traversal order.
    """

    document_id: str
    abstract_index: int
    sentence_index: int
    entity_index: int

    @property
    def is_sentence_level(self) -> bool:
        return self.entity_index == SENTENCE_LEVEL

    def labels(self) -> type:
        """Answer vocabulary for this position."""
        return SentenceLabel if self.is_sentence_level else EntityLabel


@dataclass(frozen=True)
class AnnotationRecord:
    """The persisted answer at one position."""

    position: Position
    answer_tag: str
    timestamp: datetime


@dataclass(frozen=True)
class LastPosition:
    """Where the user left off in a document."""

    document_id: str
    position: Position
