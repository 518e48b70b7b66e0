"""Schema validation for uploaded abstract collections.

Checks run top-down and stop at the first violated constraint; errors are
never aggregated. No limits on depth or width are enforced.
"""

import json
import logging
from typing import Any, Tuple

from ..errors import ValidationError
from ..models import Abstract, Entity, Sentence

logger = logging.getLogger(__name__)


def _require_text(container: dict, field: str, path: str) -> None:
    value = container.get(field)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{path}.{field} must be a non-empty string")


def _require_list(container: dict, field: str, path: str) -> list:
    value = container.get(field)
    if not isinstance(value, list):
        raise ValidationError(f"{path}.{field} must be an array")
    return value


def _require_object(value: Any, path: str) -> dict:
    if not isinstance(value, dict):
        raise ValidationError(f"{path} must be an object")
    return value


def validate_document_collection(data: Any) -> list:
    """
    Validate a parsed upload against the abstract collection schema.

    Args:
        data: Parsed JSON value.

    Returns:
        The same list of abstracts, unchanged.

    Raises:
        ValidationError: Naming the first violated constraint and its path.
    """
    if not isinstance(data, list):
        raise ValidationError("abstracts must be an array of abstracts")

    for a_idx, raw_abstract in enumerate(data):
        a_path = f"abstracts[{a_idx}]"
        abstract = _require_object(raw_abstract, a_path)
        _require_text(abstract, "code", a_path)
        _require_text(abstract, "text", a_path)
        sentences = _require_list(abstract, "sentences", a_path)

        for s_idx, raw_sentence in enumerate(sentences):
            s_path = f"{a_path}.sentences[{s_idx}]"
            sentence = _require_object(raw_sentence, s_path)
            _require_text(sentence, "code", s_path)
            _require_text(sentence, "text", s_path)
            entities = _require_list(sentence, "entities", s_path)

            for e_idx, raw_entity in enumerate(entities):
                e_path = f"{s_path}.entities[{e_idx}]"
                entity = _require_object(raw_entity, e_path)
                _require_text(entity, "text", e_path)

    return data


def parse_document_collection(data: Any) -> Tuple[Abstract, ...]:
    """Validate ``data`` and build the typed abstract tree."""
    validate_document_collection(data)
    return tuple(
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
        for abstract in data
    )


def load_upload(raw_text: str, file_name: str) -> Tuple[Abstract, ...]:
    """
    Parse and validate an uploaded JSON file.

    Args:
        raw_text: File contents.
        file_name: Name of the uploaded file; must end in ``.json``.

    Returns:
        The typed abstract tree.

    Raises:
        ValidationError: If the name, content or schema is invalid.
    """
    if not file_name.lower().endswith(".json"):
        raise ValidationError(f"Upload {file_name!r} is not a JSON file")
    if not raw_text.strip():
        raise ValidationError(f"Upload {file_name!r} is empty")

    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Upload {file_name!r} is not valid JSON: {e}") from e

    logger.debug(f"Parsed upload {file_name} with {len(data) if isinstance(data, list) else 0} abstracts")
    return parse_document_collection(data)
