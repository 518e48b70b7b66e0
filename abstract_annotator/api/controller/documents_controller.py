"""REST controller for documents, annotations and navigation."""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from abstract_annotator.models import Document, ProgressReport
from abstract_annotator.services import AnnotationService, AnnotationSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])


class UploadRequest(BaseModel):
    """Uploaded abstract collection; its shape is checked by the schema validator."""

    file_name: str
    abstracts: Any


class AnnotationRequest(BaseModel):
    """Answer for one question."""

    abstract_index: int
    sentence_index: int
    entity_index: int  # -1 for the sentence-level question
    answer_tag: str


class PositionRequest(BaseModel):
    abstract_index: int
    sentence_index: int
    entity_index: int


class DocumentSummary(BaseModel):
    id: str
    name: str
    upload_timestamp: datetime
    progress_percent: float
    total_steps: int


class ProgressResponse(BaseModel):
    document_id: str
    completed_steps: int
    total_steps: int
    progress_percent: float


class AnswerOption(BaseModel):
    tag: str
    prompt: str


class PositionResponse(BaseModel):
    """Current question of an open document."""

    document_id: str
    state: str  # "in_progress" or "completed"
    abstract_index: int
    sentence_index: int
    entity_index: int
    sentence_text: str
    entity_text: Optional[str]
    answer_tag: Optional[str]
    options: List[AnswerOption]
    progress_percent: float


class StatsResponse(BaseModel):
    total_sentences: int
    total_entities: int
    total_annotations: int
    completed_annotations: int
    completed_files: int
    failed_documents: int


def get_service(request: Request) -> AnnotationService:
    return request.app.state.annotation_service


def _summary(document: Document) -> DocumentSummary:
    return DocumentSummary(
        id=document.id,
        name=document.name,
        upload_timestamp=document.upload_timestamp,
        progress_percent=document.progress_percent,
        total_steps=document.total_steps,
    )


def _progress(report: ProgressReport) -> ProgressResponse:
    return ProgressResponse(**asdict(report))


def _position(session: AnnotationSession) -> PositionResponse:
    position = session.position
    entity = session.current_entity
    return PositionResponse(
        document_id=position.document_id,
        state=session.state.value,
        abstract_index=position.abstract_index,
        sentence_index=position.sentence_index,
        entity_index=position.entity_index,
        sentence_text=session.current_sentence.text,
        entity_text=entity.text if entity is not None else None,
        answer_tag=session.current_answer,
        options=[AnswerOption(**option) for option in session.question_prompts()],
        progress_percent=session.document.progress_percent,
    )


@router.post("/documents", response_model=DocumentSummary, status_code=201)
async def upload_document(
    body: UploadRequest,
    service: AnnotationService = Depends(get_service),
) -> DocumentSummary:
    document = await service.ingest(body.abstracts, body.file_name)
    return _summary(document)


@router.get("/documents", response_model=List[DocumentSummary])
async def list_documents(service: AnnotationService = Depends(get_service)) -> List[DocumentSummary]:
    return [_summary(document) for document in await service.list_documents()]


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(document_id: str, service: AnnotationService = Depends(get_service)) -> None:
    await service.delete_document(document_id)


@router.post("/documents/{document_id}/reset", response_model=DocumentSummary)
async def reset_document(document_id: str, service: AnnotationService = Depends(get_service)) -> DocumentSummary:
    return _summary(await service.reset_document(document_id))


@router.get("/documents/{document_id}/progress", response_model=ProgressResponse)
async def document_progress(document_id: str, service: AnnotationService = Depends(get_service)) -> ProgressResponse:
    return _progress(await service.compute_progress(document_id))


@router.put("/documents/{document_id}/annotations", response_model=ProgressResponse)
async def save_annotation(
    document_id: str,
    body: AnnotationRequest,
    service: AnnotationService = Depends(get_service),
) -> ProgressResponse:
    report = await service.save_annotation(
        document_id,
        body.abstract_index,
        body.sentence_index,
        body.entity_index,
        body.answer_tag,
    )
    return _progress(report)


@router.get("/documents/{document_id}/position", response_model=PositionResponse)
async def current_position(document_id: str, service: AnnotationService = Depends(get_service)) -> PositionResponse:
    """Load or resume a document at its saved or first unanswered question."""
    return _position(await service.open_session(document_id))


@router.put("/documents/{document_id}/position", response_model=PositionResponse)
async def jump_to_position(
    document_id: str,
    body: PositionRequest,
    service: AnnotationService = Depends(get_service),
) -> PositionResponse:
    session = await service.open_session(document_id)
    await session.jump_to(body.abstract_index, body.sentence_index, body.entity_index)
    return _position(session)


@router.post("/documents/{document_id}/position/next", response_model=PositionResponse)
async def next_question(document_id: str, service: AnnotationService = Depends(get_service)) -> PositionResponse:
    """Advance past an answered question; unanswered questions do not move."""
    session = await service.open_session(document_id)
    await session.advance()
    return _position(session)


@router.post("/documents/{document_id}/position/previous", response_model=PositionResponse)
async def previous_question(document_id: str, service: AnnotationService = Depends(get_service)) -> PositionResponse:
    session = await service.open_session(document_id)
    await session.go_back()
    return _position(session)


@router.get("/documents/{document_id}/export")
async def export_document(document_id: str, service: AnnotationService = Depends(get_service)) -> dict:
    return await service.export(document_id)


@router.get("/stats", response_model=StatsResponse)
async def annotation_stats(service: AnnotationService = Depends(get_service)) -> StatsResponse:
    return StatsResponse(**asdict(await service.calculate_stats()))
