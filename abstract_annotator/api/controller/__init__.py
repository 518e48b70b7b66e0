"""API controllers."""

from abstract_annotator.api.controller.documents_controller import router as documents_router

__all__ = ["documents_router"]
