"""FastAPI application setup."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from abstract_annotator.api.controller import documents_router
from abstract_annotator.config import configure_logging, get_config
from abstract_annotator.errors import (
    AnnotatorError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)
from abstract_annotator.services import AnnotationService

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (OperationTimeoutError, 503),
)


async def _annotator_error_handler(request: Request, exc: AnnotatorError) -> JSONResponse:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    logger.exception(f"Unhandled annotator error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def create_app(service: Optional[AnnotationService] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Service to serve; when omitted one is opened from the
            configuration at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if service is None:
            config = get_config()
            configure_logging(config)
            owned = AnnotationService.from_config(config)
            app.state.annotation_service = owned
        try:
            yield
        finally:
            if owned is not None:
                owned.close()

    app = FastAPI(
        title="Abstract Annotation API",
        description="Annotate sentences and entities of paper abstracts",
        version="1.0.0",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.annotation_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AnnotatorError, _annotator_error_handler)
    app.include_router(documents_router)

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
