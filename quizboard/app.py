"""
FastAPI application entry point for the quizboard service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quizboard.config import Settings, get_settings
from quizboard.dependencies import Backend, build_backend
from quizboard.errors import NotFound, PartialBatchFailure, StorageError, ValidationError
from quizboard.routes import router
from quizboard.schemas import ErrorResponse

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, **extra).model_dump(exclude_none=True),
    )


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "invalid request") if errors else "invalid request"
        return _error(status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("Storage error on %s: %s", request.url.path, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "storage error")

    @app.exception_handler(PartialBatchFailure)
    async def partial_batch_handler(request: Request, exc: PartialBatchFailure):
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), count=len(exc.committed)
        )


def create_app(
    settings: Optional[Settings] = None, backend: Optional[Backend] = None
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        bound = backend or build_backend(settings)
        app.state.backend = bound
        bound.gate.start()
        logger.info("Quizboard API starting up")
        try:
            yield
        finally:
            await bound.close()
            logger.info("Quizboard API shut down")

    app = FastAPI(title="Quizboard API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_exception_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app
