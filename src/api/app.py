# src/api/app.py — v1
"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from callbatch.api.envelope import failure, failure_for, status_for
from callbatch.api.routes import batch_router, config_router
from callbatch.batch.container import Container
from callbatch.config.settings import ConfigurationError
from callbatch.core.errors import CallBatchError
from callbatch.version import __version__

logger = logging.getLogger(__name__)


def create_app(container: Container, manage_lifecycle: bool = True) -> FastAPI:
    """Create the management API around an assembled container.

    Args:
        container: Wired services and stores.
        manage_lifecycle: Start the orchestrator on startup and shut it
            down (draining notifications) on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await container.service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await container.close()

    app = FastAPI(
        title="callbatch",
        version=__version__,
        description="Batch ingestion of call recordings",
        lifespan=lifespan,
    )
    app.state.container = container
    app.include_router(config_router)
    app.include_router(batch_router)

    @app.get("/health", include_in_schema=False)
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "callbatch", "version": __version__}

    @app.exception_handler(CallBatchError)
    async def callbatch_error_handler(request: Request, exc: CallBatchError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content=failure_for(exc))

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=failure_for(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=failure("VALIDATION_ERROR", "Invalid request", exc.errors()),
        )

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=failure(
                "VALIDATION_ERROR", "Invalid configuration",
                exc.errors(include_context=False, include_url=False),
            ),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=failure_for(exc))

    return app
