"""
FastAPI application entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from callqueue.api.dependencies import (
    build_dispatcher,
    close_clients,
    get_calendar,
    get_classifier,
    get_notifier,
    get_queue_store,
)
from callqueue.api.router import router
from callqueue.calls.dispatcher import CallDispatcher
from callqueue.config import get_settings
from callqueue.queue.exceptions import LockLostError, LockTimeoutError, StoreIOError
from callqueue.shared.exceptions import NotFoundError, ValidationError
from callqueue.shared.logging import get_logger, log_with_context, setup_logging
from callqueue.telephony.factory import get_voice_agent_config, get_voice_agent_provider

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    voice_config = get_voice_agent_config()

    log_with_context(
        logger,
        logging.INFO,
        "Application starting",
        env=settings.app_env,
        queue_file=str(settings.queue_file),
        dispatcher_enabled=settings.dispatcher_enabled,
        missing_variables=voice_config.missing_variables(),
    )

    dispatcher: CallDispatcher | None = None
    if settings.dispatcher_enabled:
        dispatcher = build_dispatcher(
            settings,
            get_queue_store(),
            get_voice_agent_provider(),
            get_classifier(),
            get_notifier(),
            get_calendar(),
        )
        await dispatcher.start()
        app.state.dispatcher = dispatcher

    yield

    logger.info("Shutting down application")

    if dispatcher is not None:
        await dispatcher.stop()
    close_clients()

    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="callqueue API",
        description="Refund-request call queue driven by a voice agent",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"success": False, "detail": {"code": exc.code, "message": exc.message}},
        )

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "detail": {"code": exc.code, "message": exc.message, "missing_fields": exc.details},
            },
        )

    @app.exception_handler(LockTimeoutError)
    @app.exception_handler(LockLostError)
    async def _lock_unavailable(_: Request, exc: LockTimeoutError | LockLostError) -> JSONResponse:
        logger.warning("Queue lock unavailable", extra={"code": exc.code, "error": exc.message})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"success": False, "detail": {"code": exc.code, "message": exc.message}},
        )

    @app.exception_handler(StoreIOError)
    async def _store_io(_: Request, exc: StoreIOError) -> JSONResponse:
        logger.error("Queue store I/O error", extra={"error": exc.message})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "detail": {"code": exc.code, "message": "Queue storage error"}},
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                },
            },
        )

    app.include_router(router)

    return app


app = create_app()
