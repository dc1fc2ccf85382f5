from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from podcast_digest.api.routes import router
from podcast_digest.dependencies import build_worker_service, get_settings, get_telemetry
from podcast_digest.errors import (
    DatabaseError,
    InvalidStatusTransitionError,
    PlatformError,
    RecordNotFoundError,
    TranscriptError,
    ValidationError,
)
from podcast_digest.logging_config import configure_application_logging
from podcast_digest.services.worker_service import WorkerService

LOGGER = logging.getLogger("podcast_digest.api")

_PLATFORM_ERROR_STATUS: dict[str, int] = {
    "INVALID_URL": 400,
    "VIDEO_NOT_FOUND": 404,
    "API_ERROR": 502,
}


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    worker: WorkerService | None = None

    if settings.worker_enabled:
        worker = build_worker_service()
        worker.start()

    try:
        yield
    finally:
        if worker is not None:
            worker.stop()


async def _validation_error_handler(_: Request, exc: Exception) -> Response:
    assert isinstance(exc, ValidationError)
    return JSONResponse(status_code=400, content={"detail": str(exc), "errors": exc.errors})


async def _platform_error_handler(_: Request, exc: Exception) -> Response:
    assert isinstance(exc, PlatformError)
    return JSONResponse(
        status_code=_PLATFORM_ERROR_STATUS.get(exc.code, 502),
        content={"detail": str(exc), "code": exc.code},
    )


async def _transcript_error_handler(_: Request, exc: Exception) -> Response:
    assert isinstance(exc, TranscriptError)
    return JSONResponse(
        status_code=400 if exc.code == "INVALID_URL" else 502,
        content={"detail": str(exc), "code": exc.code, "errors": exc.errors},
    )


async def _not_found_handler(_: Request, exc: Exception) -> Response:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _invalid_transition_handler(_: Request, exc: Exception) -> Response:
    assert isinstance(exc, InvalidStatusTransitionError)
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "code": "INVALID_STATUS_TRANSITION"},
    )


async def _database_error_handler(_: Request, exc: Exception) -> Response:
    assert isinstance(exc, DatabaseError)
    LOGGER.error(
        "api database_error operation=%s code=%s",
        exc.operation,
        exc.code,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "Database error.", "code": exc.code})


def create_app() -> FastAPI:
    app = FastAPI(title="Podcast Digest API", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = (request.headers.get("X-Request-ID") or "").strip()
        request_id = incoming_request_id or str(uuid4())
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(PlatformError, _platform_error_handler)
    app.add_exception_handler(TranscriptError, _transcript_error_handler)
    app.add_exception_handler(RecordNotFoundError, _not_found_handler)
    app.add_exception_handler(InvalidStatusTransitionError, _invalid_transition_handler)
    app.add_exception_handler(DatabaseError, _database_error_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )

    return app


app = create_app()
