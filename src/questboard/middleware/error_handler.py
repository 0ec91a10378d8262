"""Exception handlers. Every error response is JSON with a ``detail`` field."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

from questboard.errors import QuestboardError, TransientStorageError

logger = structlog.get_logger()


def _domain_response(request: Request, exc: QuestboardError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("domain_error", path=request.url.path, **exc.to_dict())
        # Storage internals stay out of the response body
        detail = "Service temporarily unavailable" if exc.is_retryable else "Internal server error"
    else:
        logger.info("request_refused", path=request.url.path, error_code=exc.error_code)
        detail = exc.message
    headers = {"Retry-After": "1"} if exc.is_retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "error_code": exc.error_code},
        headers=headers,
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register the domain, storage, HTTP, validation and catch-all handlers."""

    @app.exception_handler(QuestboardError)
    async def domain_exception_handler(request: Request, exc: QuestboardError) -> JSONResponse:
        """Map a domain error family to its status code."""
        return _domain_response(request, exc)

    @app.exception_handler(OperationalError)
    @app.exception_handler(PoolTimeoutError)
    async def storage_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Lost connections, lock waits and pool exhaustion are retryable."""
        return _domain_response(
            request,
            TransientStorageError(str(exc).splitlines()[0] if str(exc) else exc.__class__.__name__),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Anything unexpected becomes an opaque 500."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
