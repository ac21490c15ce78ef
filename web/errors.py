"""Translate exceptions into the uniform JSON error envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from debate_engine.exceptions import ErrorCode, StanceStreamError

logger = logging.getLogger(__name__)


def _field_path(location: tuple) -> str:
    # Drop the "body"/"query"/"path" prefix so clients see the field name
    parts = [str(part) for part in location]
    if len(parts) > 1 and parts[0] in ("body", "query", "path"):
        parts = parts[1:]
    return ".".join(parts)


def register_exception_handlers(app: FastAPI, production: bool = False) -> None:
    """Attach handlers for application, validation and unexpected errors."""

    @app.exception_handler(StanceStreamError)
    async def handle_app_error(request: Request, exc: StanceStreamError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after is not None else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": _field_path(tuple(error.get("loc", ()))), "message": error.get("msg", "")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Validation failed",
                "code": ErrorCode.VALIDATION.value,
                "details": details,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        message = "Internal server error" if production else f"{type(exc).__name__}: {exc}"
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": message, "code": ErrorCode.INTERNAL.value},
        )
