from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from tokengate.api.schemas import ErrorResponse
from tokengate.logging import get_logger
from tokengate.service.errors import ServerError, ServiceError
from tokengate.storage.errors import ConstraintViolation

logger = get_logger(__name__)

UNAUTHORISED_PREFIX = "Unauthorised: "


def _error_response(status_code: int, message: str) -> JSONResponse:
    """Build the ``{"error": true, "message": ...}`` body every failure uses."""
    if status_code == 401 and not message.startswith(UNAUTHORISED_PREFIX):
        message = UNAUTHORISED_PREFIX + message
    body = ErrorResponse(message=message)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers mapping domain and storage errors onto JSON responses."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message)

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            error_type=type(exc).__name__,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(exc.status_code, exc.client_message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        message = _describe_validation_error(exc)
        logger.warning(
            "request_validation_error",
            path=request.url.path,
            method=request.method,
            message=message,
        )
        return _error_response(400, message)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
            message = ServerError.public_message
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, ServerError.public_message)
