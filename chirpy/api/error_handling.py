from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from chirpy.api.schemas import Envelope, ErrorBody
from chirpy.logging import get_logger
from chirpy.service.errors import AuthenticationError, ServiceError
from chirpy.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    500: "server_error",
}


def _error_code_for_status(status_code: int) -> str:
    fallback = "server_error" if status_code >= 500 else "validation_error"
    return _STATUS_TO_CODE.get(status_code, fallback)


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code, content=envelope.model_dump(), headers=headers
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent exception handlers for domain and storage errors."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        # The failure class is for operators only; clients get one opaque answer
        logger.warning(
            "authentication_failed",
            path=request.url.path,
            method=request.method,
            failure=type(exc).__name__,
            reason=exc.message,
        )
        return _error_response(401, "unauthorized", code="unauthorized")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            failure=type(exc).__name__,
            reason=exc.message,
        )
        if exc.status_code >= 500:
            return _error_response(500, "internal server error", code="server_error")
        return _error_response(
            exc.status_code, exc.message, exc.detail or None, code=exc.error_code
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error_fallback",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return _error_response(500, "internal server error", code="server_error")
