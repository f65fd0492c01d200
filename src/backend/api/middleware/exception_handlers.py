"""
Exception handlers for the toolchat API.

Every REST error leaves through ``_respond`` so the envelope, the request id
and the log line look the same whatever raised it. Chat streams are not
covered here: once streaming has started, run failures are ``error`` events.
"""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.middleware.request_context import get_request_id
from core.constants import get_settings
from core.exceptions import ToolchatError
from models.error_models import ErrorCode, ErrorDetail, ErrorResponse
from utils.logger import logger

#: Error code reported for an ``HTTPException`` raised with a bare status
HTTP_STATUS_TO_CODE: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.EXTERNAL_RATE_LIMITED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.EXTERNAL_TIMEOUT,
}


def _respond(
    request: Request,
    exc: Exception,
    code: ErrorCode,
    message: str,
    status_code: int | None = None,
    details: list[ErrorDetail] | None = None,
) -> JSONResponse:
    status_code = status_code or code.http_status
    debug = get_settings().debug
    body = ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path,
        details=details,
        debug={"exception_type": type(exc).__name__, "message": str(exc)} if debug else None,
    )

    log_message = f"{request.method} {request.url.path} -> {status_code} {code.value}: {message}"
    if status_code >= 500:
        logger.error(log_message, exc_info=True, error_code=code.value, status_code=status_code)
    else:
        logger.warning(log_message, error_code=code.value, status_code=status_code)

    return JSONResponse(status_code=status_code, content=body.to_dict(include_debug=debug))


async def key_error_handler(request: Request, exc: KeyError) -> JSONResponse:
    """Unknown server ids from the lifecycle manager and the server store."""
    message = str(exc.args[0]) if exc.args else "Not found"
    return _respond(request, exc, ErrorCode.SERVER_NOT_FOUND, message)


async def toolchat_exception_handler(request: Request, exc: ToolchatError) -> JSONResponse:
    return _respond(request, exc, exc.code, exc.message or str(exc))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = HTTP_STATUS_TO_CODE.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _respond(request, exc, code, message, status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        ErrorDetail(field=".".join(str(part) for part in error["loc"]), message=error["msg"], code=error["type"])
        for error in exc.errors()
    ]
    return _respond(request, exc, ErrorCode.VALIDATION_ERROR, "Request validation failed", details=details)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Internals only ever appear in the ``debug`` block."""
    return _respond(request, exc, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(KeyError, key_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ToolchatError, toolchat_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
