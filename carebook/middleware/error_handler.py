"""Error handling middleware."""

import structlog
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from carebook.core.exceptions import AppException

logger = structlog.get_logger()

_ERROR_NAMES = {
    "ValidationException": "ValidationError",
    "ForbiddenException": "Forbidden",
    "NotFoundException": "NotFound",
    "InvalidStateException": "InvalidState",
    "ConflictException": "Conflict",
    "ServiceUnavailableException": "Unavailable",
    "UnauthorizedException": "Unauthorized",
}

_HTTP_ERROR_NAMES = {
    status.HTTP_401_UNAUTHORIZED: "Unauthorized",
    status.HTTP_403_FORBIDDEN: "Forbidden",
    status.HTTP_404_NOT_FOUND: "NotFound",
}


def _error_body(
    request: Request,
    error: str,
    message: str,
    details: object | None = None,
) -> dict:
    body: dict = {
        "success": False,
        "error": error,
        "message": message,
        "path": str(request.url),
    }
    if details:
        body["details"] = jsonable_encoder(details)
    return body


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle custom application exceptions.

    Args:
        request: Request object
        exc: Application exception

    Returns:
        JSON error response carrying the exception's structured details
    """
    error = _ERROR_NAMES.get(exc.__class__.__name__, exc.__class__.__name__)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, error, exc.message, exc.details),
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle HTTP exceptions.

    Args:
        request: Request object
        exc: HTTP exception

    Returns:
        JSON error response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            request,
            _HTTP_ERROR_NAMES.get(exc.status_code, "HTTPException"),
            str(exc.detail),
        ),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle request validation errors as 400 ValidationError.

    Args:
        request: Request object
        exc: Validation exception

    Returns:
        JSON error response with validation details
    """
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(
            request,
            "ValidationError",
            "Request validation failed",
            {"errors": exc.errors()},
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Args:
        request: Request object
        exc: Exception

    Returns:
        JSON error response
    """
    logger.exception(
        "unhandled_exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "InternalServerError", "An unexpected error occurred"),
    )
