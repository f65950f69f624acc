"""Error types and FastAPI exception handlers.

Every error leaves the API as the same flat envelope::

    {"code": "...", "message": "...", "details": {...}}

`details` is optional. Domain code raises `ApiError` subclasses; the handlers
below translate them (and framework errors) into the envelope.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

from splitbook.core.logging import current_request_id

logger = logging.getLogger("splitbook.errors")


class ApiError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class UnauthorizedError(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"


class ForbiddenError(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"

    def __init__(self, message: str = "Access forbidden", **kwargs: Any):
        super().__init__(message, **kwargs)


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, ident: Optional[str] = None, **kwargs: Any):
        suffix = f" with id {ident}" if ident else ""
        super().__init__(f"{resource}{suffix} not found", **kwargs)


class ConflictError(ApiError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


def error_body(
    code: str, message: str, details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        body["details"] = details
    return body


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or current_request_id()


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.is_production)


def handle_custom_errors(request: Request, exc: Exception) -> Optional[JSONResponse]:
    """Translate known domain errors; return None to fall through."""
    if not isinstance(exc, ApiError):
        return None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
    )


def api_error_handler(request: Request, exc: ApiError):  # type: ignore
    response = handle_custom_errors(request, exc)
    if response is None:  # pragma: no cover - ApiError always handled
        return server_error_handler(request, exc)
    return response


def not_found_handler(request: Request, exc: StarletteHTTPException):  # type: ignore
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=error_body(
                "NOT_FOUND", f"Route {request.method} {request.url.path} not found"
            ),
        )
    phrase = str(exc.detail or "error")
    code = phrase.upper().replace(" ", "_")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, phrase),
        headers=getattr(exc, "headers", None),
    )


def format_validation_errors(errors: list) -> Dict[str, list]:
    formatted: Dict[str, list] = {}
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        key = ".".join(loc) or "root"
        formatted.setdefault(key, []).append(err.get("msg", "invalid value"))
    return formatted


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            "VALIDATION_ERROR",
            "Request validation failed",
            format_validation_errors(exc.errors()),
        ),
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    response = handle_custom_errors(request, exc)
    if response is not None:
        return response

    status_code = getattr(exc, "status_code", None)
    if not isinstance(status_code, int):
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = getattr(exc, "code", None)
    if not isinstance(code, str):
        code = "INTERNAL_SERVER_ERROR"
    rid = _request_id(request)

    logger.error(
        "request error",
        exc_info=exc,
        extra={
            "context": {
                "error": str(exc),
                "url": str(request.url),
                "method": request.method,
                "reqId": rid,
            }
        },
    )

    details = None
    message = str(exc) or "An unexpected error occurred."
    if _is_production(request) and status_code >= 500:
        message = "An unexpected error occurred."
    if not _is_production(request):
        details = {
            "stack": "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            ),
            "reqId": rid,
        }
    return JSONResponse(
        status_code=status_code,
        content=error_body(code, message, details),
    )
