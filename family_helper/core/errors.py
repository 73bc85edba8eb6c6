"""Error normalization and handlers.

Every error leaves the API as a `{success: false, ...}` envelope carrying a
machine-readable `code` and the request id.
"""

import logging
import builtins
from typing import Any, Dict, Optional
from uuid import uuid4

from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from family_helper.core.logging import get_request_id

logger = logging.getLogger("family_helper.errors")


class AppError(Exception):
    code = "app_error"
    status_code = 500
    title = "Internal server error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        title: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        # Per-instance overrides of the class defaults
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.title = title or self.title
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400
    title = "Validation error"


class AuthenticationError(AppError):
    code = "unauthorized"
    status_code = 401
    title = "Unauthorized"


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403
    title = "Forbidden"


class ReadOnlyGroupError(PermissionError):
    """Raised when a mutation targets a group that is read-only."""
    code = "GROUP_READ_ONLY"
    title = "Group is read-only"

    @classmethod
    def from_response(cls, response: Dict[str, str]) -> "ReadOnlyGroupError":
        return cls(response["message"], code=response["code"], title=response["error"])


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404
    title = "Not found"


class AuditWriteError(AppError):
    code = "audit_write_failed"
    status_code = 500


def _resolve_request_id(request: Request) -> str:
    """Middleware-bound id, then the context var, then a fresh one."""
    bound = getattr(request.state, "request_id", None) or get_request_id()
    return bound or uuid4().hex


def error_payload(title: str, message: str, code: str, request_id: Optional[str]) -> Dict[str, Any]:
    return {
        "success": False,
        "error": title,
        "message": message,
        "code": code,
        "request_id": request_id,
    }


def _respond(status_code: int, payload: Dict[str, Any], rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _resolve_request_id(request)
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, error_payload(exc.title, exc.message, exc.code, rid), rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _resolve_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, error_payload(message, message, code, rid), rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _resolve_request_id(request)
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid input')}" if field else first.get("msg", "Invalid input")
    logger.warning(
        "request.invalid", extra={"request_id": rid, "error_code": "validation_error", "status": 400}
    )
    return _respond(400, error_payload("Validation error", message, "validation_error", rid), rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _resolve_request_id(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return _respond(500, error_payload("Internal server error", "Unexpected error", "internal_error", rid), rid)
