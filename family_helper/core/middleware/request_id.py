import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from family_helper.core.logging import LOGGER_NAME, latency_bucket_ms, request_id_ctx_var

REQUEST_ID_HEADER = "x-request-id"
QUIET_PATHS = {"/healthz", "/readyz"}
SLOW_REQUEST_MS = 1000

logger = logging.getLogger(LOGGER_NAME)


def _completion_level(path: str, elapsed_ms: float) -> int:
    if path in QUIET_PATHS:
        return logging.DEBUG
    if elapsed_ms >= SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.INFO


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the request, echo it back, log completion."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = rid

        bound = request_id_ctx_var.set(rid)
        started = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(bound)
        elapsed_ms = (time.monotonic() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = rid
        logger.log(
            _completion_level(request.url.path, elapsed_ms),
            "request.complete",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
            },
        )
        return response
