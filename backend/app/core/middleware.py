"""
Per-request correlation and access logging.

Every response carries ``X-Request-ID`` (echoed from the caller or freshly
minted) and ``X-Process-Time``. While the request runs, its id, client,
path and any ``/threads/<id>`` segment are bound into the log context, so
store and dispatcher lines emitted on its behalf can be tied back to it.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import bind_request_context, reset_request_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
PROCESS_TIME_HEADER = "X-Process-Time"

_QUIET_PREFIXES = ("/health/live", "/docs", "/redoc", "/openapi", "/favicon")
_THREAD_PATH = re.compile(r"/threads/([^/]+)")


def thread_id_from_path(path: str) -> Optional[str]:
    match = _THREAD_PATH.search(path)
    return match.group(1) if match else None


def _access_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind request context, time the call, emit one access line."""

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        token = bind_request_context(
            request_id=request_id,
            client_ip=request.client.host if request.client else None,
            method=request.method,
            endpoint=path,
            thread_id=thread_id_from_path(path),
        )
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers[PROCESS_TIME_HEADER] = (
                f"{(time.perf_counter() - start) * 1000:.1f}ms"
            )
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            if status_code >= 500 or not path.startswith(_QUIET_PREFIXES):
                logger.log(
                    _access_level(status_code),
                    "%s %s → %d (%.1fms)",
                    request.method, path, status_code, duration_ms,
                    extra={"duration_ms": round(duration_ms, 1), "status_code": status_code},
                )
            reset_request_context(token)
