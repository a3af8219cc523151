"""
Middleware for request tracking and logging
"""
import time
import uuid
import logging
from typing import Callable, Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs its lifecycle.

    An id sent by the caller in ``X-Request-ID`` is reused so that frontend
    and backend logs line up. For the event stream the logged duration is
    time to first byte, not the lifetime of the stream.
    """

    def __init__(self, app: ASGIApp, quiet_paths: Iterable[str] = ("/health",)):
        super().__init__(app)
        self.quiet_paths = tuple(quiet_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        label = f"{request.method} {request.url.path}"
        quiet = request.url.path.endswith(self.quiet_paths)

        request.state.request_id = request_id
        started = time.perf_counter()
        if not quiet:
            logger.info(f"[HTTP] {label} started - Request ID: {request_id}")

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.error(f"[HTTP] {label} failed after {elapsed_ms}ms: {e} - Request ID: {request_id}")
            raise

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if not quiet:
            streaming = response.headers.get("content-type", "").startswith("text/event-stream")
            suffix = " (stream opened)" if streaming else ""
            logger.info(
                f"[HTTP] {label} -> {response.status_code} in {elapsed_ms}ms{suffix} - Request ID: {request_id}"
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = str(elapsed_ms)
        return response
