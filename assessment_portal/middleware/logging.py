import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("assessment_portal.requests")

CORRELATION_HEADER = "X-Correlation-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Attach a correlation id to every request and log method, path, status and latency."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex[:12]
        request.state.correlation_id = correlation_id
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"[{correlation_id}] {request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)"
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
