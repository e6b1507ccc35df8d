"""
Request/Response logging middleware.

Binds a request id for every log line emitted while a request is in flight.
"""
import time
import uuid
from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..core.logging import get_logger
from ..utils.client_ip import client_ip

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs request start and completion with timing, and echoes X-Request-ID.

    Webhook bodies and signature headers are never logged here.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        logger.info(
            "request.started",
            method=request.method,
            path=request.url.path,
            client=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            idempotency_key=request.headers.get("x-idempotency-key"),
        )

        try:
            response = await call_next(request)
            logger.info(
                "request.completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            logger.error(
                "request.failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                exc_info=True,
            )
            # Re-raise to let FastAPI's exception handlers deal with it
            raise

        finally:
            structlog.contextvars.unbind_contextvars("request_id")
