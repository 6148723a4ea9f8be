"""
Request Logging Middleware

Middleware that:
- Reuses the gateway's X-Request-ID, or generates one
- Propagates the request id to all logs via contextvars
- Logs request completion with timing and the acting user
- Records request metrics for Prometheus, labelled by route template
"""
import time
import uuid
import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging_config import clear_request_id, get_request_id, sanitize_log_value, set_request_id
from app.core.metrics import record_request_metrics

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _route_template(request: Request) -> str:
    """Matched route path (e.g. /api/v1/content/{content_id}), or the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every HTTP request with timing and a correlation id.

    The id is set in context before the route runs, so service logs and
    background tasks scheduled by the route carry it too.
    """

    # Paths to exclude from detailed logging (health checks, etc.)
    EXCLUDED_PATHS = {'/health', '/metrics', '/docs', '/redoc', '/openapi.json'}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        request_id = sanitize_log_value(incoming)[:64] if incoming else str(uuid.uuid4())
        token = set_request_id(request_id)
        request.state.request_id = request_id

        start_time = time.perf_counter()
        method = request.method
        path = request.url.path
        should_log = path not in self.EXCLUDED_PATHS

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.perf_counter() - start_time
            logger.error(
                "Request failed with exception",
                extra={
                    "event_type": "request_error",
                    "method": method,
                    "path": path,
                    "response_time_ms": round(elapsed * 1000, 2),
                    "error_type": type(e).__name__,
                },
                exc_info=True
            )
            record_request_metrics(method, _route_template(request), 500, elapsed)
            raise
        finally:
            clear_request_id(token)

        elapsed = time.perf_counter() - start_time
        response.headers[REQUEST_ID_HEADER] = request_id

        if should_log:
            log_level = logging.INFO
            if response.status_code >= 500:
                log_level = logging.ERROR
            elif response.status_code >= 400:
                log_level = logging.WARNING
            logger.log(
                log_level,
                f"{method} {path} {response.status_code}",
                extra={
                    "event_type": "request_complete",
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "response_time_ms": round(elapsed * 1000, 2),
                    "user_id": request.headers.get("X-User-Id"),
                }
            )

        record_request_metrics(method, _route_template(request), response.status_code, elapsed)
        return response


def get_current_request_id() -> str:
    """Current request id, or "no-request" outside a request."""
    return get_request_id() or "no-request"
