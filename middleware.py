# middleware.py
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics import increment_http_requests
from services.observability import set_request_id

logger = logging.getLogger("payouts.http")

REQUEST_ID_HEADER = "X-Request-Id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request id in, request id out. Every request gets one access-log line
    and one http_requests_total increment labelled by route template, not
    by raw path.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        set_request_id(request_id)
        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            route = request.scope.get("route")
            template = getattr(route, "path", None) or "unmatched"
            increment_http_requests(template, status)
            logger.info(
                "%s %s route=%s status=%s duration_ms=%.1f request_id=%s",
                request.method,
                request.url.path,
                template,
                status,
                (time.perf_counter() - started) * 1000,
                request_id,
            )
            set_request_id(None)
