import logging
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from benefits.core.logging import request_id_ctx_var, latency_bucket_ms


logger = logging.getLogger("benefits")

# Query parameters that carry the caller's subscriber identity
SUBSCRIBER_QUERY_PARAMS = ("patientId", "userId")


def subscriber_from_query(request) -> Optional[str]:
    """Best-effort subscriber id for access logs; never validated here."""
    for name in SUBSCRIBER_QUERY_PARAMS:
        value = request.query_params.get(name)
        if value and value.strip():
            return value.strip()[:200]
    return None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Bind a request id for the lifetime of each request.

    Incoming x-request-id headers are honored so webhook retries and client
    calls can be correlated; otherwise a uuid4 is issued. The id is echoed on
    every response, and one request.complete line is logged with the route,
    status, latency bucket and, when the query names one, the subscriber.
    """

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        elapsed_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid

        route = request.scope.get("route")
        extra = {
            "request_id": rid,
            "path": getattr(route, "path", request.url.path),
            "method": request.method,
            "status": response.status_code,
            "latency_bucket": latency_bucket_ms(elapsed_ms),
        }
        subscriber_id = subscriber_from_query(request)
        if subscriber_id:
            extra["subscriber_id"] = subscriber_id

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, "request.complete", extra=extra)
        return response
