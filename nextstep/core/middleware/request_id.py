import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from nextstep.core.logging import LOGGER_NAME, request_id_ctx_var, latency_bucket_ms

logger = logging.getLogger(LOGGER_NAME)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Bind an x-request-id to the request and emit one completion log line.

    The id is reused from the incoming header when present (so a browser
    retry or a Stripe redelivery can be traced), otherwise minted.
    """

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)

        response.headers[self.header_name] = rid
        logger.info(
            "request.complete",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "user_id": getattr(request.state, "user_id", None),
                "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
            },
        )
        return response
