"""Request-scoped middleware for API requests."""

import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_INBOUND_ID_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id, echoed in the X-Request-ID header and in
    the response envelope's meta.request_id.

    An id supplied by the load balancer is kept so provider webhook retries
    and browser requests can be traced end to end.
    """

    async def dispatch(self, request: Request, call_next):
        inbound = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = inbound if 0 < len(inbound) <= _MAX_INBOUND_ID_LENGTH else str(uuid4())
        request.state.request_id = request_id

        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {elapsed_ms:.0f}ms [{request_id}]"
        )
        return response
