"""X-Request-ID middleware for request correlation.

Each request gets a correlation id: the caller's X-Request-ID when it is a
well-formed token, otherwise a fresh UUID4. The id is:
- stored on request.state.request_id
- bound to the logging context together with the method and path
- echoed in the X-Request-ID response header
- included in error envelopes by the exception handlers

One "request_completed" access entry is logged per request. Query strings
are never logged, since operator queries can contain payload fragments.

Must be registered last so it wraps every other middleware.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from opsconsole.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

# Alphanumeric plus dots, hyphens and underscores (UUIDs included)
VALID_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

logger = get_logger(__name__)


def resolve_request_id(incoming: str | None) -> str:
    """Return the id to use for a request.

    Well-formed incoming ids are kept, with UUIDs lower-cased. Missing,
    oversized or malformed ids are replaced by a new UUID4.
    """
    if incoming and len(incoming.encode("utf-8")) <= MAX_REQUEST_ID_LENGTH:
        if UUID_PATTERN.match(incoming):
            return incoming.lower()
        if VALID_REQUEST_ID_PATTERN.match(incoming):
            return incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns correlation ids and writes the access log.

    Args:
        app: The ASGI application.
        log_requests: If True, log one access entry per request.
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()

        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests:
                duration_ms = (time.monotonic() - start_time) * 1000
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round(duration_ms, 2),
                )
            return response

        except Exception:
            # unhandled_exception_handler turns this into the 500 envelope
            logger.exception("request_failed")
            raise

        finally:
            clear_request_context()
