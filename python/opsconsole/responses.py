"""Response envelopes and exception handlers.

Every body the API returns is one of:
- { "data": ... }
- { "error": { "code": "E_...", "message": "...", "request_id": "..." } }

The request_id lets an operator quote a failure back to support; it matches
the X-Request-ID response header and the request_id on log entries.

Upstream failures (Cosmos DB, Service Bus) keep the service's own message,
so an operator sees "429 Too Many Requests" rather than a generic error.
Unexpected exceptions never leak their text.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from opsconsole.errors import ApiError, ApiErrorCode, ConfigurationError, TransportError
from opsconsole.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Framework-raised HTTP errors (unknown route, wrong method, ...)
HTTP_STATUS_TO_CODE: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    """Wrap a payload in the success envelope."""
    return {"data": data}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Build the error envelope.

    Args:
        code: The error code.
        message: Message shown to the operator.
        request_id: Correlation id. Taken from the logging context when omitted,
            and left out of the body when there is none.
    """
    error = {"code": code.value, "message": message}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _error_json(status_code: int, code: ApiErrorCode, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if isinstance(exc, ConfigurationError):
        logger.error("backend_not_configured", error=exc.message)
    elif isinstance(exc, TransportError):
        logger.warning("upstream_failed", code=exc.code.value, error=exc.message)
    return _error_json(exc.status_code, exc.code, exc.message)


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = HTTP_STATUS_TO_CODE.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _error_json(exc.status_code, code, str(exc.detail) if exc.detail else "Request failed")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback server-side and answer a bare 500."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return _error_json(500, ApiErrorCode.E_INTERNAL, "Internal server error")
