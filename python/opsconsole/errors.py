"""API and console error definitions.

All API errors are defined here with their corresponding HTTP status codes.

Console error taxonomy:
- TransportError: network, auth or service failure. Surfaced verbatim, never retried.
- MalformedResponseError: payload with an unexpected shape. A kind of TransportError.
- ResubmissionFailure: the messaging service refused a resubmitted message.
- ConfigurationError: a backend was used without the settings it needs.
- PageRequestInFlightError / StalePageError: session request discipline.
- ResubmissionInProgressError / InvalidWorkflowStateError: resubmission workflow discipline.

An empty page is not an error.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"
    E_MESSAGE_NOT_FOUND = "E_MESSAGE_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_FIELD = "E_INVALID_FIELD"
    E_INVALID_SESSION_KIND = "E_INVALID_SESSION_KIND"

    # Conflict errors (409)
    E_REQUEST_IN_FLIGHT = "E_REQUEST_IN_FLIGHT"
    E_STALE_PAGE = "E_STALE_PAGE"
    E_RESUBMISSION_IN_PROGRESS = "E_RESUBMISSION_IN_PROGRESS"
    E_INVALID_STATE = "E_INVALID_STATE"

    # Upstream errors
    E_TRANSPORT = "E_TRANSPORT"  # 502
    E_MALFORMED_RESPONSE = "E_MALFORMED_RESPONSE"  # 502
    E_RESUBMISSION_FAILED = "E_RESUBMISSION_FAILED"  # 502

    # Server errors
    E_NOT_CONFIGURED = "E_NOT_CONFIGURED"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_SESSION_NOT_FOUND: 404,
    ApiErrorCode.E_MESSAGE_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_FIELD: 400,
    ApiErrorCode.E_INVALID_SESSION_KIND: 400,
    ApiErrorCode.E_REQUEST_IN_FLIGHT: 409,
    ApiErrorCode.E_STALE_PAGE: 409,
    ApiErrorCode.E_RESUBMISSION_IN_PROGRESS: 409,
    ApiErrorCode.E_INVALID_STATE: 409,
    ApiErrorCode.E_TRANSPORT: 502,
    ApiErrorCode.E_MALFORMED_RESPONSE: 502,
    ApiErrorCode.E_RESUBMISSION_FAILED: 502,
    ApiErrorCode.E_NOT_CONFIGURED: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class TransportError(ApiError):
    """Remote service failure (network, auth, throttling, outage).

    The message is surfaced to the caller verbatim. Nothing in the console
    retries a TransportError; the operator restarts the session instead.
    """

    def __init__(self, message: str, code: ApiErrorCode = ApiErrorCode.E_TRANSPORT):
        super().__init__(code, message)


class MalformedResponseError(TransportError):
    """Remote payload is not JSON or lacks the expected shape."""

    def __init__(self, message: str):
        super().__init__(message, code=ApiErrorCode.E_MALFORMED_RESPONSE)


class ResubmissionFailure(ApiError):
    """The messaging service reported failure for a resubmitted message."""

    def __init__(self, message: str = "Failed to resubmit message"):
        super().__init__(ApiErrorCode.E_RESUBMISSION_FAILED, message)


class ConfigurationError(ApiError):
    """A backend was used before its connection settings were provided."""

    def __init__(self, message: str):
        super().__init__(ApiErrorCode.E_NOT_CONFIGURED, message)


class PageRequestInFlightError(ApiError):
    """A page request is already outstanding for this session."""

    def __init__(self, message: str = "A page request is already in flight for this session"):
        super().__init__(ApiErrorCode.E_REQUEST_IN_FLIGHT, message)


class StalePageError(ApiError):
    """The page request was superseded or its session was closed."""

    def __init__(self, message: str = "Page request was superseded"):
        super().__init__(ApiErrorCode.E_STALE_PAGE, message)


class ResubmissionInProgressError(ApiError):
    """Another resubmission is awaiting confirmation or in flight."""

    def __init__(self, message: str = "Another resubmission is already in progress"):
        super().__init__(ApiErrorCode.E_RESUBMISSION_IN_PROGRESS, message)


class InvalidWorkflowStateError(ApiError):
    """A workflow action was requested from a state that does not allow it."""

    def __init__(self, message: str):
        super().__init__(ApiErrorCode.E_INVALID_STATE, message)
