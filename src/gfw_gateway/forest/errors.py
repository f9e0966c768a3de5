"""Error taxonomy for the forest analytics gateway.

Every failure that leaves the gateway is rendered as the same envelope::

    {"error": {"message": ..., "code": ..., "status": ..., "timestamp": ...}}

Upstream-specific exception types (``httpx`` errors and the like) never
escape the transport layer; they are translated into ``UpstreamError``
carrying only a status, a code and a message.
"""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Stable error codes callers can branch on."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    GEOSTORE_ERROR = "GEOSTORE_ERROR"
    ANALYSIS_ERROR = "ANALYSIS_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    TIMEOUT = "TIMEOUT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    NOT_FOUND = "NOT_FOUND"
    HTTP_ERROR = "HTTP_ERROR"


ERROR_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.AUTH_ERROR: 401,
    ErrorCode.RATE_LIMIT: 429,
    ErrorCode.GEOSTORE_ERROR: 500,
    ErrorCode.ANALYSIS_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.UPSTREAM_ERROR: 502,
    ErrorCode.NOT_FOUND: 404,
}


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def error_envelope(
    message: str,
    code: str,
    status: int,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    """Build the uniform failure body."""
    error: Dict[str, Any] = {
        "message": message,
        "code": code,
        "status": status,
        "timestamp": utc_timestamp(),
    }
    if details is not None:
        error["details"] = details
    return {"error": error}


class GatewayError(Exception):
    """Base exception for failures surfaced by the gateway."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str = "Internal server error",
        *,
        code: Optional[ErrorCode] = None,
        status: Optional[int] = None,
        details: Optional[Any] = None,
        context: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = ErrorCode(code)
        self.status = status if status is not None else ERROR_STATUS.get(self.code, 500)
        self.details = details
        # Upstream context is only rendered in development mode
        self.context = context

    def to_response(self, debug: bool = False) -> Dict[str, Any]:
        """Render the error envelope.

        Args:
            debug: Include upstream context and the stack trace

        Returns:
            JSON-serialisable error body
        """
        body = error_envelope(self.message, self.code.value, self.status, self.details)
        if debug:
            if self.context:
                body["error"]["context"] = self.context
            body["error"]["stack"] = "".join(
                traceback.format_exception(type(self), self, self.__traceback__)
            )
        return body

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value}, status={self.status}, message={self.message!r})"


class UpstreamError(GatewayError):
    """Failure of a call to one of the upstream API families."""

    code = ErrorCode.UPSTREAM_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        http_status: Optional[int] = None,
        retriable: bool = False,
        context: Optional[str] = None,
    ):
        super().__init__(message, code=code, status=http_status, context=context)
        self.retriable = retriable

    @property
    def http_status(self) -> int:
        return self.status


class RequestValidationFailed(GatewayError):
    """Raised when inbound parameters violate the request rules."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, violations: List[Dict[str, str]], message: str = "Invalid request parameters"):
        super().__init__(message, details=violations)
        self.violations = violations
