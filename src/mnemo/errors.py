"""Error taxonomy: every failure ends up as exactly one ApiErrorResponse.

The codes form a closed set. Network failures, HTTP statuses, timeouts and
schema violations are all normalized here before they leave the client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    API_ERROR = "API_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    SERVER_ERROR = "SERVER_ERROR"


ERROR_CODES = tuple(code.value for code in ErrorCode)

_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTH_ERROR,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    408: ErrorCode.TIMEOUT_ERROR,
    409: ErrorCode.CONFLICT,
    429: ErrorCode.RATE_LIMIT_ERROR,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


@dataclass
class ApiErrorResponse:
    """Structured error carried by a failed envelope."""

    code: ErrorCode
    message: str
    status_code: int | None = None
    details: Any = None
    request_id: str | None = None
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase keys, unset fields omitted)."""
        data: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.status_code is not None:
            data["statusCode"] = self.status_code
        if self.details is not None:
            data["details"] = self.details
        if self.request_id is not None:
            data["requestId"] = self.request_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApiErrorResponse:
        return cls(
            code=ErrorCode(data["code"]),
            message=data["message"],
            status_code=data.get("statusCode"),
            details=data.get("details"),
            request_id=data.get("requestId"),
            timestamp=data.get("timestamp") or _now_iso(),
        )


def status_to_error_code(status: int | None) -> ErrorCode:
    """Map an HTTP status (or its absence) to an error code. Total function."""
    if status is None:
        return ErrorCode.NETWORK_ERROR
    if status in _STATUS_CODES:
        return _STATUS_CODES[status]
    if 500 <= status <= 599:
        return ErrorCode.SERVER_ERROR
    return ErrorCode.API_ERROR


def create_error_response(
    message: str,
    code: ErrorCode = ErrorCode.API_ERROR,
    status_code: int | None = None,
    details: Any = None,
    request_id: str | None = None,
) -> ApiErrorResponse:
    return ApiErrorResponse(
        code=code,
        message=message,
        status_code=status_code,
        details=details,
        request_id=request_id,
    )


def create_error_from_response(
    status: int,
    reason: str | None,
    body: Any = None,
    request_id: str | None = None,
) -> ApiErrorResponse:
    """Build an error from a non-2xx response, preferring the body's message."""
    message = f"HTTP {status}: {reason or 'Unknown status'}"
    details = None

    if isinstance(body, dict):
        if isinstance(body.get("error"), str):
            message = body["error"]
        elif isinstance(body.get("message"), str):
            message = body["message"]
        elif isinstance(body.get("error"), dict):
            nested = body["error"]
            if isinstance(nested.get("message"), str):
                message = nested["message"]
        if body.get("details"):
            details = body["details"]
    elif isinstance(body, str) and body.strip():
        message = f"HTTP {status}: {body.strip()[:200]}"

    return create_error_response(
        message, status_to_error_code(status), status, details, request_id
    )


def is_api_error_response(value: Any) -> bool:
    """True for an ApiErrorResponse or its wire-form dict."""
    if isinstance(value, ApiErrorResponse):
        return True
    if not isinstance(value, dict):
        return False
    return (
        value.get("code") in ERROR_CODES
        and isinstance(value.get("message"), str)
    )


# ── Exceptions ───────────────────────────────────────────────


class MemoryClientError(Exception):
    """Base error for code paths that prefer raising over envelopes."""

    code: ErrorCode = ErrorCode.API_ERROR
    default_status: int | None = None

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        status_code: int | None = None,
        details: Any = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.status_code = status_code if status_code is not None else self.default_status
        self.details = details
        self.request_id = request_id

    def to_response(self) -> ApiErrorResponse:
        return create_error_response(
            self.message, self.code, self.status_code, self.details, self.request_id
        )

    @classmethod
    def from_response(cls, error: ApiErrorResponse) -> MemoryClientError:
        """Rebuild the matching exception subclass from an error response."""
        exc_cls = _EXCEPTIONS_BY_CODE.get(error.code, MemoryClientError)
        return exc_cls(
            error.message,
            code=error.code,
            status_code=error.status_code,
            details=error.details,
            request_id=error.request_id,
        )


class ApiError(MemoryClientError):
    code = ErrorCode.API_ERROR

    @classmethod
    def from_http(cls, status: int, reason: str | None, body: Any = None) -> ApiError:
        error = create_error_from_response(status, reason, body)
        return cls(error.message, status_code=status, details=error.details)


class AuthenticationError(MemoryClientError):
    code = ErrorCode.AUTH_ERROR
    default_status = 401

    def __init__(self, message: str = "Authentication required", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(MemoryClientError):
    code = ErrorCode.FORBIDDEN
    default_status = 403


class ValidationError(MemoryClientError):
    code = ErrorCode.VALIDATION_ERROR
    default_status = 400


class RequestTimeoutError(MemoryClientError):
    code = ErrorCode.TIMEOUT_ERROR
    default_status = 408

    def __init__(self, message: str = "Request timeout", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class RateLimitError(MemoryClientError):
    code = ErrorCode.RATE_LIMIT_ERROR
    default_status = 429

    def __init__(self, message: str = "Rate limit exceeded", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(MemoryClientError):
    code = ErrorCode.NOT_FOUND
    default_status = 404


class ConflictError(MemoryClientError):
    code = ErrorCode.CONFLICT
    default_status = 409


class NetworkError(MemoryClientError):
    code = ErrorCode.NETWORK_ERROR


class ServerError(MemoryClientError):
    code = ErrorCode.SERVER_ERROR
    default_status = 500


_EXCEPTIONS_BY_CODE: dict[ErrorCode, type[MemoryClientError]] = {
    ErrorCode.API_ERROR: ApiError,
    ErrorCode.AUTH_ERROR: AuthenticationError,
    ErrorCode.FORBIDDEN: ForbiddenError,
    ErrorCode.VALIDATION_ERROR: ValidationError,
    ErrorCode.TIMEOUT_ERROR: RequestTimeoutError,
    ErrorCode.RATE_LIMIT_ERROR: RateLimitError,
    ErrorCode.NOT_FOUND: NotFoundError,
    ErrorCode.CONFLICT: ConflictError,
    ErrorCode.NETWORK_ERROR: NetworkError,
    ErrorCode.SERVER_ERROR: ServerError,
}


def create_error_from_status(
    status: int | None, message: str, details: Any = None
) -> MemoryClientError:
    """Exception instance for an HTTP status (None means network failure)."""
    code = status_to_error_code(status)
    return _EXCEPTIONS_BY_CODE[code](message, code=code, status_code=status, details=details)
