"""
Exception taxonomy for the Vanguard client.

  ValidationError  - caught before any request is sent (missing id, empty remark)
  TransportError   - no response at all (timeout, connection refused); retried
  ApiError         - the server answered with a 4xx/5xx status; never retried
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional


ERROR_MESSAGES = {
    "NETWORK_ERROR": "Network error. Please check your connection.",
    "SERVER_ERROR": "Server error. Please try again later.",
    "UNAUTHORIZED": "You are not authorized to perform this action.",
    "NOT_FOUND": "The requested resource was not found.",
    "VALIDATION_ERROR": "Please check your input and try again.",
    "TIMEOUT": "Request timed out. Please try again.",
    "TOO_MANY_REQUESTS": "Too many requests. Please wait and try again.",
    "UNKNOWN_ERROR": "An unexpected error occurred.",
}


class VanguardError(Exception):
    """Base class for all client errors."""
    pass


class ValidationError(VanguardError):
    """Raised when input is rejected before a request is made."""
    pass


class UnknownStatusError(ValidationError):
    """Raised when a status string matches none of the known spellings."""
    pass


class TransportError(VanguardError):
    """No HTTP response was received."""
    pass


class NetworkError(TransportError):
    pass


class RequestTimeout(TransportError):
    pass


class ApiError(VanguardError):
    """The backend returned an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "timestamp": self.timestamp,
        }


class UnauthorizedError(ApiError):
    """401: stored credentials were rejected."""
    pass


def message_from_body(data: Any) -> Optional[str]:
    """Pull a human-readable message out of an error body, if it has one."""
    if not data:
        return None
    if isinstance(data, str):
        return data
    if not isinstance(data, dict):
        return None

    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    if data.get("message"):
        return data["message"]
    if isinstance(error, str) and error:
        return error
    errors = data.get("errors")
    if isinstance(errors, list) and errors:
        return ", ".join(
            e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors
        )
    return None


def message_for_status(status_code: Optional[int]) -> Optional[str]:
    if status_code == 400:
        return ERROR_MESSAGES["VALIDATION_ERROR"]
    if status_code in (401, 403):
        return ERROR_MESSAGES["UNAUTHORIZED"]
    if status_code == 404:
        return ERROR_MESSAGES["NOT_FOUND"]
    if status_code == 429:
        return ERROR_MESSAGES["TOO_MANY_REQUESTS"]
    if status_code in (500, 502, 503, 504):
        return ERROR_MESSAGES["SERVER_ERROR"]
    return None


def extract_error_message(error: BaseException) -> str:
    """Best-effort user-facing message for any client error."""
    if isinstance(error, ApiError):
        from_body = message_from_body(error.payload)
        if from_body:
            return from_body
        return message_for_status(error.status_code) or error.message or ERROR_MESSAGES["UNKNOWN_ERROR"]

    if isinstance(error, RequestTimeout):
        return ERROR_MESSAGES["TIMEOUT"]
    if isinstance(error, TransportError):
        return ERROR_MESSAGES["NETWORK_ERROR"]

    return str(error) or ERROR_MESSAGES["UNKNOWN_ERROR"]
