"""
Error hierarchy for the upstream origins the survey adapters talk to.

Every failure raised by an HTTP client is an APIError; the `retryable`
flag tells the client's retry loop whether another attempt is worthwhile.
Adapters let these propagate and the orchestrator records them as a
per-source failure.
"""

from typing import Optional, Dict, Any


class APIError(Exception):
    """
    Base exception for upstream fetch failures.

    Attributes:
        message: Human-readable error description
        source: Origin name (e.g. 'fred', 'conference_board')
        status_code: HTTP status code if applicable
        response_data: Parsed payload, when there was one
        retryable: Whether the client should try again
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.source = source
        self.status_code = status_code
        self.response_data = response_data
        self.retryable = retryable

    def __str__(self) -> str:
        text = self.message
        if self.source:
            text = f"[{self.source}] {text}"
        if self.status_code:
            text = f"{text} (HTTP {self.status_code})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for log records and API error bodies."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source": self.source,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }


class RetryableError(APIError):
    """Transient failure: 5xx responses, timeouts, dropped connections."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, source, status_code, response_data, retryable=True)


class RateLimitError(APIError):
    """
    HTTP 429 from an origin.

    retry_after is the number of seconds to wait before the next attempt.
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        retry_after: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, source, 429, response_data, retryable=True)
        self.retry_after = retry_after or 60


class FatalError(APIError):
    """Permanent failure; retrying the same request will not help."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, source, status_code, response_data, retryable=False)


class AuthenticationError(FatalError):
    """Rejected credentials (HTTP 401, or FRED's invalid api_key error)."""

    def __init__(
        self,
        message: str = "Authentication failed - check API key",
        source: Optional[str] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, source, 401, response_data)


class NotFoundError(FatalError):
    """The page, workbook or series no longer exists at its URL."""

    def __init__(
        self,
        message: str = "Resource not found",
        source: Optional[str] = None,
        resource_id: Optional[str] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        if resource_id:
            message = f"{message}: {resource_id}"
        super().__init__(message, source, 404, response_data)
        self.resource_id = resource_id


class ValidationError(FatalError):
    """The origin rejected the request parameters (HTTP 400)."""

    def __init__(
        self,
        message: str = "Invalid request parameters",
        source: Optional[str] = None,
        invalid_params: Optional[Dict[str, str]] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, source, 400, response_data)
        self.invalid_params = invalid_params or {}


class ParseError(FatalError):
    """
    The payload arrived but its layout is not what the adapter expects.

    Raised when a workbook is unreadable or lacks its sheet or header row.
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message, source)


def classify_http_error(
    status_code: int, response_text: str = "", source: Optional[str] = None
) -> APIError:
    """
    Map an HTTP error status onto the matching APIError subclass.

    Args:
        status_code: HTTP status code
        response_text: Response body (truncated in the message)
        source: Origin name

    Returns:
        APIError subclass instance
    """
    snippet = response_text[:200]
    if status_code == 429:
        return RateLimitError(f"Rate limited: {snippet}", source=source)
    if status_code == 401:
        return AuthenticationError(f"Authentication failed: {snippet}", source=source)
    if status_code == 403:
        return FatalError(f"Access forbidden: {snippet}", source=source, status_code=403)
    if status_code == 404:
        return NotFoundError(f"Not found: {snippet}", source=source)
    if status_code == 400:
        return ValidationError(f"Bad request: {snippet}", source=source)
    if 500 <= status_code < 600:
        return RetryableError(
            f"Server error: {snippet}", source=source, status_code=status_code
        )
    return APIError(
        f"HTTP error {status_code}: {snippet}",
        source=source,
        status_code=status_code,
    )
