"""Core exceptions for the relay."""

from typing import Optional


class ProxyError(Exception):
    """Base exception for relay errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(ProxyError):
    """Raised when an incoming request is invalid."""

    def __init__(
        self, message: str, code: str = "invalid_request", status_code: int = 400
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class AuthenticationError(InvalidRequestError):
    """Raised when the caller credential is missing or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid_authorization", status_code=401)


class UpstreamError(ProxyError):
    """Raised when the upstream cannot be reached or answers with an error.

    ``body`` holds the raw upstream error body when there was one.
    """

    def __init__(
        self, message: str, status_code: int = 502, body: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
