"""
Custom exceptions for gohttp.

This module defines the exception hierarchy used throughout
the library. Request timeouts are not raised: they are reported
through ``ResponseRecord.timeout`` instead.
"""

from typing import Optional


class HTTPCoreError(Exception):
    """Base exception for all gohttp errors."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConnectionError(HTTPCoreError):
    """Raised when there's an error with network connections."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Connection error: {message}", cause)


class ConnectionTimeout(ConnectionError):
    """Raised when an HTTP/2 session does not become ready in time."""
    
    def __init__(self, message: str, timeout: Optional[float] = None) -> None:
        if timeout is not None:
            message = f"{message} (waited {timeout}s)"
        super().__init__(message)
        self.timeout = timeout


class ProtocolError(HTTPCoreError):
    """Raised when there's an error with HTTP protocol handling."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Protocol error: {message}", cause)


class StreamError(HTTPCoreError):
    """Raised when a request body stream or upload file fails."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Stream error: {message}", cause)


class InvalidTarget(HTTPCoreError):
    """Raised when a URL or path cannot be parsed."""
    
    def __init__(self, target: str, reason: str = "") -> None:
        message = f"Invalid target: {target!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.target = target


class MissingBody(HTTPCoreError):
    """Raised before any I/O when a method requires a body and none was given."""
    
    def __init__(self, method: str) -> None:
        super().__init__(f"{method} must be sent with body data")
        self.method = method


class ResponseTooLarge(HTTPCoreError):
    """Raised when a response body exceeds the configured ceiling."""
    
    def __init__(self, limit: int) -> None:
        super().__init__(f"Response body too large (limit: {limit} bytes)")
        self.limit = limit


class RequestTimeout(HTTPCoreError):
    """Error value attached to responses whose request timed out."""
    
    def __init__(self, timeout: Optional[float] = None) -> None:
        message = "Request timed out"
        if timeout is not None:
            message = f"{message} (timeout: {timeout}s)"
        super().__init__(message)
        self.timeout = timeout


class DecodeError(HTTPCoreError):
    """Raised when a response body is not valid JSON."""
    
    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Decode error: {message}", cause)
