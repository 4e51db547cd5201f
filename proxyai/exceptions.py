# proxyai/exceptions.py
"""
Exception classes for proxyai.

This module defines the error taxonomy used by the client: credential
failures, request construction, transport, HTTP status and stream decoding.
Every public entry point fails with one of these classes.
"""

from typing import Any, Optional


class ProxyAIError(Exception):
    """
    Base exception for all proxyai errors.

    Args:
        message: Error message describing what went wrong
        code: Optional error code for programmatic handling
        details: Optional additional details about the error
    """

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def __str__(self):
        return self.message

    def to_dict(self):
        """
        Convert exception to dictionary representation.

        Returns:
            dict: Dictionary containing error information
        """
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details
        }


class ConfigurationError(ProxyAIError):
    """
    Raised for configuration-related errors.

    Args:
        config_key: The configuration key that has an invalid value
        invalid_value: The invalid value that was provided
        valid_values: List of valid values for this configuration key
    """

    def __init__(self, message: str, config_key: Optional[str] = None,
                 invalid_value: Optional[str] = None, valid_values: Optional[list] = None):
        self.config_key = config_key
        self.invalid_value = invalid_value
        self.valid_values = valid_values

        super().__init__(message, code="CONFIGURATION_ERROR", details={
            "config_key": config_key,
            "invalid_value": invalid_value,
            "valid_values": valid_values
        })


class AuthError(ProxyAIError):
    """Base class for failures while resolving a request authorization."""


class AttestationUnavailable(AuthError):
    """
    Raised when no device attestation can be produced.

    The attestation provider reported that the current platform cannot
    attest, and no bypass value was configured on the client.
    """

    def __init__(self, message: str = "Device attestation is unavailable on this platform"):
        super().__init__(message, code="ATTESTATION_UNAVAILABLE")


class AuthorizationDenied(AuthError):
    """
    Raised when the gateway refuses to authorize a request.

    This covers both a rejected credential exchange and an upstream
    response that still reports an expired authorization after one
    re-resolution.

    Args:
        status_code: HTTP status reported by the gateway (if any)
        reason: Structured reason returned by the gateway (if any)
    """

    def __init__(self, message: str = "Authorization denied",
                 status_code: Optional[int] = None, reason: Optional[str] = None):
        self.status_code = status_code
        self.reason = reason

        super().__init__(message, code="AUTHORIZATION_DENIED", details={
            "status_code": status_code,
            "reason": reason
        })


class EncodingError(ProxyAIError):
    """
    Raised when a request cannot be constructed.

    Args:
        field: The parameter that could not be encoded (if known)
    """

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, code="ENCODING_ERROR", details={"field": field})


class TransportError(ProxyAIError):
    """
    Raised for connectivity failures below the HTTP layer.

    Args:
        url: The URL that was being accessed
        original_error: The transport exception that caused the failure
    """

    def __init__(self, message: str, url: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        self.url = url
        self.original_error = original_error

        super().__init__(message, code="TRANSPORT_ERROR", details={
            "url": url,
            "original_error": str(original_error) if original_error else None
        })


class TransportTimeoutError(TransportError):
    """Raised when the transport's configured timeout elapses."""

    def __init__(self, message: str, url: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        super().__init__(message, url=url, original_error=original_error)
        self.code = "TRANSPORT_TIMEOUT"


class HTTPStatusError(ProxyAIError):
    """
    Raised for non-2xx responses.

    Args:
        status_code: HTTP status code of the response
        error: Structured API error payload, when the body carried one
        body: Raw response body text

    Example:
        >>> try:
        ...     client.retrieve_thread("thread_missing")
        ... except HTTPStatusError as e:
        ...     print(e.status_code, e.error.message if e.error else e.body)
    """

    def __init__(self, message: str, status_code: int, error: Any = None,
                 body: Optional[str] = None):
        self.status_code = status_code
        self.error = error
        self.body = body

        super().__init__(message, code="HTTP_STATUS_ERROR", details={
            "status_code": status_code,
            "error": error.to_dict() if error is not None else None
        })


class APIRateLimitError(HTTPStatusError):
    """
    Raised when the gateway or upstream API rate limit is exceeded.

    Args:
        retry_after: Number of seconds to wait before retrying
    """

    def __init__(self, message: str = "API rate limit exceeded", status_code: int = 429,
                 error: Any = None, body: Optional[str] = None,
                 retry_after: Optional[float] = None):
        if retry_after:
            message += f". Retry after {retry_after:g} seconds"
        super().__init__(message, status_code=status_code, error=error, body=body)
        self.retry_after = retry_after
        self.code = "RATE_LIMIT_EXCEEDED"
        self.details["retry_after"] = retry_after


class StreamAPIError(ProxyAIError):
    """
    Raised when a stream delivers an error payload instead of a chunk.

    Args:
        error: Structured API error payload carried by the frame
    """

    def __init__(self, message: str, error: Any = None):
        self.error = error
        super().__init__(message, code="STREAM_API_ERROR", details={
            "error": error.to_dict() if error is not None else None
        })


class TruncatedStream(ProxyAIError):
    """Raised when a stream ends without its end-of-stream sentinel."""

    def __init__(self, message: str = "Stream ended before the end-of-stream sentinel"):
        super().__init__(message, code="TRUNCATED_STREAM")


class DecodeError(ProxyAIError):
    """
    Raised when a frame or buffered body is not valid JSON of the expected shape.

    Args:
        payload: The text that failed to decode (truncated for display)
        original_error: The parser exception, if any
    """

    def __init__(self, message: str, payload: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        self.payload = payload
        self.original_error = original_error

        super().__init__(message, code="DECODE_ERROR", details={
            "payload": payload[:200] if payload else payload,
            "original_error": str(original_error) if original_error else None
        })

