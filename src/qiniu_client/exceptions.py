"""Structured exception classes for the Qiniu HTTP client."""

import json
from typing import Any, Dict, Optional, Tuple


class QiniuClientError(Exception):
    """Base exception for all Qiniu client errors.

    This exception serves as the parent class for all client specific
    exceptions, providing a consistent interface for error handling
    across the package.

    :param message: Human-readable error message
    :param code: Optional error code for programmatic handling
    :param details: Optional dictionary containing additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the exception with message, code, and details."""
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format.

        :return: Dictionary containing error code, message, and details
        """
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string.

        :return: JSON-encoded string representation of the exception
        """
        return json.dumps(self.to_dict())


class ConstructionError(QiniuClientError):
    """Raised when a request cannot be built.

    Covers malformed URLs, bodies that cannot be attached to a request
    and signing failures, all of which happen before anything is sent.

    :param message: Description of the construction failure
    :param url: Optional URL of the request being built
    """

    def __init__(self, message: str, url: Optional[str] = None):
        """Initialize construction error with message and optional URL."""
        details = {}
        if url:
            details["url"] = url
        super().__init__(message=message, code="CONSTRUCTION_ERROR", details=details)


class CancellationError(QiniuClientError):
    """Raised when the call context is cancelled.

    The message mirrors the context error (``"context canceled"``).
    Raised both when the context was already done before dispatch and
    when an in-flight request was cancelled through the transport.

    :param message: Context error message
    """

    def __init__(self, message: str = "context canceled"):
        """Initialize cancellation error with the context error message."""
        super().__init__(message=message, code="CANCELLATION_ERROR")


class DeadlineExceededError(CancellationError):
    """Raised when the call context deadline has passed."""

    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)
        self.code = "DEADLINE_EXCEEDED"


class TransportError(QiniuClientError):
    """Raised when the underlying transport fails.

    Wraps network level failures (connection refused, protocol errors,
    transport timeouts) reported by httpx.

    :param message: Description of the transport failure
    :param original_error: Optional original exception from the transport
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        """Initialize transport error with message and optional cause."""
        details = {}
        if original_error:
            details["original_error"] = str(original_error)
            details["error_type"] = type(original_error).__name__
        super().__init__(message=message, code="TRANSPORT_ERROR", details=details)
        self.original_error = original_error


class DecodeError(QiniuClientError):
    """Raised when a successful response body cannot be decoded.

    :param message: Description of the decode failure
    :param status_code: HTTP status of the response
    :param response_body: Optional raw body that failed to decode
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        """Initialize decode error with message and response details."""
        details: Dict[str, Any] = {}
        if status_code:
            details["status_code"] = status_code
        if response_body:
            details["response_body"] = response_body
        super().__init__(message=message, code="DECODE_ERROR", details=details)
        self.status_code = status_code
        self.response_body = response_body


class ValidationError(QiniuClientError):
    """Raised when validation fails.

    :param message: Description of the validation error
    :param field: Optional name of the field that failed validation
    :param value: Optional value that caused the validation failure
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
    ):
        """Initialize validation error with message and optional field/value."""
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message=message, code="VALIDATION_ERROR", details=details)


class ErrorInfo(QiniuClientError):
    """Structured error returned by the remote API.

    ``str(error)`` is only the server message; use :meth:`error_detail`
    for the complete picture (status, vendor errno, key and request id).

    :param code: HTTP status code of the response
    :param err: Error message reported by the server
    :param key: Resource key the error refers to
    :param reqid: Request id taken from the ``X-Reqid`` response header
    :param errno: Vendor specific error number
    """

    def __init__(
        self,
        code: int,
        err: str = "",
        key: str = "",
        reqid: str = "",
        errno: int = 0,
    ):
        super().__init__(message=err)
        # the HTTP status replaces the string code of the base class
        self.code = code
        self.err = err
        self.key = key
        self.reqid = reqid
        self.errno = errno

    def __str__(self) -> str:
        return self.err

    @property
    def http_code(self) -> int:
        return self.code

    def rpc_error(self) -> Tuple[int, int, str, str]:
        """Return ``(code, errno, key, err)``."""
        return self.code, self.errno, self.key, self.err

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire representation, omitting empty fields.

        :return: Dictionary with ``error``, ``key``, ``reqid``, ``errno``
            when set and ``code`` always
        """
        out: Dict[str, Any] = {}
        if self.err:
            out["error"] = self.err
        if self.key:
            out["key"] = self.key
        if self.reqid:
            out["reqid"] = self.reqid
        if self.errno:
            out["errno"] = self.errno
        out["code"] = self.code
        return out

    def error_detail(self) -> str:
        """Return the full structured error as a JSON string."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def __repr__(self) -> str:
        return f"ErrorInfo({self.error_detail()})"
