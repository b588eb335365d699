"""Qiniu cloud storage HTTP client package.

This package provides the HTTP calling layer used by Qiniu API clients.
It builds authenticated requests, dispatches them with cancellation
support and normalizes responses into decoded results or structured
remote errors.

:var __version__: Current package version
:type __version__: str
"""

__version__ = "7.2.0"

from .auth import BaseCredentials, TokenCredentials  # noqa: E402
from .context import CallContext, use_context  # noqa: E402
from .exceptions import (  # noqa: E402
    CancellationError,
    ConstructionError,
    DeadlineExceededError,
    DecodeError,
    ErrorInfo,
    QiniuClientError,
    TransportError,
    ValidationError,
)
from .http import HttpCaller, get_default_caller  # noqa: E402
from .utils.user_agent import set_app_name  # noqa: E402

__all__ = [
    "__version__",
    "BaseCredentials",
    "TokenCredentials",
    "CallContext",
    "use_context",
    "HttpCaller",
    "get_default_caller",
    "set_app_name",
    "QiniuClientError",
    "ConstructionError",
    "CancellationError",
    "DeadlineExceededError",
    "TransportError",
    "DecodeError",
    "ErrorInfo",
    "ValidationError",
]
