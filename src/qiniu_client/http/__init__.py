"""HTTP layer public API (barrel module).

This package provides:
- The request caller with signing, request id and User-Agent injection
- Response classification into decoded results or ``ErrorInfo``
- Transport capability probing and a cancellable transport wrapper

Recommended import pattern for consumers:
    from qiniu_client.http import HttpCaller, get_default_caller
"""

from .caller import (
    FORM_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    HttpCaller,
    append_query,
    close_default_caller,
    encode_form,
    get_default_caller,
)
from .response import call_ret, decode_body, parse_error, response_error
from .transport import (
    CancellableTransport,
    NestedObjectGetter,
    SupportsCancel,
    get_request_canceler,
)

__all__ = [
    "HttpCaller",
    "get_default_caller",
    "close_default_caller",
    "encode_form",
    "append_query",
    "FORM_CONTENT_TYPE",
    "JSON_CONTENT_TYPE",
    "call_ret",
    "decode_body",
    "parse_error",
    "response_error",
    "CancellableTransport",
    "NestedObjectGetter",
    "SupportsCancel",
    "get_request_canceler",
]
