"""Response classification for Qiniu API calls.

Every response ends up either as a decoded payload or as an
:class:`~qiniu_client.exceptions.ErrorInfo`. The body is always read to
the end and the response closed before returning, whatever the outcome,
so the connection goes back to the pool.

Error bodies follow the Qiniu convention::

    {"error": "bad token", "key": "k1", "errno": 612}

Anything else (HTML error pages, plain text, malformed JSON) becomes the
error message verbatim.
"""

import json
import logging
from functools import lru_cache
from typing import Any, Optional, Tuple

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..context import CallContext
from ..exceptions import DecodeError, ErrorInfo, TransportError

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


@lru_cache(maxsize=256)
def _adapter(result_type: Any) -> TypeAdapter:
    return TypeAdapter(result_type)


def decode_body(body: bytes, result_type: Any, status_code: Optional[int] = None) -> Any:
    """Validate a JSON body into ``result_type``.

    ``result_type`` is anything pydantic can validate: ``dict``, ``list``,
    ``Any``, typed containers, dataclasses, TypedDicts or BaseModel
    subclasses.

    :param body: Raw response body
    :type body: bytes
    :param result_type: Destination type
    :type result_type: Any
    :param status_code: HTTP status, reported in the error
    :type status_code: Optional[int]
    :return: The decoded value
    :rtype: Any
    :raises DecodeError: If the body is not valid JSON for ``result_type``
    """
    try:
        return _adapter(result_type).validate_json(body)
    except PydanticValidationError as e:
        raise DecodeError(
            f"Failed to decode response body: {e}",
            status_code=status_code,
            response_body=body.decode("utf-8", errors="replace"),
        ) from e


def parse_error(body: bytes) -> Tuple[str, str, int]:
    """Extract ``(error, key, errno)`` from an error body.

    Falls back to the verbatim body text as the message when the body
    is not a JSON object or carries no ``error`` field.

    :param body: Raw error body
    :type body: bytes
    :return: Message, resource key and vendor error number
    :rtype: Tuple[str, str, int]
    """
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        return text, "", 0

    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, str) and err:
            key = data.get("key")
            errno = data.get("errno")
            return (
                err,
                key if isinstance(key, str) else "",
                errno if isinstance(errno, int) and not isinstance(errno, bool) else 0,
            )
    return text, "", 0


def response_error(response: httpx.Response, body: Optional[bytes] = None) -> ErrorInfo:
    """Build the :class:`ErrorInfo` describing a failed response.

    :param response: The failed response
    :type response: httpx.Response
    :param body: Body already read from the response; read from
        ``response.content`` when omitted
    :type body: Optional[bytes]
    :return: Structured error with status code and request id
    :rtype: ErrorInfo
    """
    if body is None:
        body = response.content

    err, key, errno = "", "", 0
    if body:
        content_type = response.headers.get("Content-Type", "")
        if content_type.startswith(JSON_CONTENT_TYPE):
            err, key, errno = parse_error(body)
        else:
            err = body.decode("utf-8", errors="replace")

    return ErrorInfo(
        code=response.status_code,
        err=err,
        key=key,
        reqid=response.headers.get("X-Reqid", ""),
        errno=errno,
    )


async def call_ret(
    ctx: Optional[CallContext],
    response: httpx.Response,
    result_type: Any = None,
) -> Any:
    """Classify ``response`` into a decoded result or an error.

    The response is always drained and closed before returning.

    :param ctx: Call context (unused by classification, kept for symmetry
        with the dispatch operations)
    :type ctx: Optional[CallContext]
    :param response: Streaming response returned by the dispatch step
    :type response: httpx.Response
    :param result_type: Destination type for successful JSON bodies; when
        None the body is discarded
    :type result_type: Any
    :return: Decoded payload, or None when no destination was given or
        the body was empty
    :rtype: Any
    :raises DecodeError: If a 2xx body does not decode into ``result_type``
    :raises ErrorInfo: If the status is not 2xx
    :raises TransportError: If reading the body fails
    """
    try:
        body = await response.aread()
    except httpx.HTTPError as e:
        raise TransportError(f"Failed to read response body: {e}", original_error=e) from e
    finally:
        await response.aclose()

    status = response.status_code
    logger.debug(f"Response {status} ({len(body)} bytes)")

    if 200 <= status <= 299:
        if result_type is not None and body:
            return decode_body(body, result_type, status_code=status)
        return None

    raise response_error(response, body)
