"""HTTP caller for Qiniu API requests.

This module provides :class:`HttpCaller`, the layer between Qiniu API
clients and httpx. It builds requests, signs them with the credentials
carried by the call context, dispatches them racing the context's
cancellation and classifies the responses.

Key Features:

- ``Authorization: QBox <token>`` injection from context credentials
- ``X-Reqid`` propagation and a default ``User-Agent``
- Cancellation of in-flight requests on transports that support it
- Form, JSON and raw body call variants
- Two-tier errors: local failures vs. structured remote ``ErrorInfo``

Retries, pooling and timeouts are left to the httpx transport and the
call context deadline.

Examples:
    >>> caller = HttpCaller()
    >>> ctx = CallContext(credentials=creds)
    >>> info = await caller.call_with_form(
    ...     ctx, "POST", "https://rs.qiniu.com/stat", data={"key": ["a"]},
    ...     result_type=dict,
    ... )
"""

import asyncio
import inspect
import json
import logging
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Iterable,
    Mapping,
    Optional,
    Sequence,
    Union,
)
from urllib.parse import urlencode

import httpx

from ..config.settings import Settings
from ..context import CallContext, credentials_from_context, reqid_from_context, resolve_context
from ..exceptions import ConstructionError, TransportError
from ..utils.security import sanitize_headers, sanitize_string
from ..utils.user_agent import get_user_agent, set_app_name
from .response import call_ret
from .transport import CancellableTransport, get_request_canceler, tag_request

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"

# Methods whose form payload goes into the query string
_QUERY_FORM_METHODS = ("GET", "HEAD", "DELETE")

_CHUNK_SIZE = 64 * 1024

HeaderTypes = Union[httpx.Headers, Mapping[str, str], Mapping[str, Sequence[str]], None]
FormData = Mapping[str, Union[str, Sequence[str]]]
BodyTypes = Union[bytes, bytearray, str, Iterable[bytes], AsyncIterable[bytes], Any, None]


def _copy_headers(headers: HeaderTypes) -> httpx.Headers:
    """Copy caller headers, expanding ``name -> [values]`` mappings."""
    if headers is None:
        return httpx.Headers()
    if isinstance(headers, httpx.Headers):
        return httpx.Headers(headers.multi_items())
    items = []
    for name, value in headers.items():
        if isinstance(value, (list, tuple)):
            items.extend((name, v) for v in value)
        else:
            items.append((name, value))
    return httpx.Headers(items)


def encode_form(data: Optional[FormData]) -> str:
    """URL-encode a ``name -> value(s)`` mapping, keys in sorted order."""
    if not data:
        return ""
    return urlencode(sorted(data.items()), doseq=True)


def append_query(url: str, query: str) -> str:
    """Append ``query`` to ``url`` with ``?`` or ``&`` as needed."""
    return url + ("&" if "?" in url else "?") + query


async def _aiter_body(body: Any) -> AsyncIterator[bytes]:
    """Adapt file-like objects and sync iterables to an async byte stream.

    File reads run in a worker thread so a slow file does not block the
    event loop. Sync iterables are consumed on the loop.
    """
    if hasattr(body, "read"):
        while True:
            chunk = await asyncio.to_thread(body.read, _CHUNK_SIZE)
            if not chunk:
                break
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk
    else:
        for chunk in body:
            yield chunk


def _prepare_body(body: BodyTypes, body_length: Optional[int], headers: httpx.Headers) -> Any:
    """Turn ``body`` into httpx content, recording a known length."""
    if body is None or isinstance(body, (bytes, str)):
        return body
    if isinstance(body, bytearray):
        return bytes(body)
    if isinstance(body, (dict, list, int, float)):
        raise TypeError(f"Unsupported body type {type(body).__name__}")

    if body_length is not None and body_length > 0:
        # httpx drops chunked encoding when Content-Length is set explicitly
        headers["Content-Length"] = str(body_length)
    if hasattr(body, "__aiter__"):
        return body
    if hasattr(body, "read") or hasattr(body, "__iter__"):
        return _aiter_body(body)
    raise TypeError(f"Unsupported body type {type(body).__name__}")


async def _discard_exchange(send_task: "asyncio.Future[httpx.Response]") -> None:
    """Wait for an abandoned exchange to stop and close its response, if any."""
    await asyncio.gather(send_task, return_exceptions=True)
    if not send_task.cancelled() and send_task.exception() is None:
        await send_task.result().aclose()


class HttpCaller:
    """Dispatch authenticated, cancellable requests to the Qiniu API.

    The caller owns an ``httpx.AsyncClient`` built around ``transport``.
    In-flight cancellation works when the transport, or a transport it
    wraps (see :func:`~qiniu_client.http.transport.get_request_canceler`),
    supports ``cancel_request``. The default transport does. Without that
    capability a cancelled context only stops calls that have not been
    dispatched yet; calls already in flight complete normally.

    :param transport: httpx transport, defaults to a
        :class:`CancellableTransport` over ``httpx.AsyncHTTPTransport``
    :type transport: Optional[httpx.AsyncBaseTransport]
    :param settings: Settings for timeouts and redirects
    :type settings: Optional[Settings]
    :param client: Prebuilt client to use instead of creating one. When
        ``transport`` is omitted, cancellation is probed on the client's
        own transport.
    :type client: Optional[httpx.AsyncClient]

    A non-empty ``settings.app_name`` becomes the application name of the
    default User-Agent.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or Settings()
        if self.settings.app_name:
            set_app_name(self.settings.app_name)

        if transport is None:
            if client is not None:
                transport = getattr(client, "_transport", None)
            else:
                transport = CancellableTransport()
        self.transport = transport
        self.client = client or httpx.AsyncClient(
            transport=self.transport,
            timeout=self.settings.create_timeout(),
            follow_redirects=self.settings.follow_redirects,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "HttpCaller":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    async def build_request(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes = None,
        body: BodyTypes = None,
        body_length: Optional[int] = None,
    ) -> httpx.Request:
        """Build a request and sign it with the context credentials.

        :param ctx: Call context; its credentials, if any, sign the request
        :type ctx: Optional[CallContext]
        :param method: HTTP method
        :type method: str
        :param url: Absolute request URL
        :type url: str
        :param headers: Request headers; the mapping is copied, not mutated
        :type headers: HeaderTypes
        :param body: Request body: bytes, str, file-like, sync or async
            iterable of bytes
        :type body: BodyTypes
        :param body_length: Length of a streamed body; unknown lengths are
            sent chunked
        :type body_length: Optional[int]
        :return: The built request
        :rtype: httpx.Request
        :raises ConstructionError: If the URL or body is invalid or
            signing fails
        """
        req_headers = _copy_headers(headers)
        try:
            content = _prepare_body(body, body_length, req_headers)
            request = httpx.Request(method, url, headers=req_headers, content=content)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol, TypeError, ValueError) as e:
            raise ConstructionError(f"Invalid request: {e}", url=url) from e
        if not request.url.is_absolute_url:
            raise ConstructionError(f"Request URL must be absolute: {url!r}", url=url)

        credentials = credentials_from_context(resolve_context(ctx))
        if credentials is not None:
            try:
                token = credentials.sign_request(request)
                if inspect.isawaitable(token):
                    token = await token
            except Exception as e:
                raise ConstructionError(f"Failed to sign request: {e}", url=url) from e
            request.headers["Authorization"] = f"QBox {token}"

        return request

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def do(self, ctx: Optional[CallContext], request: httpx.Request) -> httpx.Response:
        """Send ``request``, racing the context's cancellation.

        The returned response is streaming: its body has not been read.
        Pass it to :meth:`interpret_response` or close it.

        :param ctx: Call context for request id and cancellation
        :type ctx: Optional[CallContext]
        :param request: Request to send
        :type request: httpx.Request
        :return: Streaming response
        :rtype: httpx.Response
        :raises CancellationError: If the context is cancelled before or,
            on cancel-capable transports, during the exchange
        :raises TransportError: If the transport fails
        """
        ctx = resolve_context(ctx)

        reqid = reqid_from_context(ctx)
        if reqid:
            request.headers["X-Reqid"] = reqid

        if "User-Agent" not in request.headers:
            request.headers["User-Agent"] = get_user_agent()

        # Best effort: the context may still be cancelled right after this
        # check, before the transport starts sending.
        if ctx.done():
            raise ctx.exception()

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"=== SEND: {request.method} {sanitize_string(str(request.url))}")
            logger.debug(f"    Headers: {sanitize_headers(request.headers)}")

        canceler = get_request_canceler(self.transport)
        if canceler is None:
            return await self._send(request)

        tag_request(request)
        send_task = asyncio.ensure_future(self._send(request))
        done_task = asyncio.ensure_future(ctx.wait())
        try:
            await asyncio.wait({send_task, done_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            send_task.cancel()
            await _discard_exchange(send_task)
            raise
        finally:
            done_task.cancel()

        if send_task.done():
            return send_task.result()

        canceler.cancel_request(request)
        await _discard_exchange(send_task)
        raise ctx.exception()

    async def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self.client.send(request, stream=True)
        except httpx.TransportError as e:
            raise TransportError(f"{type(e).__name__}: {e}", original_error=e) from e
        except httpx.RequestError as e:
            # Redirect loops and other request-level failures
            raise TransportError(f"{type(e).__name__}: {e}", original_error=e) from e

    async def do_request(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes = None,
    ) -> httpx.Response:
        """Build and send a request without a body."""
        request = await self.build_request(ctx, method, url, headers)
        return await self.do(ctx, request)

    async def do_request_with(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes,
        body: BodyTypes,
        body_length: Optional[int] = None,
    ) -> httpx.Response:
        """Build and send a request with a raw body.

        ``body_length`` accepts any non-negative integer, including sizes
        beyond 32 bits.
        """
        request = await self.build_request(ctx, method, url, headers, body, body_length)
        return await self.do(ctx, request)

    do_request_with64 = do_request_with

    async def do_request_with_form(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes = None,
        data: Optional[FormData] = None,
    ) -> httpx.Response:
        """Build and send a form request.

        For GET, HEAD and DELETE the encoded form is appended to the
        query string; other methods send it as the body.
        """
        req_headers = _copy_headers(headers)
        req_headers["Content-Type"] = FORM_CONTENT_TYPE

        encoded = encode_form(data)
        if method.upper() in _QUERY_FORM_METHODS:
            return await self.do_request(ctx, method, append_query(url, encoded), req_headers)

        payload = encoded.encode("utf-8")
        return await self.do_request_with(ctx, method, url, req_headers, payload, len(payload))

    async def do_request_with_json(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes = None,
        data: Any = None,
    ) -> httpx.Response:
        """Build and send a request with a JSON body."""
        try:
            payload = json.dumps(data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise ConstructionError(f"Failed to encode JSON body: {e}", url=url) from e

        req_headers = _copy_headers(headers)
        req_headers["Content-Type"] = JSON_CONTENT_TYPE
        return await self.do_request_with(ctx, method, url, req_headers, payload, len(payload))

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def interpret_response(
        self,
        ctx: Optional[CallContext],
        response: httpx.Response,
        result_type: Any = None,
    ) -> Any:
        """Decode ``response`` or raise its :class:`ErrorInfo`.

        See :func:`~qiniu_client.http.response.call_ret`.
        """
        return await call_ret(ctx, response, result_type)

    async def call(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes = None,
        result_type: Any = None,
    ) -> Any:
        """Send a request without a body and decode the response."""
        response = await self.do_request_with(ctx, method, url, headers, None, 0)
        return await call_ret(ctx, response, result_type)

    async def call_with(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes,
        body: BodyTypes,
        body_length: Optional[int] = None,
        result_type: Any = None,
    ) -> Any:
        """Send a raw body of ``body_length`` bytes and decode the response."""
        response = await self.do_request_with(ctx, method, url, headers, body, body_length)
        return await call_ret(ctx, response, result_type)

    call_with64 = call_with

    async def call_with_form(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes = None,
        data: Optional[FormData] = None,
        result_type: Any = None,
    ) -> Any:
        """Send form data and decode the response.

        :param ctx: Call context
        :type ctx: Optional[CallContext]
        :param method: HTTP method
        :type method: str
        :param url: Request URL
        :type url: str
        :param headers: Extra request headers
        :type headers: HeaderTypes
        :param data: Form fields, each a value or a list of values
        :type data: Optional[FormData]
        :param result_type: Destination type for the JSON response
        :type result_type: Any
        :return: Decoded response, or None
        :rtype: Any
        :raises ConstructionError: If the request cannot be built
        :raises CancellationError: If the context is cancelled
        :raises TransportError: If the exchange fails
        :raises DecodeError: If the success body does not decode
        :raises ErrorInfo: If the server returns a non-2xx status
        """
        response = await self.do_request_with_form(ctx, method, url, headers, data)
        return await call_ret(ctx, response, result_type)

    async def call_with_json(
        self,
        ctx: Optional[CallContext],
        method: str,
        url: str,
        headers: HeaderTypes = None,
        data: Any = None,
        result_type: Any = None,
    ) -> Any:
        """Send ``data`` as JSON and decode the response."""
        response = await self.do_request_with_json(ctx, method, url, headers, data)
        return await call_ret(ctx, response, result_type)


_default_caller: Optional[HttpCaller] = None


def get_default_caller() -> HttpCaller:
    """Return the process-wide caller, creating it on first use.

    :return: Shared caller configured from the global settings
    :rtype: HttpCaller
    """
    global _default_caller
    if _default_caller is None or _default_caller.client.is_closed:
        from ..config.settings import settings

        _default_caller = HttpCaller(settings=settings)
    return _default_caller


async def close_default_caller() -> None:
    """Close the process-wide caller, if it was created."""
    global _default_caller
    if _default_caller is not None:
        await _default_caller.aclose()
        _default_caller = None

