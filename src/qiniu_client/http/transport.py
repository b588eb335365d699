"""Transport capabilities used for in-flight cancellation.

httpx transports have no standard way to abort one particular request.
A transport opts in by implementing ``cancel_request(request)``. Wrapping
transports (logging, metrics, test doubles) expose the transport they
delegate to through ``nested_object()``, and the canceler is discovered
by walking that chain.

:class:`CancellableTransport` adds the capability to any transport and
is what :class:`~qiniu_client.http.caller.HttpCaller` uses by default.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

# Request extension identifying one logical call. httpx carries
# extensions over to redirect requests, so every hop shares the key.
CANCEL_KEY = "qiniu_cancel_key"


@runtime_checkable
class SupportsCancel(Protocol):
    """Transport able to abort one in-flight request."""

    def cancel_request(self, request: httpx.Request) -> None: ...


@runtime_checkable
class NestedObjectGetter(Protocol):
    """Wrapper exposing the object it delegates to."""

    def nested_object(self) -> Any: ...


def get_request_canceler(transport: Any) -> Optional[SupportsCancel]:
    """Find the cancel capability of ``transport`` or of a wrapped transport.

    :param transport: Transport to probe
    :type transport: Any
    :return: The first object in the wrapper chain that supports
        ``cancel_request``, or None
    :rtype: Optional[SupportsCancel]
    """
    obj = transport
    seen = set()
    while obj is not None and id(obj) not in seen:
        if isinstance(obj, SupportsCancel):
            return obj
        if not isinstance(obj, NestedObjectGetter):
            return None
        seen.add(id(obj))
        obj = obj.nested_object()
    return None


def tag_request(request: httpx.Request) -> str:
    """Attach a cancel key to ``request`` and return it."""
    key = request.extensions.get(CANCEL_KEY)
    if key is None:
        key = uuid.uuid4().hex
        request.extensions[CANCEL_KEY] = key
    return key


class CancellableTransport(httpx.AsyncBaseTransport):
    """Transport wrapper that can abort in-flight requests.

    Each request tagged with a cancel key is tracked while the wrapped
    transport handles it. :meth:`cancel_request` cancels the asyncio task
    running the exchange; the wrapped transport sees ``CancelledError``
    and releases its connection as for any cancelled coroutine.

    :param transport: Transport to wrap, defaults to ``httpx.AsyncHTTPTransport``
    :type transport: Optional[httpx.AsyncBaseTransport]
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._inflight: Dict[str, asyncio.Task] = {}

    def nested_object(self) -> httpx.AsyncBaseTransport:
        return self._transport

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        key = request.extensions.get(CANCEL_KEY)
        task = asyncio.current_task()
        if key is None or task is None:
            return await self._transport.handle_async_request(request)

        self._inflight[key] = task
        try:
            return await self._transport.handle_async_request(request)
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    def cancel_request(self, request: httpx.Request) -> None:
        """Abort the exchange running for ``request``, if any.

        :param request: The request originally passed to the client
        :type request: httpx.Request
        """
        key = request.extensions.get(CANCEL_KEY)
        task = self._inflight.pop(key, None) if key is not None else None
        if task is not None and not task.done():
            logger.debug(f"Cancelling in-flight request {request.method} {request.url}")
            task.cancel()

    async def aclose(self) -> None:
        await self._transport.aclose()
