"""Request-scoped call context.

A :class:`CallContext` carries the ambient values of one logical call:
the credentials used to sign it, the request id propagated as
``X-Reqid`` and the cancellation signal (explicit cancel or deadline).

Contexts form a tree. A derived context inherits credentials, request id
and deadline from its parent and is cancelled together with it, so a
caller can cancel a whole batch of calls through one root context.

Contexts are passed explicitly to every caller operation. When ``None``
is passed, the context installed with :func:`use_context` for the
current task is used, falling back to a background context that is never
cancelled.

Examples:
    >>> ctx = CallContext(credentials=creds, reqid="abc", timeout=10)
    >>> await caller.call(ctx, "GET", url)
"""

import asyncio
import time
import weakref
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from .auth.base import BaseCredentials
from .exceptions import CancellationError, DeadlineExceededError

CANCELED = "context canceled"
DEADLINE_EXCEEDED = "context deadline exceeded"

_CURRENT_CONTEXT: ContextVar[Optional["CallContext"]] = ContextVar(
    "qiniu_call_context", default=None
)


class CallContext:
    """Cancellable carrier for credentials and request id.

    :param credentials: Credentials used to sign requests, if any
    :type credentials: Optional[BaseCredentials]
    :param reqid: Request id sent as ``X-Reqid``, if any
    :type reqid: Optional[str]
    :param timeout: Seconds from now after which the context expires
    :type timeout: Optional[float]
    :param parent: Context to inherit values and cancellation from
    :type parent: Optional[CallContext]
    """

    def __init__(
        self,
        credentials: Optional[BaseCredentials] = None,
        reqid: Optional[str] = None,
        timeout: Optional[float] = None,
        parent: Optional["CallContext"] = None,
    ):
        self.parent = parent
        self.credentials = credentials
        self.reqid = reqid
        self.deadline: Optional[float] = None
        if parent is not None:
            if self.credentials is None:
                self.credentials = parent.credentials
            if self.reqid is None:
                self.reqid = parent.reqid
            self.deadline = parent.deadline
        if timeout is not None:
            own = time.monotonic() + timeout
            self.deadline = own if self.deadline is None else min(self.deadline, own)

        self._err: Optional[str] = None
        self._event = asyncio.Event()
        self._children: "weakref.WeakSet[CallContext]" = weakref.WeakSet()
        if parent is not None:
            parent._children.add(self)
            if parent.done():
                self._cancel(parent.err())

    def with_credentials(self, credentials: BaseCredentials) -> "CallContext":
        """Derive a context that signs requests with ``credentials``."""
        return CallContext(credentials=credentials, parent=self)

    def with_reqid(self, reqid: str) -> "CallContext":
        """Derive a context that propagates ``reqid``."""
        return CallContext(reqid=reqid, parent=self)

    def with_timeout(self, timeout: float) -> "CallContext":
        """Derive a context expiring ``timeout`` seconds from now."""
        return CallContext(timeout=timeout, parent=self)

    def cancel(self) -> None:
        """Cancel this context and every context derived from it."""
        self._cancel(CANCELED)

    def _cancel(self, reason: str) -> None:
        if self._err is not None:
            return
        self._err = reason
        self._event.set()
        for child in list(self._children):
            child._cancel(reason)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def err(self) -> Optional[str]:
        """Return why the context is done, or ``None`` while it is live."""
        if self._err is None and self.deadline is not None:
            if time.monotonic() >= self.deadline:
                self._cancel(DEADLINE_EXCEEDED)
        return self._err

    def done(self) -> bool:
        return self.err() is not None

    def exception(self) -> Optional[CancellationError]:
        """Return the exception matching :meth:`err`, if the context is done."""
        reason = self.err()
        if reason is None:
            return None
        if reason == DEADLINE_EXCEEDED:
            return DeadlineExceededError(reason)
        return CancellationError(reason)

    async def wait(self) -> str:
        """Wait until the context is cancelled or its deadline passes.

        :return: The context error message
        :rtype: str
        """
        if not self.done():
            try:
                await asyncio.wait_for(self._event.wait(), self.remaining())
            except asyncio.TimeoutError:
                self._cancel(DEADLINE_EXCEEDED)
        return self._err

    def __repr__(self) -> str:
        return (
            f"CallContext(reqid={self.reqid!r}, "
            f"signed={self.credentials is not None}, err={self._err!r})"
        )


def background() -> CallContext:
    """Return an empty context that is never cancelled."""
    return CallContext()


def credentials_from_context(ctx: Optional[CallContext]) -> Optional[BaseCredentials]:
    """Return the credentials carried by ``ctx``, if any."""
    if ctx is None:
        return None
    return ctx.credentials


def reqid_from_context(ctx: Optional[CallContext]) -> Optional[str]:
    """Return the request id carried by ``ctx``, if any."""
    if ctx is None:
        return None
    return ctx.reqid or None


def current_context() -> Optional[CallContext]:
    """Return the context installed for the current task, if any."""
    return _CURRENT_CONTEXT.get()


@contextmanager
def use_context(ctx: CallContext) -> Iterator[CallContext]:
    """Install ``ctx`` as the ambient context for the enclosed block.

    Calls made with ``ctx=None`` inside the block use it. The value is
    task-local, so concurrent tasks do not see each other's contexts.
    """
    token = _CURRENT_CONTEXT.set(ctx)
    try:
        yield ctx
    finally:
        _CURRENT_CONTEXT.reset(token)


def resolve_context(ctx: Optional[CallContext]) -> CallContext:
    """Return ``ctx``, the ambient context, or a background context."""
    if ctx is not None:
        return ctx
    return current_context() or background()
