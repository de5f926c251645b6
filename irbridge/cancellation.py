"""Cooperative cancellation for in-flight requests."""

import asyncio
import inspect
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from irbridge.exceptions import ErrorCode, RequestCancelledError

T = TypeVar("T")

TIMEOUT_REASON = "timeout"


class CancellationToken:
    """A cancellation signal shared by every stage handling one request.

    A token is cancelled explicitly with :meth:`cancel`, when its parent is
    cancelled, or when its deadline passes. Stages observe it with
    :meth:`raise_if_cancelled` between steps and :meth:`guard` while awaiting
    a backend.
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        parent: Optional["CancellationToken"] = None,
    ) -> None:
        """Initialize the token.

        Args:
            timeout: Seconds until the token cancels itself
            parent: Token whose cancellation propagates to this one
        """
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._callbacks: list[Callable[["CancellationToken"], Any]] = []
        self._children: list["CancellationToken"] = []
        self._parent = parent
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        parent: Optional["CancellationToken"] = None,
    ) -> "CancellationToken":
        """Create a token that cancels itself after ``seconds``."""
        return cls(timeout=seconds, parent=parent)

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        """Create a linked token cancelled together with this one."""
        return CancellationToken(timeout=timeout, parent=self)

    @property
    def deadline(self) -> Optional[float]:
        """Effective monotonic deadline, considering ancestors."""
        deadlines = []
        token: Optional[CancellationToken] = self
        while token is not None:
            if token._deadline is not None:
                deadlines.append(token._deadline)
            token = token._parent
        return min(deadlines) if deadlines else None

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        deadline = self.deadline
        if deadline is not None and time.monotonic() >= deadline:
            self.cancel(TIMEOUT_REASON)
            return True
        return False

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def timed_out(self) -> bool:
        return self.cancelled and self._reason == TIMEOUT_REASON

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the token and every linked child.

        Args:
            reason: Why the request was cancelled
        """
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for callback in list(self._callbacks):
            callback(self)
        for child in list(self._children):
            child.cancel(reason)

    def add_callback(self, callback: Callable[["CancellationToken"], Any]) -> None:
        """Run ``callback`` when the token is cancelled."""
        if self._event.is_set():
            callback(self)
            return
        self._callbacks.append(callback)

    def dispose(self) -> None:
        """Detach the token from its parent once its work has finished.

        The parent stops propagating cancellation to it and pending callbacks
        are dropped. The deadline of the parent still applies.
        """
        if self._parent is not None and self in self._parent._children:
            self._parent._children.remove(self)
        self._callbacks.clear()

    def __enter__(self) -> "CancellationToken":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.dispose()

    def to_error(self) -> RequestCancelledError:
        if self._reason == TIMEOUT_REASON:
            return RequestCancelledError("Request timed out", code=ErrorCode.REQUEST_TIMEOUT)
        return RequestCancelledError(f"Request cancelled: {self._reason}")

    def raise_if_cancelled(self) -> None:
        """Raise RequestCancelledError if the token has been cancelled."""
        if self.cancelled:
            raise self.to_error()

    async def wait(self) -> None:
        """Wait until the token is cancelled or its deadline passes."""
        deadline = self.deadline
        if deadline is None:
            await self._event.wait()
            return
        remaining = max(0.0, deadline - time.monotonic())
        try:
            await asyncio.wait_for(self._event.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            self.cancel(TIMEOUT_REASON)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        The awaited operation is cancelled when the token fires.

        Args:
            awaitable: Operation to run

        Returns:
            The operation's result

        Raises:
            RequestCancelledError: If the token fired first
        """
        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise self.to_error()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise self.to_error()


async def guard_stream(
    stream: AsyncIterator[T],
    token: Optional[CancellationToken],
) -> AsyncIterator[T]:
    """Yield from ``stream``, checking ``token`` before every pull.

    Args:
        stream: Source stream
        token: Cancellation token, or None to pass through

    Yields:
        Items from the source stream
    """
    if token is None:
        async for item in stream:
            yield item
        return
    iterator = stream.__aiter__()
    try:
        while True:
            token.raise_if_cancelled()
            try:
                item = await token.guard(iterator.__anext__())
            except StopAsyncIteration:
                return
            yield item
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
