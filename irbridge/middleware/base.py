"""Middleware contracts and the middleware stack."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from irbridge.cancellation import CancellationToken
from irbridge.exceptions import AdapterError, ErrorProvenance, MiddlewareError
from irbridge.types import IRChatRequest, IRChatResponse, IRStreamChunk

logger = logging.getLogger(__name__)

NextFunction = Callable[[], Awaitable[IRChatResponse]]
StreamNextFunction = Callable[[], Awaitable[AsyncIterator[IRStreamChunk]]]


@dataclass
class MiddlewareContext:
    """Request-scoped state shared by the middleware of one request.

    Attributes:
        request: The IR request; middleware may replace it before calling next
        is_streaming: Whether this is a streaming request
        token: Cancellation token for the request
        backend_name: Name of the backend the request is bound for
        state: Scratch space shared between middleware
        config: Bridge configuration values
        chunks_processed: Number of chunks seen, for streaming middleware
    """

    request: IRChatRequest
    is_streaming: bool = False
    token: Optional[CancellationToken] = None
    backend_name: Optional[str] = None
    state: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)
    chunks_processed: int = 0

    @property
    def request_id(self) -> str:
        return self.request.request_id


class Middleware(ABC):
    """Wraps non-streaming request execution."""

    name: str = ""

    @abstractmethod
    async def execute(self, context: MiddlewareContext, next: NextFunction) -> IRChatResponse:
        """Process a request.

        Args:
            context: Request context
            next: Calls the rest of the chain; may be skipped or called again

        Returns:
            The response
        """


class StreamingMiddleware(ABC):
    """Wraps streaming request execution."""

    name: str = ""

    @abstractmethod
    async def execute_stream(
        self,
        context: MiddlewareContext,
        next: StreamNextFunction,
    ) -> AsyncIterator[IRStreamChunk]:
        """Process a streaming request.

        Args:
            context: Request context
            next: Calls the rest of the chain and returns its stream

        Returns:
            The stream handed back to the previous stage
        """


class FunctionMiddleware(Middleware):
    """Adapts a plain coroutine function to the Middleware interface."""

    def __init__(
        self,
        func: Callable[[MiddlewareContext, NextFunction], Awaitable[IRChatResponse]],
        name: Optional[str] = None,
    ) -> None:
        self._func = func
        self.name = name or getattr(func, "__name__", "function")

    async def execute(self, context: MiddlewareContext, next: NextFunction) -> IRChatResponse:
        return await self._func(context, next)


AnyMiddleware = Union[Middleware, StreamingMiddleware]


def middleware_name(middleware: Any) -> str:
    return getattr(middleware, "name", "") or type(middleware).__name__


class MiddlewareStack:
    """Ordered middleware chain executed in onion order.

    For middleware registered as A, B, C the pre-processing runs A, B, C and
    the post-processing runs C, B, A. Exceptions that are not AdapterErrors
    are wrapped in MiddlewareError; AdapterErrors propagate unchanged.
    """

    def __init__(self) -> None:
        self._middleware: list[Middleware] = []
        self._streaming: list[StreamingMiddleware] = []
        self._locked = False

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def middleware(self) -> list[Middleware]:
        return list(self._middleware)

    @property
    def streaming_middleware(self) -> list[StreamingMiddleware]:
        return list(self._streaming)

    def __len__(self) -> int:
        return len(set(map(id, self._middleware)) | set(map(id, self._streaming)))

    def _check_unlocked(self) -> None:
        if self._locked:
            raise MiddlewareError("Middleware stack is locked after first execution")

    def use(self, middleware: AnyMiddleware) -> "MiddlewareStack":
        """Append middleware to the chain.

        A class implementing both interfaces joins both chains.

        Raises:
            MiddlewareError: If the stack is locked or the object is not middleware
        """
        self._check_unlocked()
        if not isinstance(middleware, (Middleware, StreamingMiddleware)):
            raise MiddlewareError(
                f"{type(middleware).__name__} is not a Middleware or StreamingMiddleware",
                middleware_name=type(middleware).__name__,
            )
        if isinstance(middleware, Middleware):
            self._middleware.append(middleware)
        if isinstance(middleware, StreamingMiddleware):
            self._streaming.append(middleware)
        return self

    def remove(self, middleware: AnyMiddleware) -> bool:
        """Remove middleware. Returns True if it was registered."""
        self._check_unlocked()
        removed = False
        if middleware in self._middleware:
            self._middleware.remove(middleware)
            removed = True
        if middleware in self._streaming:
            self._streaming.remove(middleware)
            removed = True
        return removed

    def clear(self) -> None:
        self._check_unlocked()
        self._middleware.clear()
        self._streaming.clear()

    def lock(self) -> None:
        self._locked = True

    def copy(self) -> "MiddlewareStack":
        """Return an unlocked stack holding the same middleware."""
        stack = MiddlewareStack()
        stack._middleware = list(self._middleware)
        stack._streaming = list(self._streaming)
        return stack

    @staticmethod
    def _wrap(error: Exception, middleware: Any) -> AdapterError:
        if isinstance(error, AdapterError):
            return error
        name = middleware_name(middleware)
        return MiddlewareError(
            f"Middleware '{name}' failed: {error}",
            middleware_name=name,
            provenance=ErrorProvenance(middleware=name),
            cause=error,
        )

    async def execute(
        self,
        context: MiddlewareContext,
        final_handler: NextFunction,
    ) -> IRChatResponse:
        """Run the request chain, ending in ``final_handler``.

        Args:
            context: Request context
            final_handler: Executes the request against the backend

        Returns:
            The response produced by the chain
        """
        self._locked = True
        chain = list(self._middleware)
        downstream: set[int] = set()

        def dispatch(index: int) -> NextFunction:
            async def next_fn() -> IRChatResponse:
                if context.token is not None:
                    context.token.raise_if_cancelled()
                if index >= len(chain):
                    try:
                        return await final_handler()
                    except Exception as e:
                        downstream.add(id(e))
                        raise
                current = chain[index]
                try:
                    return await current.execute(context, dispatch(index + 1))
                except Exception as e:
                    if isinstance(e, AdapterError) or id(e) in downstream:
                        raise
                    raise self._wrap(e, current) from e
            return next_fn

        return await dispatch(0)()

    async def execute_stream(
        self,
        context: MiddlewareContext,
        final_handler: StreamNextFunction,
    ) -> AsyncIterator[IRStreamChunk]:
        """Run the streaming chain, ending in ``final_handler``.

        Failures raised by a middleware are wrapped the same way as in
        :meth:`execute`, whether they happen while it sets up its stream or
        while chunks are pulled from it. Failures coming from the final
        handler's stream pass through unchanged.
        """
        self._locked = True
        chain = list(self._streaming)
        downstream: set[int] = set()

        async def from_handler(stream: AsyncIterator[IRStreamChunk]) -> AsyncIterator[IRStreamChunk]:
            try:
                async for chunk in stream:
                    yield chunk
            except Exception as e:
                downstream.add(id(e))
                raise

        async def from_middleware(
            stream: AsyncIterator[IRStreamChunk], current: StreamingMiddleware
        ) -> AsyncIterator[IRStreamChunk]:
            try:
                async for chunk in stream:
                    yield chunk
            except Exception as e:
                if isinstance(e, AdapterError) or id(e) in downstream:
                    raise
                raise self._wrap(e, current) from e

        def dispatch(index: int) -> StreamNextFunction:
            async def next_fn() -> AsyncIterator[IRStreamChunk]:
                if context.token is not None:
                    context.token.raise_if_cancelled()
                if index >= len(chain):
                    try:
                        return from_handler(await final_handler())
                    except Exception as e:
                        downstream.add(id(e))
                        raise
                current = chain[index]
                try:
                    stream = await current.execute_stream(context, dispatch(index + 1))
                except Exception as e:
                    if isinstance(e, AdapterError) or id(e) in downstream:
                        raise
                    raise self._wrap(e, current) from e
                return from_middleware(stream, current)
            return next_fn

        return await dispatch(0)()
