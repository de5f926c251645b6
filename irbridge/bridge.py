"""Bridge: one frontend, one backend and a middleware chain."""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from irbridge.adapters.base import (
    BackendAdapter,
    FrontendAdapter,
    ListModelsResult,
    supports_operation,
)
from irbridge.cancellation import CancellationToken, guard_stream
from irbridge.events import Event, EventEmitter, Listener
from irbridge.exceptions import (
    AdapterConversionError,
    AdapterError,
    ErrorProvenance,
    error_from_code,
)
from irbridge.middleware.base import AnyMiddleware, MiddlewareContext, MiddlewareStack
from irbridge.streaming import StreamConversionOptions, convert_stream_mode, ensure_well_formed
from irbridge.types import IRChatRequest, IRChatResponse, IRStreamChunk, StreamMode
from irbridge.utils.validation import validate_ir_chat_request

logger = logging.getLogger(__name__)


@dataclass
class BridgeConfig:
    """Bridge configuration.

    Attributes:
        default_model: Model used when the request names none
        timeout: Seconds before a request is cancelled
        validate_requests: Validate IR requests before dispatch
        stream_mode: Stream mode when the request does not choose one
        validate_stream_sequence: Reject out of order chunks
    """

    default_model: Optional[str] = None
    timeout: Optional[float] = None
    validate_requests: bool = True
    stream_mode: StreamMode = "delta"
    validate_stream_sequence: bool = True


def _percentile(values: list[float], percentile: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, int(round(percentile / 100 * len(ordered))) - 1))
    return ordered[index]


@dataclass
class BridgeStats:
    """Request statistics for one bridge."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    streaming_requests: int = 0
    errors_by_code: dict[str, int] = field(default_factory=dict)
    latencies_ms: deque = field(default_factory=lambda: deque(maxlen=1000))

    def record_success(self, latency_ms: float) -> None:
        self.successful_requests += 1
        self.latencies_ms.append(latency_ms)

    def record_failure(self, error: BaseException, latency_ms: float) -> None:
        self.failed_requests += 1
        self.latencies_ms.append(latency_ms)
        code = error.code.value if isinstance(error, AdapterError) else type(error).__name__
        self.errors_by_code[code] = self.errors_by_code.get(code, 0) + 1

    @property
    def success_rate(self) -> float:
        done = self.successful_requests + self.failed_requests
        return self.successful_requests / done if done else 0.0

    def to_dict(self) -> dict[str, Any]:
        latencies = list(self.latencies_ms)
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "streaming_requests": self.streaming_requests,
            "success_rate": self.success_rate,
            "average_latency_ms": sum(latencies) / len(latencies) if latencies else 0.0,
            "p50_latency_ms": _percentile(latencies, 50),
            "p95_latency_ms": _percentile(latencies, 95),
            "p99_latency_ms": _percentile(latencies, 99),
            "errors_by_code": dict(self.errors_by_code),
        }


class Bridge:
    """Connects one frontend adapter to one backend adapter.

    The bridge translates the client request to IR, runs it through the
    middleware chain to the backend, and translates the result back. It
    performs no retries; those belong to middleware or to a Router backend.
    """

    def __init__(
        self,
        frontend: FrontendAdapter,
        backend: BackendAdapter,
        config: Optional[BridgeConfig] = None,
    ) -> None:
        """Initialize the bridge.

        Args:
            frontend: Client-facing adapter
            backend: Provider-facing adapter, possibly a Router
            config: Bridge configuration
        """
        self.frontend = frontend
        self.backend = backend
        self.config = config or BridgeConfig()
        self._middleware = MiddlewareStack()
        self._events = EventEmitter()
        self._stats = BridgeStats()

    # Middleware

    def use(self, middleware: AnyMiddleware) -> "Bridge":
        """Append middleware. Returns the bridge for chaining."""
        self._middleware.use(middleware)
        return self

    def remove_middleware(self, middleware: AnyMiddleware) -> bool:
        return self._middleware.remove(middleware)

    def clear_middleware(self) -> None:
        self._middleware.clear()

    @property
    def middleware(self) -> MiddlewareStack:
        return self._middleware

    # Events

    def on(self, event_type: str, listener: Listener) -> Any:
        return self._events.on(event_type, listener)

    def once(self, event_type: str, listener: Listener) -> Any:
        return self._events.once(event_type, listener)

    def off(self, event_type: str, listener: Listener) -> None:
        self._events.off(event_type, listener)

    # Helpers

    def _request_token(self, token: Optional[CancellationToken]) -> Optional[CancellationToken]:
        if self.config.timeout is None:
            return token
        return CancellationToken.with_timeout(self.config.timeout, parent=token)

    async def _to_ir(self, request: Any) -> IRChatRequest:
        try:
            return await self.frontend.to_ir(request)
        except AdapterConversionError:
            raise
        except Exception as e:
            raise AdapterConversionError(
                f"Frontend '{self.frontend.name}' could not translate request: {e}",
                provenance=ErrorProvenance(frontend=self.frontend.name),
                cause=e,
            ) from e

    async def _from_ir(self, response: IRChatResponse) -> Any:
        try:
            return await self.frontend.from_ir(response)
        except AdapterConversionError:
            raise
        except Exception as e:
            raise AdapterConversionError(
                f"Frontend '{self.frontend.name}' could not translate response: {e}",
                provenance=ErrorProvenance(frontend=self.frontend.name, backend=self.backend.name),
                cause=e,
            ) from e

    def _enrich_request(
        self,
        request: IRChatRequest,
        metadata: Optional[dict[str, Any]],
        stream: bool,
    ) -> IRChatRequest:
        ir_metadata = request.metadata
        updates: dict[str, Any] = {
            "provenance": ir_metadata.provenance.model_copy(
                update={"frontend": ir_metadata.provenance.frontend or self.frontend.name}
            ),
        }
        if metadata:
            updates["custom"] = {**ir_metadata.custom, **metadata}
        enriched = request.model_copy(
            update={"metadata": ir_metadata.model_copy(update=updates), "stream": stream}
        )
        if enriched.model is None and self.config.default_model:
            enriched = enriched.with_model(self.config.default_model)
        return enriched

    def _enrich_response(self, response: IRChatResponse, request: IRChatRequest) -> IRChatResponse:
        provenance = response.metadata.provenance
        return response.with_metadata(
            request_id=request.request_id,
            provenance=provenance.model_copy(
                update={
                    "frontend": self.frontend.name,
                    "backend": provenance.backend or self.backend.name,
                }
            ),
            warnings=response.metadata.warnings or request.metadata.warnings,
        )

    def _prepare(self, request: IRChatRequest) -> None:
        if self.config.validate_requests:
            validate_ir_chat_request(
                request,
                provenance=ErrorProvenance(frontend=self.frontend.name, backend=self.backend.name),
            )

    async def _emit(self, event_type: str, request_id: Optional[str], **data: Any) -> None:
        await self._events.emit(Event(type=event_type, request_id=request_id, data=data))

    # Requests

    async def chat(
        self,
        request: Any,
        *,
        token: Optional[CancellationToken] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Execute a non-streaming request.

        Args:
            request: Request in the frontend's wire format
            token: Cancellation token for the request
            metadata: Caller metadata merged into ``metadata.custom``

        Returns:
            Response in the frontend's wire format

        Raises:
            AdapterConversionError: If translation to or from IR fails
            ValidationError: If the IR request is invalid
            RequestCancelledError: If the request was cancelled or timed out
            AdapterError: Whatever the backend or middleware raised
        """
        start = time.perf_counter()
        self._stats.total_requests += 1
        caller_token = token
        token = self._request_token(token)
        request_id: Optional[str] = None
        try:
            if token is not None:
                token.raise_if_cancelled()
            ir_request = self._enrich_request(await self._to_ir(request), metadata, stream=False)
            request_id = ir_request.request_id
            await self._emit("request:start", request_id, model=ir_request.model)
            self._prepare(ir_request)

            context = MiddlewareContext(
                request=ir_request,
                token=token,
                backend_name=self.backend.name,
                config={"default_model": self.config.default_model, "timeout": self.config.timeout},
            )

            async def final_handler() -> IRChatResponse:
                call = self.backend.execute(context.request, token)
                if token is None:
                    return await call
                return await token.guard(call)

            response = await self._middleware.execute(context, final_handler)
            response = self._enrich_response(response, context.request)
            result = await self._from_ir(response)
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            self._stats.record_failure(e, latency_ms)
            await self._emit("request:error", request_id, error=e, latency_ms=latency_ms)
            raise
        finally:
            if token is not caller_token:
                token.dispose()

        latency_ms = (time.perf_counter() - start) * 1000
        self._stats.record_success(latency_ms)
        await self._emit(
            "request:success",
            request_id,
            latency_ms=latency_ms,
            backend=response.metadata.provenance.backend,
            usage=response.usage,
        )
        return result

    async def chat_stream(
        self,
        request: Any,
        *,
        token: Optional[CancellationToken] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AsyncIterator[Any]:
        """Execute a streaming request.

        Work starts when the first item is pulled. The IR stream is
        normalized, passed through streaming middleware, converted to the
        requested stream mode and translated by the frontend.

        Args:
            request: Request in the frontend's wire format
            token: Cancellation token for the request
            metadata: Caller metadata merged into ``metadata.custom``

        Yields:
            Stream items in the frontend's wire format
        """
        start = time.perf_counter()
        self._stats.total_requests += 1
        self._stats.streaming_requests += 1
        caller_token = token
        token = self._request_token(token)
        request_id: Optional[str] = None
        upstream_errors: list[BaseException] = []
        terminal: list[IRStreamChunk] = []

        async def observed(stream: AsyncIterator[IRStreamChunk]) -> AsyncIterator[IRStreamChunk]:
            try:
                async for chunk in stream:
                    if chunk.is_terminal():
                        terminal.append(chunk)
                    yield chunk
            except Exception as e:
                upstream_errors.append(e)
                raise

        try:
            if token is not None:
                token.raise_if_cancelled()
            ir_request = self._enrich_request(await self._to_ir(request), metadata, stream=True)
            request_id = ir_request.request_id
            await self._emit("stream:start", request_id, model=ir_request.model)
            self._prepare(ir_request)

            context = MiddlewareContext(
                request=ir_request,
                is_streaming=True,
                token=token,
                backend_name=self.backend.name,
                config={"default_model": self.config.default_model, "timeout": self.config.timeout},
            )

            async def final_handler() -> AsyncIterator[IRStreamChunk]:
                current = context.request
                source = guard_stream(self.backend.execute_stream(current, token), token)
                return ensure_well_formed(
                    source,
                    current.request_id,
                    current.metadata.with_provenance(backend=self.backend.name),
                )

            stream = await self._middleware.execute_stream(context, final_handler)
            options = StreamConversionOptions(
                mode=context.request.stream_mode or self.config.stream_mode,
                validate_sequence=self.config.validate_stream_sequence,
            )
            ir_stream = observed(convert_stream_mode(stream, options))
            try:
                async for item in self.frontend.from_ir_stream(ir_stream):
                    yield item
            except Exception as e:
                if isinstance(e, AdapterError) or any(e is u for u in upstream_errors):
                    raise
                raise AdapterConversionError(
                    f"Frontend '{self.frontend.name}' could not translate stream: {e}",
                    provenance=ErrorProvenance(frontend=self.frontend.name, backend=self.backend.name),
                    cause=e,
                ) from e
        except Exception as e:
            latency_ms = (time.perf_counter() - start) * 1000
            self._stats.record_failure(e, latency_ms)
            await self._emit("stream:error", request_id, error=e, latency_ms=latency_ms)
            raise
        finally:
            if token is not caller_token:
                token.dispose()

        latency_ms = (time.perf_counter() - start) * 1000
        last = terminal[-1] if terminal else None
        if last is not None and last.type == "error":
            error = error_from_code(last.error.code, last.error.message, last.error.details)
            self._stats.record_failure(error, latency_ms)
            await self._emit("stream:error", request_id, error=error, latency_ms=latency_ms)
        else:
            self._stats.record_success(latency_ms)
            await self._emit("stream:complete", request_id, latency_ms=latency_ms, chunk=last)

    # Capabilities

    async def list_models(self) -> Optional[ListModelsResult]:
        """List backend models, or None if the backend does not support listing."""
        if not supports_operation(self.backend, "list_models"):
            return None
        return await self.backend.list_models()

    async def has_model(self, model: str) -> bool:
        result = await self.list_models()
        if result is None:
            return self.backend.capabilities.supports_model(model)
        return model in result.ids

    async def check_health(self) -> bool:
        """Return the backend's health, or True if it does not report health."""
        if not supports_operation(self.backend, "health_check"):
            return True
        return await self.backend.health_check()

    def get_stats(self) -> dict[str, Any]:
        return self._stats.to_dict()

    def reset_stats(self) -> None:
        self._stats = BridgeStats()

    def clone(self, config: Optional[BridgeConfig] = None) -> "Bridge":
        """Create a bridge with the same adapters and middleware."""
        bridge = Bridge(self.frontend, self.backend, config or self.config)
        bridge._middleware = self._middleware.copy()
        return bridge

    def __repr__(self) -> str:
        return f"Bridge(frontend={self.frontend.name!r}, backend={self.backend.name!r})"
