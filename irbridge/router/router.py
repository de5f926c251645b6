"""Router for failover and load balancing across backend adapters."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable, Literal, Mapping, Optional, Union

from irbridge.adapters.base import (
    AdapterCapabilities,
    AdapterMetadata,
    BackendAdapter,
    ListModelsResult,
    ModelInfo,
    supports_operation,
)
from irbridge.cancellation import CancellationToken, guard_stream
from irbridge.events import Event, EventEmitter, Listener
from irbridge.exceptions import (
    AdapterError,
    ErrorCode,
    ErrorProvenance,
    RequestCancelledError,
    RouterError,
    StreamError,
    error_from_code,
)
from irbridge.streaming import ensure_well_formed
from irbridge.types import IRChatRequest, IRChatResponse, IRStreamChunk, IRWarning

from .cooldown import CooldownManager
from .stats import BackendStats, RouterStats
from .strategies import (
    CustomFallback,
    CustomSelector,
    RoutingContext,
    create_strategy,
    resolve_fallback,
)
from .translation import ModelTranslationConfig, ModelTranslator, TranslationResult

logger = logging.getLogger(__name__)

SelectionStrategyName = Literal[
    "priority", "round-robin", "random", "latency", "model-based", "cost-optimized", "custom"
]
FallbackStrategyName = Literal["next", "none", "custom"]
ParallelStrategy = Union[Literal["first", "all"], Callable[[list["BackendResponse"]], IRChatResponse]]


@dataclass
class BackendResponse:
    """One backend's answer in a parallel dispatch."""

    backend: str
    response: IRChatResponse
    latency_ms: float


@dataclass
class ParallelDispatchResult:
    """Outcome of :meth:`Router.dispatch_parallel`.

    Attributes:
        response: The winning or combined response
        responses: Every successful response, in completion order
        failures: Errors keyed by backend name
        cancelled: Backends stopped once the outcome was decided
        total_time_ms: Wall time of the dispatch
    """

    response: IRChatResponse
    responses: list[BackendResponse] = field(default_factory=list)
    failures: dict[str, BaseException] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)
    total_time_ms: float = 0.0

    @property
    def successful_backends(self) -> list[str]:
        return [r.backend for r in self.responses]


class Router(BackendAdapter):
    """A backend adapter that dispatches to other backends.

    Candidates are ordered by the selection strategy and tried in turn. On a
    failure that is not flagged non-retryable, the fallback strategy picks
    the next candidate and the same request is sent again. Every attempt
    updates the backend's statistics before the router moves on.
    """

    def __init__(
        self,
        backends: Union[Iterable[BackendAdapter], Mapping[str, BackendAdapter]] = (),
        *,
        name: str = "router",
        strategy: SelectionStrategyName = "priority",
        fallback_strategy: FallbackStrategyName = "next",
        selector: Optional[CustomSelector] = None,
        fallback_selector: Optional[CustomFallback] = None,
        model_translation: Optional[ModelTranslationConfig] = None,
        cooldown: Optional[CooldownManager] = None,
        model_routes: Optional[Mapping[str, str]] = None,
        pattern_routes: Optional[list[tuple[str, str]]] = None,
    ) -> None:
        """Initialize the router.

        Args:
            backends: Backends in priority order, or a name to backend mapping
            name: Router name used in provenance
            strategy: Selection strategy
            fallback_strategy: What to do when a backend fails
            selector: Selection function for the ``custom`` strategy
            fallback_selector: Fallback function for the ``custom`` fallback
            model_translation: Model translation settings
            cooldown: Skips backends that keep failing, when set
            model_routes: Model to backend routes for the ``model-based`` strategy
            pattern_routes: Regex pattern to backend routes for ``model-based``
        """
        if fallback_strategy == "custom" and fallback_selector is None:
            raise ValueError("custom fallback strategy requires a fallback_selector")
        self.metadata = AdapterMetadata(name=name, provider="router")
        self.strategy_name = strategy
        self.strategy = create_strategy(
            strategy, selector, model_routes=model_routes, pattern_routes=pattern_routes
        )
        self.fallback_strategy = fallback_strategy
        self.fallback_selector = fallback_selector
        self.translator = ModelTranslator(model_translation)
        self.cooldown = cooldown
        self._backends: dict[str, BackendAdapter] = {}
        self._health: dict[str, bool] = {}
        self._stats = RouterStats()
        self._events = EventEmitter()

        if isinstance(backends, Mapping):
            for backend_name, backend in backends.items():
                self.register(backend, name=backend_name)
        else:
            for backend in backends:
                self.register(backend)
        self._refresh_capabilities()

    # Backend management

    def register(self, backend: BackendAdapter, name: Optional[str] = None) -> "Router":
        """Add a backend at the end of the priority order.

        Raises:
            RouterError: If the name is already registered
        """
        backend_name = name or backend.name
        if backend_name in self._backends:
            raise RouterError(
                f"Backend '{backend_name}' is already registered",
                code=ErrorCode.ROUTING_FAILED,
                provenance=ErrorProvenance(router=self.name),
            )
        self._backends[backend_name] = backend
        self._health[backend_name] = True
        self._stats.register(backend_name)
        self._refresh_capabilities()
        return self

    def unregister(self, name: str) -> bool:
        if name not in self._backends:
            return False
        del self._backends[name]
        self._health.pop(name, None)
        self._stats.unregister(name)
        self._refresh_capabilities()
        return True

    def get(self, name: str) -> Optional[BackendAdapter]:
        return self._backends.get(name)

    def has(self, name: str) -> bool:
        return name in self._backends

    @property
    def backend_names(self) -> list[str]:
        return list(self._backends)

    def _refresh_capabilities(self) -> None:
        """Recompute capabilities from the registered backends.

        Feature flags hold only when every backend has them and limits are the
        tightest among the backends. The router always lists models and
        checks health; it estimates cost when any backend can.
        """
        caps = [backend.capabilities for backend in self._backends.values()]
        if not caps:
            derived = AdapterCapabilities(supports_list_models=True, supports_health_check=True)
        else:
            context_limits = [c.max_context_tokens for c in caps if c.max_context_tokens is not None]
            stop_limits = [c.max_stop_sequences for c in caps if c.max_stop_sequences is not None]
            if any(c.supported_models is None for c in caps):
                models = None
            else:
                models = sorted({m for c in caps for m in c.supported_models or ()})
            strategies = {c.system_message_strategy for c in caps}
            derived = AdapterCapabilities(
                streaming=all(c.streaming for c in caps),
                multi_modal=all(c.multi_modal for c in caps),
                tools=all(c.tools for c in caps),
                max_context_tokens=min(context_limits) if context_limits else None,
                supported_models=models,
                system_message_strategy=strategies.pop() if len(strategies) == 1 else "in-messages",
                supports_multiple_system_messages=all(c.supports_multiple_system_messages for c in caps),
                supports_temperature=all(c.supports_temperature for c in caps),
                supports_top_p=all(c.supports_top_p for c in caps),
                supports_top_k=all(c.supports_top_k for c in caps),
                supports_seed=all(c.supports_seed for c in caps),
                supports_frequency_penalty=all(c.supports_frequency_penalty for c in caps),
                supports_presence_penalty=all(c.supports_presence_penalty for c in caps),
                max_stop_sequences=min(stop_limits) if stop_limits else None,
                supports_list_models=True,
                supports_health_check=True,
                supports_cost_estimate=any(c.supports_cost_estimate for c in caps),
            )
        self.metadata = self.metadata.model_copy(update={"capabilities": derived})

    # Health

    def is_healthy(self, name: str) -> bool:
        return self._health.get(name, False)

    def mark_healthy(self, name: str) -> None:
        if name in self._backends:
            self._health[name] = True

    def mark_unhealthy(self, name: str) -> None:
        """Take a backend out of selection until it is marked healthy again."""
        if name in self._backends:
            self._health[name] = False
            logger.warning("Backend %s marked unhealthy", name)

    def is_available(self, name: str) -> bool:
        """True when the backend is healthy and not cooling down."""
        if not self.is_healthy(name):
            return False
        return self.cooldown is None or self.cooldown.is_healthy(name)

    # Events

    def on(self, event_type: str, listener: Listener) -> Any:
        return self._events.on(event_type, listener)

    def once(self, event_type: str, listener: Listener) -> Any:
        return self._events.once(event_type, listener)

    def off(self, event_type: str, listener: Listener) -> None:
        self._events.off(event_type, listener)

    async def _emit(self, event_type: str, request: IRChatRequest, **data: Any) -> None:
        await self._events.emit(Event(type=event_type, request_id=request.request_id, data=data))

    # Statistics

    @property
    def stats(self) -> RouterStats:
        return self._stats

    def get_stats(self) -> dict[str, Any]:
        return self._stats.snapshot()

    def get_backend_stats(self, name: str) -> Optional[BackendStats]:
        return self._stats.get(name)

    def reset_stats(self, name: Optional[str] = None) -> None:
        self._stats.reset(name)

    # Selection

    def translate_model(self, model: Optional[str], backend_name: str) -> TranslationResult:
        """Translate a model name for one backend."""
        backend = self._backends.get(backend_name)
        default = backend.default_model if backend is not None else None
        return self.translator.translate(model, backend_name, default)

    async def select_backends(self, request: IRChatRequest) -> list[str]:
        """Return the ordered candidate list for a request.

        Args:
            request: The IR request

        Returns:
            Backend names in the order they will be tried
        """
        names = self.backend_names
        available = [n for n in names if self.is_available(n)]
        if available:
            names = available
        elif names:
            logger.warning("No backend is healthy; trying all of them")
        context = RoutingContext(request=request, stats=self._stats, backends=self._backends)
        ordered = await self.strategy.order(names, context)

        preferred = request.metadata.custom.get("backend")
        if isinstance(preferred, str) and preferred in self._backends:
            ordered = [preferred] + [n for n in ordered if n != preferred]
        return ordered

    async def _prepare_request(self, request: IRChatRequest, backend_name: str) -> IRChatRequest:
        result = self.translate_model(request.model, backend_name)
        prepared = request
        warnings = []
        if result.was_translated:
            prepared = prepared.with_model(result.translated)
            if result.source == "default":
                warnings.append(
                    IRWarning(
                        category="model-substituted",
                        message=(
                            f"Model '{request.model}' has no translation for backend "
                            f"'{backend_name}'; using default '{result.translated}'"
                        ),
                        field="model",
                        original_value=request.model,
                        transformed_value=result.translated,
                        source=self.name,
                    )
                )
                await self._emit(
                    "model:default",
                    request,
                    backend=backend_name,
                    original=request.model,
                    translated=result.translated,
                )
        metadata = prepared.metadata.with_warnings(warnings)
        return prepared.model_copy(
            update={
                "metadata": metadata.with_provenance(router=self.name, backend=backend_name),
            }
        )

    def _can_fall_back(self, error: BaseException) -> bool:
        if self.fallback_strategy == "none":
            return False
        return not (isinstance(error, AdapterError) and not error.is_retryable)

    async def _next_candidate(
        self,
        request: IRChatRequest,
        failed: str,
        error: BaseException,
        attempted: list[str],
        candidates: list[str],
    ) -> Optional[str]:
        remaining = [n for n in candidates if n not in attempted]
        if not remaining:
            return None
        if self.fallback_strategy == "next":
            return remaining[0]
        chosen = await resolve_fallback(
            self.fallback_selector, request, failed, error, attempted, remaining
        )
        if chosen is None or chosen in attempted or chosen not in self._backends:
            return None
        return chosen

    def _record_failure(self, name: str, latency_ms: float, error: BaseException) -> None:
        self._stats.record_failure(name, latency_ms, error)
        if self.cooldown is not None and self.cooldown.record_failure(name):
            logger.warning("Backend %s entered cooldown after repeated failures", name)

    def _record_success(self, name: str, latency_ms: float) -> None:
        self._stats.record_success(name, latency_ms)
        if self.cooldown is not None:
            self.cooldown.record_success(name)

    def _exhausted(
        self,
        attempted: list[str],
        errors: dict[str, BaseException],
    ) -> RouterError:
        last = errors[attempted[-1]]
        return RouterError(
            f"All backends failed ({', '.join(attempted)}); last error: {last}",
            code=ErrorCode.ALL_BACKENDS_FAILED,
            attempted_backends=attempted,
            errors=errors,
            provenance=ErrorProvenance(router=self.name, backend=attempted[-1]),
            cause=last,
        )

    def _no_backends(self) -> RouterError:
        return RouterError(
            "No backend available",
            code=ErrorCode.NO_BACKEND_AVAILABLE,
            provenance=ErrorProvenance(router=self.name),
        )

    # Execution

    async def _attempt(
        self,
        name: str,
        request: IRChatRequest,
        token: Optional[CancellationToken],
    ) -> BackendResponse:
        backend = self._backends[name]
        prepared = await self._prepare_request(request, name)
        start = time.perf_counter()
        try:
            call = backend.execute(prepared, token)
            response = await (token.guard(call) if token is not None else call)
        except RequestCancelledError:
            raise
        except Exception as e:
            self._record_failure(name, (time.perf_counter() - start) * 1000, e)
            raise
        latency_ms = (time.perf_counter() - start) * 1000
        self._record_success(name, latency_ms)
        response = response.with_metadata(
            request_id=request.request_id,
            provenance=response.metadata.provenance.model_copy(
                update={"backend": name, "router": self.name}
            ),
        )
        return BackendResponse(backend=name, response=response, latency_ms=latency_ms)

    async def execute(
        self,
        request: IRChatRequest,
        token: Optional[CancellationToken] = None,
    ) -> IRChatResponse:
        """Execute a request with failover.

        Raises:
            RouterError: ``ALL_BACKENDS_FAILED`` when every candidate failed,
                ``NO_BACKEND_AVAILABLE`` when there are none
            AdapterError: A non-retryable backend error, unchanged
        """
        self._stats.record_request()
        candidates = await self.select_backends(request)
        if not candidates:
            raise self._no_backends()

        attempted: list[str] = []
        errors: dict[str, BaseException] = {}
        name: Optional[str] = candidates[0]
        while name is not None:
            if token is not None:
                token.raise_if_cancelled()
            attempted.append(name)
            try:
                return (await self._attempt(name, request, token)).response
            except RequestCancelledError:
                raise
            except Exception as e:
                errors[name] = e
                if not self._can_fall_back(e):
                    raise
                next_name = await self._next_candidate(request, name, e, attempted, candidates)
                if next_name is not None:
                    logger.warning(
                        "Backend %s failed, switching to %s: %s", name, next_name, str(e)[:200]
                    )
                    self._stats.record_fallback()
                    await self._emit("backend:switch", request, from_backend=name, to_backend=next_name, error=e)
                name = next_name

        raise self._exhausted(attempted, errors)

    async def execute_stream(
        self,
        request: IRChatRequest,
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[IRStreamChunk]:
        """Stream a request with failover.

        Fallback is possible until the first content or terminal chunk is
        forwarded; after that a backend failure ends the stream with an
        error chunk.
        """
        async for chunk in ensure_well_formed(
            self._stream_with_failover(request, token),
            request.request_id,
            request.metadata.with_provenance(router=self.name),
        ):
            yield chunk

    async def _stream_with_failover(
        self,
        request: IRChatRequest,
        token: Optional[CancellationToken],
    ) -> AsyncIterator[IRStreamChunk]:
        self._stats.record_request()
        candidates = await self.select_backends(request)
        if not candidates:
            raise self._no_backends()

        attempted: list[str] = []
        errors: dict[str, BaseException] = {}
        name: Optional[str] = candidates[0]
        while name is not None:
            attempted.append(name)
            backend = self._backends[name]
            prepared = await self._prepare_request(request, name)
            start = time.perf_counter()
            committed = False
            pending: list[IRStreamChunk] = []
            try:
                async for chunk in guard_stream(backend.execute_stream(prepared, token), token):
                    if not committed:
                        if chunk.type == "start":
                            pending.append(chunk)
                            continue
                        if chunk.type == "error":
                            raise error_from_code(
                                chunk.error.code,
                                chunk.error.message,
                                chunk.error.details,
                                provenance=ErrorProvenance(backend=name, router=self.name),
                            )
                        committed = True
                        for buffered in pending:
                            yield buffered
                    yield chunk
                    if chunk.type == "done":
                        self._record_success(name, (time.perf_counter() - start) * 1000)
                        return
                    if chunk.type == "error":
                        self._record_failure(
                            name,
                            (time.perf_counter() - start) * 1000,
                            error_from_code(chunk.error.code, chunk.error.message),
                        )
                        return
                raise StreamError(
                    f"Backend '{name}' stream ended without a terminal chunk",
                    code=ErrorCode.STREAM_INTERRUPTED,
                    provenance=ErrorProvenance(backend=name, router=self.name),
                )
            except RequestCancelledError:
                raise
            except Exception as e:
                self._record_failure(name, (time.perf_counter() - start) * 1000, e)
                if committed:
                    raise
                errors[name] = e
                if not self._can_fall_back(e):
                    raise
                next_name = await self._next_candidate(request, name, e, attempted, candidates)
                if next_name is not None:
                    logger.warning(
                        "Backend %s failed before streaming, switching to %s: %s",
                        name, next_name, str(e)[:200],
                    )
                    self._stats.record_fallback()
                    await self._emit("backend:switch", request, from_backend=name, to_backend=next_name, error=e)
                name = next_name

        raise self._exhausted(attempted, errors)

    async def dispatch_parallel(
        self,
        request: IRChatRequest,
        *,
        backends: Optional[list[str]] = None,
        strategy: ParallelStrategy = "first",
        timeout: Optional[float] = None,
        token: Optional[CancellationToken] = None,
    ) -> ParallelDispatchResult:
        """Send one request to several backends concurrently.

        Args:
            request: The IR request
            backends: Backend names, all registered backends by default
            strategy: ``first`` returns the first success and cancels the
                rest; ``all`` waits for every backend; a callable receives
                all successful responses and returns the combined one
            timeout: Seconds before outstanding backends are cancelled
            token: Cancellation token for the request

        Returns:
            The dispatch result

        Raises:
            RouterError: If no backend succeeded
        """
        names = list(backends) if backends is not None else self.backend_names
        unknown = [n for n in names if n not in self._backends]
        if unknown:
            raise RouterError(
                f"Unknown backends: {', '.join(unknown)}",
                code=ErrorCode.ROUTING_FAILED,
                provenance=ErrorProvenance(router=self.name),
            )
        if not names:
            raise self._no_backends()

        self._stats.record_parallel()
        child = CancellationToken(timeout=timeout, parent=token)
        start = time.perf_counter()
        tasks = {asyncio.ensure_future(self._attempt(name, request, child)): name for name in names}
        waiter = asyncio.ensure_future(child.wait())
        pending = set(tasks)
        responses: list[BackendResponse] = []
        failures: dict[str, BaseException] = {}
        cancelled: list[str] = []
        try:
            while pending:
                done, _ = await asyncio.wait(pending | {waiter}, return_when=asyncio.FIRST_COMPLETED)
                if waiter in done:
                    break
                for task in done:
                    pending.discard(task)
                    error = task.exception()
                    if error is not None:
                        failures[tasks[task]] = error
                    else:
                        responses.append(task.result())
                if strategy == "first" and responses:
                    break
        finally:
            waiter.cancel()
            if pending:
                child.cancel("parallel dispatch decided")
                for task in pending:
                    task.cancel()
                for task, outcome in zip(pending, await asyncio.gather(*pending, return_exceptions=True)):
                    if isinstance(outcome, (asyncio.CancelledError, RequestCancelledError)):
                        cancelled.append(tasks[task])
                    elif isinstance(outcome, BaseException):
                        failures.setdefault(tasks[task], outcome)
                    else:
                        responses.append(outcome)
            child.dispose()

        total_time_ms = (time.perf_counter() - start) * 1000
        if not responses:
            if token is not None:
                token.raise_if_cancelled()
            if child.timed_out:
                raise child.to_error()
            attempted = [n for n in names if n in failures]
            if not attempted:
                raise self._no_backends()
            raise self._exhausted(attempted, failures)

        if strategy in ("first", "all"):
            response = responses[0].response
        else:
            response = strategy(responses)
        return ParallelDispatchResult(
            response=response,
            responses=responses,
            failures=failures,
            cancelled=[n for n in names if n in cancelled],
            total_time_ms=total_time_ms,
        )

    # Optional operations

    async def list_models(self) -> ListModelsResult:
        """Combine the model lists of every backend that can list models."""
        seen: dict[str, ModelInfo] = {}
        for name, backend in self._backends.items():
            if not supports_operation(backend, "list_models"):
                continue
            result = await backend.list_models()
            for model in result.models:
                seen.setdefault(model.id, model)
        return ListModelsResult(models=list(seen.values()), source="router")

    async def check_health(self) -> dict[str, bool]:
        """Check and record the health of each backend.

        Backends without health checks count as healthy. Unhealthy backends
        are skipped by selection until a later check or :meth:`mark_healthy`
        brings them back.
        """
        health = {}
        for name, backend in self._backends.items():
            if not supports_operation(backend, "health_check"):
                health[name] = True
                continue
            try:
                health[name] = await backend.health_check()
            except Exception as e:
                logger.warning("Health check failed for backend %s: %s", name, e)
                health[name] = False
        for name, healthy in health.items():
            if name in self._backends:
                self._health[name] = healthy
        return health

    async def health_check(self) -> bool:
        health = await self.check_health()
        return any(health.values())

    async def estimate_cost(self, request: IRChatRequest) -> Optional[float]:
        """Cost estimate from the first backend, in priority order, that offers one."""
        for name, backend in self._backends.items():
            if supports_operation(backend, "estimate_cost"):
                prepared = await self._prepare_request(request, name)
                return await backend.estimate_cost(prepared)
        return None

    def __repr__(self) -> str:
        return f"Router(name={self.name!r}, backends={self.backend_names!r}, strategy={self.strategy_name!r})"
