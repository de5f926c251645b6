from __future__ import annotations

import inspect
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, Union

from irbridge.adapters.base import BackendAdapter, supports_operation
from irbridge.types import IRChatRequest

from .stats import RouterStats

logger = logging.getLogger(__name__)


@dataclass
class RoutingContext:
    request: IRChatRequest
    stats: RouterStats
    attempted: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    backends: Mapping[str, BackendAdapter] = field(default_factory=dict)


SelectionResult = Union[str, Sequence[str], None]
CustomSelector = Callable[
    [IRChatRequest, list[str], RoutingContext],
    Union[SelectionResult, Awaitable[SelectionResult]],
]
CustomFallback = Callable[
    [IRChatRequest, str, BaseException, list[str], list[str]],
    Union[str, None, Awaitable[Union[str, None]]],
]


class SelectionStrategy(Protocol):
    async def order(self, backends: list[str], context: RoutingContext) -> list[str]: ...


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class PriorityStrategy:
    async def order(self, backends: list[str], context: RoutingContext) -> list[str]:
        return list(backends)


class RoundRobinStrategy:
    async def order(self, backends: list[str], context: RoutingContext) -> list[str]:
        if not backends:
            return []
        start = context.stats.next_cursor() % len(backends)
        return backends[start:] + backends[:start]


class RandomStrategy:
    async def order(self, backends: list[str], context: RoutingContext) -> list[str]:
        shuffled = list(backends)
        random.shuffle(shuffled)
        return shuffled


class LatencyStrategy:
    """Fastest average latency first; backends without data go last in list order."""

    async def order(self, backends: list[str], context: RoutingContext) -> list[str]:
        latencies = context.stats.average_latencies()
        measured = [b for b in backends if latencies.get(b) is not None]
        unmeasured = [b for b in backends if latencies.get(b) is None]
        return sorted(measured, key=lambda b: latencies[b]) + unmeasured


class CustomStrategy:
    """Delegates ordering to a caller-supplied selector.

    The selector may return one backend name (tried first, the rest follow in
    list order), an ordered list of names, or None for list order.
    """

    def __init__(self, selector: CustomSelector) -> None:
        self.selector = selector

    async def order(self, backends: list[str], context: RoutingContext) -> list[str]:
        selected = await _resolve(self.selector(context.request, list(backends), context))
        if selected is None:
            return list(backends)
        if isinstance(selected, str):
            if selected not in backends:
                return list(backends)
            return [selected] + [b for b in backends if b != selected]
        return [b for b in selected if b in backends]


class ModelBasedStrategy:
    """Puts the backend routed for the requested model first.

    An exact entry in ``model_routes`` wins over ``pattern_routes``, which
    are tried in order. Unmatched requests keep list order.
    """

    def __init__(
        self,
        model_routes: Mapping[str, str] | None = None,
        pattern_routes: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        self.model_routes = dict(model_routes or {})
        self.pattern_routes = [(re.compile(p), backend) for p, backend in pattern_routes or ()]

    def route(self, model: str | None, backends: Sequence[str]) -> str | None:
        if not model:
            return None
        exact = self.model_routes.get(model)
        if exact in backends:
            return exact
        for pattern, backend in self.pattern_routes:
            if backend in backends and pattern.search(model):
                return backend
        return None

    async def order(self, backends: list[str], context: RoutingContext) -> list[str]:
        chosen = self.route(context.request.model, backends)
        if chosen is None:
            return list(backends)
        return [chosen] + [b for b in backends if b != chosen]


class CostOptimizedStrategy:
    """Cheapest estimated request first; backends without an estimate go last in list order."""

    async def order(self, backends: list[str], context: RoutingContext) -> list[str]:
        costs: dict[str, float] = {}
        for name in backends:
            backend = context.backends.get(name)
            if backend is None or not supports_operation(backend, "estimate_cost"):
                continue
            try:
                cost = await backend.estimate_cost(context.request)
            except Exception as e:
                logger.warning("Cost estimate failed for backend %s: %s", name, e)
                continue
            if cost is not None:
                costs[name] = cost
        priced = [b for b in backends if b in costs]
        unpriced = [b for b in backends if b not in costs]
        return sorted(priced, key=lambda b: costs[b]) + unpriced


STRATEGIES: dict[str, type] = {
    "priority": PriorityStrategy,
    "round-robin": RoundRobinStrategy,
    "random": RandomStrategy,
    "latency": LatencyStrategy,
    "cost-optimized": CostOptimizedStrategy,
}


def create_strategy(
    name: str,
    selector: CustomSelector | None = None,
    *,
    model_routes: Mapping[str, str] | None = None,
    pattern_routes: Sequence[tuple[str, str]] | None = None,
) -> SelectionStrategy:
    if name == "model-based":
        return ModelBasedStrategy(model_routes, pattern_routes)
    if name == "custom":
        if selector is None:
            raise ValueError("custom strategy requires a selector")
        return CustomStrategy(selector)
    if name not in STRATEGIES:
        raise ValueError(f"Unknown routing strategy: {name}")
    return STRATEGIES[name]()


async def resolve_fallback(
    fallback: CustomFallback,
    request: IRChatRequest,
    failed: str,
    error: BaseException,
    attempted: list[str],
    remaining: list[str],
) -> str | None:
    return await _resolve(fallback(request, failed, error, list(attempted), list(remaining)))
