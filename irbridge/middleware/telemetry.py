from __future__ import annotations

import time
from typing import Any, AsyncIterator

from prometheus_client import CollectorRegistry, Counter, Histogram

from irbridge.exceptions import AdapterError
from irbridge.types import IRChatResponse, IRStreamChunk

from .base import (
    Middleware,
    MiddlewareContext,
    NextFunction,
    StreamingMiddleware,
    StreamNextFunction,
)

LATENCY_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0]
UNKNOWN_LABEL = "unknown"


def sanitize_label(value: Any, fallback: str = UNKNOWN_LABEL) -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    if not text:
        return fallback
    text = text.replace("\n", " ").replace("\r", " ")
    if len(text) > 128:
        return text[:128]
    return text


class GatewayMetrics:
    def __init__(self, registry: CollectorRegistry | None = None, namespace: str = "irbridge") -> None:
        self.registry = registry or CollectorRegistry()
        self.requests = Counter(
            f"{namespace}_requests_total",
            "Total chat requests",
            ["model", "backend", "status", "streaming"],
            registry=self.registry,
        )
        self.failures = Counter(
            f"{namespace}_request_failures_total",
            "Total failed chat requests",
            ["model", "backend", "error_code"],
            registry=self.registry,
        )
        self.input_tokens = Counter(
            f"{namespace}_input_tokens_total",
            "Total prompt tokens",
            ["model", "backend"],
            registry=self.registry,
        )
        self.output_tokens = Counter(
            f"{namespace}_output_tokens_total",
            "Total completion tokens",
            ["model", "backend"],
            registry=self.registry,
        )
        self.stream_chunks = Counter(
            f"{namespace}_stream_chunks_total",
            "Total content chunks streamed",
            ["model", "backend"],
            registry=self.registry,
        )
        self.latency = Histogram(
            f"{namespace}_request_latency_seconds",
            "End-to-end request latency",
            ["model", "backend", "streaming"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )


class TelemetryMiddleware(Middleware, StreamingMiddleware):
    """Records request counts, failures, token usage and latency in Prometheus."""

    name = "telemetry"

    def __init__(self, metrics: GatewayMetrics | None = None, registry: CollectorRegistry | None = None) -> None:
        self.metrics = metrics or GatewayMetrics(registry)

    def _labels(self, context: MiddlewareContext) -> tuple[str, str]:
        return sanitize_label(context.request.model), sanitize_label(context.backend_name)

    def _record_failure(self, context: MiddlewareContext, error: BaseException, streaming: str) -> None:
        model, backend = self._labels(context)
        code = error.code.value if isinstance(error, AdapterError) else type(error).__name__
        self.metrics.requests.labels(model=model, backend=backend, status="error", streaming=streaming).inc()
        self.metrics.failures.labels(model=model, backend=backend, error_code=sanitize_label(code)).inc()

    async def execute(self, context: MiddlewareContext, next: NextFunction) -> IRChatResponse:
        model, backend = self._labels(context)
        start = time.perf_counter()
        try:
            response = await next()
        except Exception as e:
            self._record_failure(context, e, "false")
            raise
        finally:
            self.metrics.latency.labels(model=model, backend=backend, streaming="false").observe(
                max(0.0, time.perf_counter() - start)
            )
        self.metrics.requests.labels(model=model, backend=backend, status="success", streaming="false").inc()
        if response.usage is not None:
            self.metrics.input_tokens.labels(model=model, backend=backend).inc(response.usage.prompt_tokens)
            self.metrics.output_tokens.labels(model=model, backend=backend).inc(response.usage.completion_tokens)
        return response

    async def execute_stream(
        self,
        context: MiddlewareContext,
        next: StreamNextFunction,
    ) -> AsyncIterator[IRStreamChunk]:
        start = time.perf_counter()
        try:
            stream = await next()
        except Exception as e:
            self._record_failure(context, e, "true")
            raise
        return self._observe(context, stream, start)

    async def _observe(
        self,
        context: MiddlewareContext,
        stream: AsyncIterator[IRStreamChunk],
        start: float,
    ) -> AsyncIterator[IRStreamChunk]:
        model, backend = self._labels(context)
        async for chunk in stream:
            if chunk.type == "content":
                self.metrics.stream_chunks.labels(model=model, backend=backend).inc()
            elif chunk.type == "done":
                self.metrics.requests.labels(model=model, backend=backend, status="success", streaming="true").inc()
                if chunk.usage is not None:
                    self.metrics.input_tokens.labels(model=model, backend=backend).inc(chunk.usage.prompt_tokens)
                    self.metrics.output_tokens.labels(model=model, backend=backend).inc(chunk.usage.completion_tokens)
            elif chunk.type == "error":
                self.metrics.requests.labels(model=model, backend=backend, status="error", streaming="true").inc()
                self.metrics.failures.labels(
                    model=model, backend=backend, error_code=sanitize_label(chunk.error.code)
                ).inc()
            if chunk.is_terminal():
                self.metrics.latency.labels(model=model, backend=backend, streaming="true").observe(
                    max(0.0, time.perf_counter() - start)
                )
            yield chunk
