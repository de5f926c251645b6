from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any


@dataclass
class BackendStats:
    request_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_latency_ms: float | None = None
    total_latency_ms: float = 0.0
    last_error: str | None = None
    recent_latencies_ms: deque = field(default_factory=lambda: deque(maxlen=100), repr=False)

    @property
    def average_latency_ms(self) -> float | None:
        if not self.request_count:
            return None
        return self.total_latency_ms / self.request_count

    @property
    def success_rate(self) -> float:
        return self.success_count / self.request_count if self.request_count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_count": self.request_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "last_latency_ms": self.last_latency_ms,
            "average_latency_ms": self.average_latency_ms,
            "success_rate": self.success_rate,
            "last_error": self.last_error,
        }


class RouterStats:
    """Per-backend counters and the round-robin cursor of one Router.

    This is the only state shared between concurrent requests, so every
    mutation and read goes through a single lock. Reads return copies.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._backends: dict[str, BackendStats] = {}
        self._cursor = 0
        self.total_requests = 0
        self.total_fallbacks = 0
        self.parallel_requests = 0

    def register(self, name: str) -> None:
        with self._lock:
            self._backends.setdefault(name, BackendStats())

    def unregister(self, name: str) -> None:
        with self._lock:
            self._backends.pop(name, None)

    def next_cursor(self) -> int:
        """Return the current round-robin slot and advance it."""
        with self._lock:
            slot = self._cursor
            self._cursor += 1
            return slot

    def record_request(self) -> None:
        with self._lock:
            self.total_requests += 1

    def record_fallback(self) -> None:
        with self._lock:
            self.total_fallbacks += 1

    def record_parallel(self) -> None:
        with self._lock:
            self.parallel_requests += 1

    def record_success(self, name: str, latency_ms: float) -> None:
        with self._lock:
            stats = self._backends.setdefault(name, BackendStats())
            stats.request_count += 1
            stats.success_count += 1
            stats.consecutive_failures = 0
            stats.last_latency_ms = latency_ms
            stats.total_latency_ms += latency_ms
            stats.recent_latencies_ms.append(latency_ms)

    def record_failure(self, name: str, latency_ms: float, error: BaseException | None = None) -> None:
        with self._lock:
            stats = self._backends.setdefault(name, BackendStats())
            stats.request_count += 1
            stats.failure_count += 1
            stats.consecutive_failures += 1
            stats.last_latency_ms = latency_ms
            stats.total_latency_ms += latency_ms
            stats.recent_latencies_ms.append(latency_ms)
            if error is not None:
                stats.last_error = str(error)[:500]

    def get(self, name: str) -> BackendStats | None:
        with self._lock:
            stats = self._backends.get(name)
            if stats is None:
                return None
            return BackendStats(
                request_count=stats.request_count,
                success_count=stats.success_count,
                failure_count=stats.failure_count,
                consecutive_failures=stats.consecutive_failures,
                last_latency_ms=stats.last_latency_ms,
                total_latency_ms=stats.total_latency_ms,
                last_error=stats.last_error,
                recent_latencies_ms=deque(stats.recent_latencies_ms, maxlen=100),
            )

    def average_latencies(self) -> dict[str, float | None]:
        with self._lock:
            return {name: stats.average_latency_ms for name, stats in self._backends.items()}

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_requests": self.total_requests,
                "total_fallbacks": self.total_fallbacks,
                "parallel_requests": self.parallel_requests,
                "round_robin_cursor": self._cursor,
                "backends": {name: stats.to_dict() for name, stats in self._backends.items()},
            }

    def reset(self, name: str | None = None) -> None:
        with self._lock:
            if name is not None:
                if name in self._backends:
                    self._backends[name] = BackendStats()
                return
            self._backends = {n: BackendStats() for n in self._backends}
            self._cursor = 0
            self.total_requests = 0
            self.total_fallbacks = 0
            self.parallel_requests = 0
