"""Cooldown tracking for failing backends."""

import time
from typing import Optional


class CooldownManager:
    """Takes a backend out of rotation after repeated failures.

    A backend is cooling down once ``failure_threshold`` failures land inside
    ``cooldown_time`` seconds. A success, or the failures ageing out of the
    window, puts it back.
    """

    def __init__(self, cooldown_time: float = 60.0, failure_threshold: int = 3) -> None:
        """Initialize the cooldown manager.

        Args:
            cooldown_time: Failure window and cooldown length in seconds
            failure_threshold: Failures inside the window that trigger cooldown
        """
        self.cooldown_time = cooldown_time
        self.failure_threshold = failure_threshold
        self._failures: dict[str, list[float]] = {}

    def _prune(self, backend: str, now: Optional[float] = None) -> list[float]:
        cutoff = (now or time.time()) - self.cooldown_time
        failures = [t for t in self._failures.get(backend, []) if t > cutoff]
        if failures:
            self._failures[backend] = failures
        else:
            self._failures.pop(backend, None)
        return failures

    def record_failure(self, backend: str) -> bool:
        """Record a failure.

        Args:
            backend: Backend name

        Returns:
            True if the backend is now cooling down
        """
        now = time.time()
        self._failures.setdefault(backend, []).append(now)
        return len(self._prune(backend, now)) >= self.failure_threshold

    def record_success(self, backend: str) -> None:
        self._failures.pop(backend, None)

    def is_healthy(self, backend: str) -> bool:
        return len(self._prune(backend)) < self.failure_threshold

    def reset(self) -> None:
        self._failures.clear()
