from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Callable

from irbridge.exceptions import RateLimitError, is_retryable
from irbridge.types import IRChatResponse

from .base import Middleware, MiddlewareContext, NextFunction

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    backoff_max: float = 30.0
    backoff_jitter: bool = True
    honor_retry_after: bool = True


class RetryMiddleware(Middleware):
    """Re-runs the rest of the chain on retryable errors with exponential backoff.

    Sleeps are guarded by the request's cancellation token, so a cancelled
    or timed out request stops retrying immediately.
    """

    name = "retry"

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        should_retry: Callable[[Exception, int], bool] | None = None,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        self.config = config or RetryConfig()
        self.should_retry = should_retry or (lambda error, attempt: is_retryable(error))
        self._sleep = sleep or asyncio.sleep

    def compute_backoff(self, attempt: int, error: Exception | None = None) -> float:
        if (
            self.config.honor_retry_after
            and isinstance(error, RateLimitError)
            and error.retry_after is not None
        ):
            return min(float(error.retry_after), self.config.backoff_max)
        delay = self.config.initial_delay * (self.config.backoff_multiplier ** attempt)
        delay = min(delay, self.config.backoff_max)
        if self.config.backoff_jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay

    async def execute(self, context: MiddlewareContext, next: NextFunction) -> IRChatResponse:
        attempt = 0
        while True:
            try:
                return await next()
            except Exception as e:
                attempt += 1
                context.state["retry_attempts"] = attempt
                if attempt >= self.config.max_attempts or not self.should_retry(e, attempt):
                    raise
                delay = self.compute_backoff(attempt - 1, e)
                logger.warning(
                    "Retrying request: request_id=%s attempt=%d delay=%.2fs error=%s",
                    context.request_id, attempt, delay, str(e)[:200],
                )
                if context.token is not None:
                    await context.token.guard(self._sleep(delay))
                else:
                    await self._sleep(delay)
