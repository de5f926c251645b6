"""Structured request logging middleware."""

import time
from typing import Any, AsyncIterator, Optional

import structlog

from irbridge.exceptions import AdapterError
from irbridge.types import IRChatResponse, IRMessage, IRStreamChunk

from .base import (
    Middleware,
    MiddlewareContext,
    NextFunction,
    StreamingMiddleware,
    StreamNextFunction,
)

logger = structlog.get_logger()


class LoggingMiddleware(Middleware, StreamingMiddleware):
    """Logs request lifecycle events with structlog."""

    name = "logging"

    def __init__(
        self,
        *,
        log_messages: bool = False,
        truncate_messages: bool = True,
        max_message_length: int = 1000,
        bound_logger: Optional[Any] = None,
    ) -> None:
        """Initialize the logging middleware.

        Args:
            log_messages: Whether to include message content in log events
            truncate_messages: Whether to truncate message content
            max_message_length: Maximum message length before truncation
            bound_logger: structlog logger to use instead of the module logger
        """
        self.log_messages = log_messages
        self.truncate_messages = truncate_messages
        self.max_message_length = max_message_length
        self.logger = bound_logger or logger

    def _truncate(self, text: str) -> str:
        if self.truncate_messages and len(text) > self.max_message_length:
            return text[:self.max_message_length] + "... [truncated]"
        return text

    def _messages(self, messages: list[IRMessage]) -> list[dict[str, str]]:
        return [{"role": m.role, "content": self._truncate(m.text)} for m in messages]

    def _request_fields(self, context: MiddlewareContext) -> dict[str, Any]:
        request = context.request
        fields: dict[str, Any] = {
            "request_id": request.request_id,
            "model": request.model,
            "backend": context.backend_name,
            "message_count": len(request.messages),
        }
        if self.log_messages:
            fields["messages"] = self._messages(request.messages)
        return fields

    @staticmethod
    def _error_fields(error: BaseException) -> dict[str, Any]:
        if isinstance(error, AdapterError):
            return {"error_code": error.code.value, "error_message": error.message}
        return {"error_code": type(error).__name__, "error_message": str(error)}

    async def execute(self, context: MiddlewareContext, next: NextFunction) -> IRChatResponse:
        fields = self._request_fields(context)
        self.logger.info("request_started", **fields)
        start = time.perf_counter()
        try:
            response = await next()
        except Exception as e:
            self.logger.error(
                "request_failed",
                request_id=fields["request_id"],
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
                **self._error_fields(e),
            )
            raise

        usage = response.usage
        self.logger.info(
            "request_completed",
            request_id=fields["request_id"],
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
            finish_reason=response.finish_reason,
            backend=response.metadata.provenance.backend or context.backend_name,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            cache_hit=context.state.get("cache_hit", False),
        )
        return response

    async def execute_stream(
        self,
        context: MiddlewareContext,
        next: StreamNextFunction,
    ) -> AsyncIterator[IRStreamChunk]:
        fields = self._request_fields(context)
        self.logger.info("stream_started", **fields)
        start = time.perf_counter()
        try:
            stream = await next()
        except Exception as e:
            self.logger.error("stream_failed", request_id=fields["request_id"], **self._error_fields(e))
            raise
        return self._log_stream(context, stream, start)

    async def _log_stream(
        self,
        context: MiddlewareContext,
        stream: AsyncIterator[IRStreamChunk],
        start: float,
    ) -> AsyncIterator[IRStreamChunk]:
        request_id = context.request_id
        first_chunk_at: Optional[float] = None
        async for chunk in stream:
            if chunk.type == "content":
                context.chunks_processed += 1
                if first_chunk_at is None:
                    first_chunk_at = time.perf_counter()
            elif chunk.type == "done":
                self.logger.info(
                    "stream_completed",
                    request_id=request_id,
                    chunks=context.chunks_processed,
                    finish_reason=chunk.finish_reason,
                    latency_ms=round((time.perf_counter() - start) * 1000, 2),
                    ttft_ms=round((first_chunk_at - start) * 1000, 2) if first_chunk_at else None,
                    completion_tokens=chunk.usage.completion_tokens if chunk.usage else None,
                )
            elif chunk.type == "error":
                self.logger.error(
                    "stream_failed",
                    request_id=request_id,
                    chunks=context.chunks_processed,
                    error_code=chunk.error.code,
                    error_message=chunk.error.message,
                )
            yield chunk
