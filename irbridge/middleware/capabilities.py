"""Adapts requests to what the target backend can represent."""

from typing import AsyncIterator, Optional

from irbridge.adapters.base import AdapterCapabilities
from irbridge.types import IRChatResponse, IRMessage, IRStreamChunk
from irbridge.utils.parameters import filter_unsupported_parameters
from irbridge.utils.system_messages import (
    DEFAULT_SEPARATOR,
    SystemMessagePolicy,
    normalize_system_messages,
)

from .base import (
    Middleware,
    MiddlewareContext,
    NextFunction,
    StreamingMiddleware,
    StreamNextFunction,
)


class CapabilityMiddleware(Middleware, StreamingMiddleware):
    """Normalizes system messages and drops unsupported parameters.

    Every change is recorded as an IRWarning on the request metadata. For
    the ``separate-parameter`` strategy the combined system prompt stays a
    single leading system message, which is the form such backends extract.
    """

    name = "capabilities"

    def __init__(
        self,
        capabilities: AdapterCapabilities,
        *,
        system_message_policy: SystemMessagePolicy = "merge",
        separator: str = DEFAULT_SEPARATOR,
        source: Optional[str] = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            capabilities: Capabilities of the backend requests are bound for
            system_message_policy: ``merge`` or ``reject`` multiple system messages
            separator: Separator used when merging system messages
            source: Name recorded on warnings
        """
        self.capabilities = capabilities
        self.system_message_policy = system_message_policy
        self.separator = separator
        self.source = source

    def _adapt(self, context: MiddlewareContext) -> None:
        request = context.request
        normalized = normalize_system_messages(
            request.messages,
            self.capabilities.system_message_strategy,
            supports_multiple=self.capabilities.supports_multiple_system_messages,
            policy=self.system_message_policy,
            separator=self.separator,
        )
        messages = normalized.messages
        if normalized.system is not None:
            messages = [IRMessage.system(normalized.system), *messages]

        parameters, parameter_warnings = filter_unsupported_parameters(
            request.parameters, self.capabilities, source=self.source
        )
        warnings = [*normalized.warnings, *parameter_warnings]
        if warnings or messages != request.messages:
            context.request = request.model_copy(
                update={
                    "messages": messages,
                    "parameters": parameters,
                    "metadata": request.metadata.with_warnings(
                        [w.model_copy(update={"source": w.source or self.source}) for w in warnings]
                    ),
                }
            )

    async def execute(self, context: MiddlewareContext, next: NextFunction) -> IRChatResponse:
        self._adapt(context)
        return await next()

    async def execute_stream(
        self,
        context: MiddlewareContext,
        next: StreamNextFunction,
    ) -> AsyncIterator[IRStreamChunk]:
        self._adapt(context)
        return await next()
