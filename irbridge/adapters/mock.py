"""In-process backend that returns scripted responses."""

import asyncio
import math
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional, Sequence, Union

from irbridge.cancellation import CancellationToken
from irbridge.exceptions import NetworkError
from irbridge.streaming import ChunkSequencer
from irbridge.types import (
    FinishReason,
    IRChatRequest,
    IRChatResponse,
    IRMessage,
    IRStreamChunk,
    IRUsage,
)

from .base import AdapterCapabilities, AdapterMetadata, BackendAdapter, ListModelsResult, ModelInfo
from .registry import register_backend

_WORD_PATTERN = re.compile(r"\S+\s*|\s+")


@dataclass
class MockResponse:
    """A scripted backend response.

    Attributes:
        content: Assistant text
        finish_reason: Reported finish reason
        usage: Reported usage; estimated when unset and usage simulation is on
        delay: Seconds to wait before answering
        error: Exception raised instead of answering
    """

    content: str = ""
    finish_reason: FinishReason = "stop"
    usage: Optional[IRUsage] = None
    delay: float = 0.0
    error: Optional[BaseException] = None


ResponseSpec = Union[str, MockResponse]


def estimate_tokens(text: str) -> int:
    """Rough token estimate at four characters per token."""
    return math.ceil(len(text) / 4)


@register_backend("mock")
class MockBackendAdapter(BackendAdapter):
    """Backend returning configured responses without any network access.

    Records every request it receives, which makes it the standard test
    double for bridges and routers.
    """

    def __init__(
        self,
        *,
        name: str = "mock",
        default_response: ResponseSpec = "Mock response",
        model_responses: Optional[dict[str, ResponseSpec]] = None,
        response_generator: Optional[Callable[[IRChatRequest], ResponseSpec]] = None,
        simulate_streaming: bool = True,
        stream_chunk_delay: float = 0.0,
        stream_error_after: Optional[int] = None,
        default_model: Optional[str] = "mock-model",
        simulate_usage: bool = True,
        models: Optional[Sequence[str]] = None,
        cost_per_token: float = 0.0,
        healthy: bool = True,
        capabilities: Optional[AdapterCapabilities] = None,
    ) -> None:
        """Initialize the mock backend.

        Args:
            name: Adapter name, used as the router backend name
            default_response: Response when nothing more specific matches
            model_responses: Responses keyed by requested model
            response_generator: Callable producing a response per request
            simulate_streaming: Stream word by word instead of one chunk
            stream_chunk_delay: Seconds between streamed chunks
            stream_error_after: Raise a NetworkError after this many content chunks
            default_model: Model reported when the request names none
            simulate_usage: Estimate usage when a response has none
            models: Model ids returned by list_models
            cost_per_token: Price used by estimate_cost
            healthy: Value returned by health_check
            capabilities: Capability override
        """
        self.metadata = AdapterMetadata(
            name=name,
            provider="mock",
            capabilities=capabilities
            or AdapterCapabilities(
                streaming=True,
                multi_modal=True,
                tools=True,
                supports_top_k=True,
                supports_seed=True,
                supports_frequency_penalty=True,
                supports_presence_penalty=True,
                supports_list_models=True,
                supports_health_check=True,
                supports_cost_estimate=True,
            ),
        )
        self.default_response = default_response
        self.model_responses = dict(model_responses or {})
        self.response_generator = response_generator
        self.simulate_streaming = simulate_streaming
        self.stream_chunk_delay = stream_chunk_delay
        self.stream_error_after = stream_error_after
        self.default_model = default_model
        self.simulate_usage = simulate_usage
        self.models = list(models or ([default_model] if default_model else []))
        self.cost_per_token = cost_per_token
        self.healthy = healthy
        self.requests: list[IRChatRequest] = []

    @property
    def last_request(self) -> Optional[IRChatRequest]:
        return self.requests[-1] if self.requests else None

    def clear_history(self) -> None:
        self.requests = []

    def _resolve(self, request: IRChatRequest) -> MockResponse:
        if self.response_generator is not None:
            spec = self.response_generator(request)
        elif request.model is not None and request.model in self.model_responses:
            spec = self.model_responses[request.model]
        else:
            spec = self.default_response
        if isinstance(spec, str):
            return MockResponse(content=spec)
        return spec

    def _usage(self, request: IRChatRequest, response: MockResponse) -> Optional[IRUsage]:
        if response.usage is not None:
            return response.usage
        if not self.simulate_usage:
            return None
        prompt = sum(estimate_tokens(m.text) for m in request.messages)
        return IRUsage.from_counts(prompt, estimate_tokens(response.content))

    async def _prepare(self, request: IRChatRequest, token: Optional[CancellationToken]) -> MockResponse:
        self.requests.append(request)
        response = self._resolve(request)
        if response.delay > 0:
            if token is not None:
                await token.guard(asyncio.sleep(response.delay))
            else:
                await asyncio.sleep(response.delay)
        if response.error is not None:
            raise response.error
        return response

    async def execute(
        self,
        request: IRChatRequest,
        token: Optional[CancellationToken] = None,
    ) -> IRChatResponse:
        """Return the scripted response for a request."""
        response = await self._prepare(request, token)
        metadata = request.metadata.with_provenance(backend=self.name)
        return IRChatResponse(
            message=IRMessage.assistant(response.content),
            finish_reason=response.finish_reason,
            usage=self._usage(request, response),
            metadata=metadata.model_copy(
                update={"provider_response_id": f"mock-{len(self.requests)}"}
            ),
        )

    async def execute_stream(
        self,
        request: IRChatRequest,
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[IRStreamChunk]:
        """Stream the scripted response, word by word when enabled."""
        response = await self._prepare(request, token)
        sequencer = ChunkSequencer(request.request_id)
        yield sequencer.start(request.metadata.with_provenance(backend=self.name))

        if self.simulate_streaming:
            deltas = _WORD_PATTERN.findall(response.content)
        else:
            deltas = [response.content] if response.content else []
        for index, delta in enumerate(deltas):
            if self.stream_error_after is not None and index >= self.stream_error_after:
                raise NetworkError("Mock stream interrupted")
            if token is not None:
                token.raise_if_cancelled()
            yield sequencer.content(delta)
            if self.stream_chunk_delay > 0:
                await asyncio.sleep(self.stream_chunk_delay)

        yield sequencer.done(response.finish_reason, self._usage(request, response))

    async def list_models(self) -> ListModelsResult:
        return ListModelsResult(
            models=[ModelInfo(id=model, provider="mock") for model in self.models],
            source="static",
        )

    async def health_check(self) -> bool:
        return self.healthy

    async def estimate_cost(self, request: IRChatRequest) -> Optional[float]:
        prompt = sum(estimate_tokens(m.text) for m in request.messages)
        return prompt * self.cost_per_token

    def __repr__(self) -> str:
        return f"MockBackendAdapter(name={self.name!r})"


def create_echo_backend(name: str = "echo", **kwargs: Any) -> MockBackendAdapter:
    """Create a mock backend that echoes the last user message."""
    def echo(request: IRChatRequest) -> str:
        for message in reversed(request.messages):
            if message.role == "user":
                return message.text
        return ""
    return MockBackendAdapter(name=name, response_generator=echo, **kwargs)


def create_error_backend(error: BaseException, name: str = "error", **kwargs: Any) -> MockBackendAdapter:
    """Create a mock backend that always raises ``error``."""
    return MockBackendAdapter(name=name, default_response=MockResponse(error=error), **kwargs)
