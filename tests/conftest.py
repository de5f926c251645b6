from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Optional

import pytest
from prometheus_client import CollectorRegistry

from irbridge.adapters import AdapterMetadata, BackendAdapter
from irbridge.adapters.mock import MockBackendAdapter
from irbridge.cancellation import CancellationToken
from irbridge.streaming import ChunkSequencer
from irbridge.types import IRChatRequest, IRChatResponse, IRMessage, IRMetadata, IRParameters, IRStreamChunk


class ScriptedBackend(BackendAdapter):
    """Backend that replays a list of outcomes, one per call.

    An outcome is a string (answered), an exception (raised) or a list of
    chunks (streamed as-is). The last outcome repeats once the script runs out.
    """

    def __init__(self, name: str, outcomes: list[Any], default_model: Optional[str] = None) -> None:
        self.metadata = AdapterMetadata(name=name, provider="scripted")
        self.default_model = default_model
        self.outcomes = list(outcomes)
        self.calls: list[IRChatRequest] = []

    def _next(self, request: IRChatRequest) -> Any:
        self.calls.append(request)
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]

    async def execute(self, request: IRChatRequest, token: Optional[CancellationToken] = None) -> IRChatResponse:
        outcome = self._next(request)
        if isinstance(outcome, BaseException):
            raise outcome
        return IRChatResponse(message=IRMessage.assistant(outcome), metadata=request.metadata)

    async def execute_stream(
        self,
        request: IRChatRequest,
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[IRStreamChunk]:
        outcome = self._next(request)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, list):
            for chunk in outcome:
                if isinstance(chunk, BaseException):
                    raise chunk
                yield chunk
            return
        sequencer = ChunkSequencer(request.request_id)
        yield sequencer.start()
        for word in outcome.split(" "):
            yield sequencer.content(word + " ")
        yield sequencer.done()


@pytest.fixture
def make_request() -> Callable[..., IRChatRequest]:
    """Factory for simple IR requests."""

    def factory(
        text: str = "Hello",
        *,
        model: Optional[str] = "test-model",
        messages: Optional[list[IRMessage]] = None,
        custom: Optional[dict[str, Any]] = None,
        request_id: Optional[str] = None,
        **parameters: Any,
    ) -> IRChatRequest:
        metadata = IRMetadata(custom=custom or {})
        if request_id is not None:
            metadata = metadata.model_copy(update={"request_id": request_id})
        return IRChatRequest(
            messages=messages if messages is not None else [IRMessage.user(text)],
            parameters=IRParameters(model=model, **parameters),
            metadata=metadata,
        )

    return factory


@pytest.fixture
def scripted_backend() -> Callable[..., ScriptedBackend]:
    """Factory for scripted backends."""

    def factory(name: str, *outcomes: Any, default_model: Optional[str] = None) -> ScriptedBackend:
        return ScriptedBackend(name, list(outcomes) or ["ok"], default_model=default_model)

    return factory


@pytest.fixture
def mock_backend() -> MockBackendAdapter:
    return MockBackendAdapter(default_response="Hello from mock")


@pytest.fixture
def registry() -> CollectorRegistry:
    """Fresh prometheus registry per test."""
    return CollectorRegistry()
