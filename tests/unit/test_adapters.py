"""Tests for the adapter contract, registry and built-in adapters."""

import pytest

from irbridge.adapters import (
    AdapterCapabilities,
    AdapterMetadata,
    AdapterRegistry,
    BackendAdapter,
    GenericFrontendAdapter,
    MockBackendAdapter,
    MockResponse,
    create_echo_backend,
    create_error_backend,
    register_backend,
    supports_operation,
)
from irbridge.cancellation import CancellationToken
from irbridge.exceptions import (
    AdapterConversionError,
    AdapterError,
    ErrorCode,
    NetworkError,
    RateLimitError,
    RequestCancelledError,
)
from irbridge.streaming import collect_stream, validate_chunk_sequence
from irbridge.types import IRChatRequest, IRChatResponse, IRMessage, IRMetadata, IRUsage


class TestCapabilities:
    """Test capability declarations."""

    def test_defaults(self):
        """Test conservative defaults."""
        capabilities = AdapterCapabilities()
        assert capabilities.streaming is True
        assert capabilities.supports_list_models is False
        assert capabilities.supports_model("anything")

    def test_supported_models(self):
        """Test the model allow list."""
        capabilities = AdapterCapabilities(supported_models=["a"])
        assert capabilities.supports_model("a")
        assert not capabilities.supports_model("b")

    async def test_optional_operations_unsupported(self, make_request):
        """Test undeclared optional operations raise UNSUPPORTED_FEATURE."""

        class Minimal(BackendAdapter):
            metadata = AdapterMetadata(name="minimal")

            async def execute(self, request, token=None):
                return IRChatResponse(message=IRMessage.assistant("x"))

            async def execute_stream(self, request, token=None):
                yield

        backend = Minimal()
        assert not supports_operation(backend, "list_models")
        with pytest.raises(AdapterError) as exc_info:
            await backend.list_models()
        assert exc_info.value.code == ErrorCode.UNSUPPORTED_FEATURE
        with pytest.raises(AdapterError):
            await backend.estimate_cost(make_request())


class TestAdapterRegistry:
    """Test the type name registry."""

    def test_builtins_registered(self):
        """Test built-in adapters are available by name."""
        assert "mock" in AdapterRegistry.list_backends()
        assert "generic" in AdapterRegistry.list_frontends()

    def test_create_backend(self):
        """Test instantiating by type name."""
        backend = AdapterRegistry.create_backend("mock", name="primary", default_response="x")
        assert isinstance(backend, MockBackendAdapter)
        assert backend.name == "primary"

    def test_unknown(self):
        """Test unknown names raise KeyError."""
        with pytest.raises(KeyError):
            AdapterRegistry.get_backend("nope")

    def test_decorator(self):
        """Test registering through the decorator."""

        @register_backend("test-decorated")
        class Decorated(MockBackendAdapter):
            pass

        try:
            assert AdapterRegistry.get_backend("test-decorated") is Decorated
        finally:
            AdapterRegistry.unregister("test-decorated")
        assert "test-decorated" not in AdapterRegistry.list_backends()


class TestMockBackend:
    """Test the scripted mock backend."""

    async def test_execute(self, make_request):
        """Test a default response with simulated usage."""
        backend = MockBackendAdapter(default_response="Hello there")
        request = make_request("Hi")
        response = await backend.execute(request)
        assert response.text == "Hello there"
        assert response.metadata.request_id == request.request_id
        assert response.metadata.provenance.backend == "mock"
        assert response.usage.completion_tokens == 3
        assert backend.last_request is request

    async def test_model_responses(self, make_request):
        """Test per-model responses."""
        backend = MockBackendAdapter(model_responses={"special": "special answer"})
        assert (await backend.execute(make_request(model="special"))).text == "special answer"
        assert (await backend.execute(make_request(model="other"))).text == "Mock response"

    async def test_scripted_error(self, make_request):
        """Test configured errors are raised."""
        backend = create_error_backend(RateLimitError("slow"))
        with pytest.raises(RateLimitError):
            await backend.execute(make_request())
        with pytest.raises(RateLimitError):
            await collect_stream(backend.execute_stream(make_request()))

    async def test_echo(self, make_request):
        """Test the echo backend."""
        assert (await create_echo_backend().execute(make_request("ping"))).text == "ping"

    async def test_stream_word_by_word(self, make_request):
        """Test streamed words reassemble to the response."""
        backend = MockBackendAdapter(default_response="one two three")
        chunks = await collect_stream(backend.execute_stream(make_request()))
        deltas = [c.delta for c in chunks if c.type == "content"]
        assert deltas == ["one ", "two ", "three"]
        assert validate_chunk_sequence(chunks).valid

    async def test_stream_error_after(self, make_request):
        """Test a stream interrupted mid-way."""
        backend = MockBackendAdapter(default_response="one two three", stream_error_after=1)
        stream = backend.execute_stream(make_request())
        with pytest.raises(NetworkError):
            await collect_stream(stream)

    async def test_delay_respects_token(self, make_request):
        """Test a slow response is cut off by the token."""
        backend = MockBackendAdapter(default_response=MockResponse(content="late", delay=5))
        with pytest.raises(RequestCancelledError):
            await backend.execute(make_request(), CancellationToken.with_timeout(0.01))

    async def test_optional_operations(self, make_request):
        """Test listing, health and cost."""
        backend = MockBackendAdapter(models=["m1", "m2"], cost_per_token=0.5, healthy=False)
        assert (await backend.list_models()).ids == ["m1", "m2"]
        assert await backend.health_check() is False
        assert await backend.estimate_cost(make_request("abcdefgh")) == 1.0

    async def test_explicit_usage(self, make_request):
        """Test configured usage wins over estimation."""
        usage = IRUsage.from_counts(1, 1)
        backend = MockBackendAdapter(default_response=MockResponse(content="x", usage=usage))
        assert (await backend.execute(make_request())).usage == usage


class TestGenericFrontend:
    """Test the IR dict frontend."""

    async def test_round_trip(self):
        """Test from_ir(to_ir(x)) keeps every field."""
        frontend = GenericFrontendAdapter()
        request = await frontend.to_ir(
            {
                "messages": [{"role": "user", "content": "Hello"}],
                "parameters": {"model": "gpt-4", "temperature": 0.3, "max_tokens": 50},
                "metadata": {"request_id": "req-abc", "custom": {"team": "x"}},
            }
        )
        assert request.model == "gpt-4"
        assert request.parameters.temperature == 0.3
        assert request.request_id == "req-abc"
        assert request.metadata.provenance.frontend == "generic"

        response = IRChatResponse(
            message=IRMessage.assistant("Hi"),
            finish_reason="length",
            usage=IRUsage.from_counts(2, 1),
            metadata=request.metadata,
        )
        wire = await frontend.from_ir(response)
        assert wire["message"] == {"role": "assistant", "content": "Hi", "name": None, "metadata": None}
        assert wire["finish_reason"] == "length"
        assert wire["usage"]["total_tokens"] == 3
        assert wire["metadata"]["request_id"] == "req-abc"
        assert IRChatResponse.model_validate(wire) == response

    async def test_invalid_request(self):
        """Test malformed dicts raise a conversion error."""
        with pytest.raises(AdapterConversionError) as exc_info:
            await GenericFrontendAdapter().to_ir({"messages": [{"role": "robot", "content": 1}]})
        assert exc_info.value.provenance.frontend == "generic"

    async def test_accepts_ir(self):
        """Test IR requests are accepted as-is."""
        request = IRChatRequest(messages=[IRMessage.user("x")], metadata=IRMetadata())
        assert (await GenericFrontendAdapter().to_ir(request)).request_id == request.request_id

    async def test_stream(self, make_request):
        """Test stream chunks become dicts."""
        backend = MockBackendAdapter(default_response="a b")
        items = [item async for item in GenericFrontendAdapter().from_ir_stream(backend.execute_stream(make_request()))]
        assert [item["type"] for item in items] == ["start", "content", "content", "done"]
        assert items[1]["delta"] == "a "
