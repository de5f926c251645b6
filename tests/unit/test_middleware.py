"""Tests for the middleware stack."""

import pytest

from irbridge.cancellation import CancellationToken
from irbridge.exceptions import MiddlewareError, NetworkError, RequestCancelledError
from irbridge.middleware import (
    FunctionMiddleware,
    Middleware,
    MiddlewareContext,
    MiddlewareStack,
    StreamingMiddleware,
)
from irbridge.streaming import ChunkSequencer, collect_stream
from irbridge.types import IRChatResponse, IRMessage


class Recorder(Middleware, StreamingMiddleware):
    """Middleware that logs its pre and post steps."""

    def __init__(self, name, log):
        self.name = name
        self.log = log

    async def execute(self, context, next):
        self.log.append(f"pre{self.name}")
        response = await next()
        self.log.append(f"post{self.name}")
        return response

    async def execute_stream(self, context, next):
        self.log.append(f"pre{self.name}")
        stream = await next()
        self.log.append(f"post{self.name}")
        return stream


def ok_response():
    return IRChatResponse(message=IRMessage.assistant("ok"))


async def ok_handler():
    return ok_response()


@pytest.fixture
def context(make_request):
    return MiddlewareContext(request=make_request())


class TestMiddlewareStack:
    """Test chain composition."""

    async def test_onion_order(self, context):
        """Test pre steps run in order and post steps in reverse."""
        log = []
        stack = MiddlewareStack()
        for name in "ABC":
            stack.use(Recorder(name, log))

        response = await stack.execute(context, ok_handler)
        assert response.text == "ok"
        assert log == ["preA", "preB", "preC", "postC", "postB", "postA"]

    async def test_streaming_onion_order(self, context):
        """Test the streaming chain has the same order."""
        log = []
        stack = MiddlewareStack()
        for name in "ABC":
            stack.use(Recorder(name, log))

        async def handler():
            sequencer = ChunkSequencer()
            async def stream():
                yield sequencer.start()
                yield sequencer.done()
            return stream()

        stream = await stack.execute_stream(context, handler)
        chunks = await collect_stream(stream)
        assert [c.type for c in chunks] == ["start", "done"]
        assert log == ["preA", "preB", "preC", "postC", "postB", "postA"]

    async def test_short_circuit(self, context):
        """Test middleware can answer without calling next."""
        called = []

        async def cached(ctx, next):
            return IRChatResponse(message=IRMessage.assistant("cached"))

        async def handler():
            called.append(True)
            return ok_response()

        stack = MiddlewareStack().use(FunctionMiddleware(cached))
        response = await stack.execute(context, handler)
        assert response.text == "cached"
        assert called == []

    async def test_next_can_be_called_again(self, context):
        """Test middleware may call next more than once."""
        calls = []

        async def twice(ctx, next):
            await next()
            return await next()

        async def handler():
            calls.append(True)
            return ok_response()

        stack = MiddlewareStack().use(FunctionMiddleware(twice))
        await stack.execute(context, handler)
        assert len(calls) == 2

    async def test_request_rewrite(self, context):
        """Test middleware can replace the request seen downstream."""
        seen = []

        async def rewrite(ctx, next):
            ctx.request = ctx.request.with_model("rewritten")
            return await next()

        async def handler():
            seen.append(context.request.model)
            return ok_response()

        await MiddlewareStack().use(FunctionMiddleware(rewrite)).execute(context, handler)
        assert seen == ["rewritten"]

    async def test_foreign_error_wrapped(self, context):
        """Test unexpected middleware errors become MiddlewareError."""

        async def broken(ctx, next):
            raise KeyError("missing")

        stack = MiddlewareStack().use(FunctionMiddleware(broken, name="broken"))
        with pytest.raises(MiddlewareError) as exc_info:
            await stack.execute(context, ok_handler)
        assert exc_info.value.middleware_name == "broken"
        assert isinstance(exc_info.value.cause, KeyError)

    async def test_adapter_error_passes_through(self, context):
        """Test adapter errors from middleware are not wrapped."""

        async def limited(ctx, next):
            raise NetworkError("down")

        stack = MiddlewareStack().use(FunctionMiddleware(limited))
        with pytest.raises(NetworkError):
            await stack.execute(context, ok_handler)

    async def test_backend_error_passes_through(self, context):
        """Test errors from the final handler are not blamed on middleware."""

        async def handler():
            raise ValueError("backend bug")

        log = []
        stack = MiddlewareStack().use(Recorder("A", log))
        with pytest.raises(ValueError):
            await stack.execute(context, handler)

    async def test_stream_iteration_error_wrapped(self, context):
        """Test a middleware failing mid-stream is reported as that middleware."""

        class Breaker(StreamingMiddleware):
            name = "breaker"

            async def execute_stream(self, ctx, next):
                stream = await next()

                async def generate():
                    async for chunk in stream:
                        if chunk.type == "done":
                            raise KeyError("missing")
                        yield chunk
                return generate()

        async def handler():
            sequencer = ChunkSequencer()
            async def stream():
                yield sequencer.start()
                yield sequencer.done()
            return stream()

        log = []
        stack = MiddlewareStack().use(Recorder("outer", log)).use(Breaker())
        stream = await stack.execute_stream(context, handler)
        with pytest.raises(MiddlewareError) as exc_info:
            await collect_stream(stream)
        assert exc_info.value.middleware_name == "breaker"
        assert exc_info.value.provenance.middleware == "breaker"
        assert isinstance(exc_info.value.cause, KeyError)

    async def test_stream_handler_error_passes_through(self, context):
        """Test errors from the final stream are not blamed on middleware."""

        async def handler():
            async def stream():
                yield ChunkSequencer().start()
                raise ValueError("backend bug")
            return stream()

        log = []
        stack = MiddlewareStack().use(Recorder("A", log))
        stream = await stack.execute_stream(context, handler)
        with pytest.raises(ValueError):
            await collect_stream(stream)

    async def test_cancelled_token(self, make_request):
        """Test a cancelled token stops the chain."""
        token = CancellationToken()
        token.cancel()
        context = MiddlewareContext(request=make_request(), token=token)
        with pytest.raises(RequestCancelledError):
            await MiddlewareStack().execute(context, ok_handler)

    async def test_locked_after_execution(self, context):
        """Test the stack cannot change once used."""
        stack = MiddlewareStack()
        await stack.execute(context, ok_handler)
        assert stack.locked
        with pytest.raises(MiddlewareError):
            stack.use(FunctionMiddleware(lambda ctx, next: next()))

    def test_rejects_non_middleware(self):
        """Test arbitrary objects are refused."""
        with pytest.raises(MiddlewareError):
            MiddlewareStack().use(object())

    def test_remove_and_copy(self):
        """Test removal and unlocked copies."""
        log = []
        first, second = Recorder("A", log), Recorder("B", log)
        stack = MiddlewareStack().use(first).use(second)
        assert len(stack) == 2
        assert stack.remove(first) is True
        assert stack.remove(first) is False
        stack.lock()
        clone = stack.copy()
        assert not clone.locked
        assert clone.middleware == [second]
        assert clone.streaming_middleware == [second]

    async def test_state_shared(self, context):
        """Test middleware share the context state."""

        async def writer(ctx, next):
            ctx.state["seen"] = "writer"
            return await next()

        async def reader(ctx, next):
            response = await next()
            return response.model_copy(update={"message": IRMessage.assistant(ctx.state["seen"])})

        stack = MiddlewareStack().use(FunctionMiddleware(writer)).use(FunctionMiddleware(reader))
        response = await stack.execute(context, ok_handler)
        assert response.text == "writer"
