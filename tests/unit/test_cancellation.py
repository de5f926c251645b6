"""Tests for cancellation tokens."""

import asyncio

import pytest

from irbridge.cancellation import CancellationToken, guard_stream
from irbridge.exceptions import ErrorCode, RequestCancelledError


class TestCancellationToken:
    """Test token state."""

    def test_initial_state(self):
        """Test a new token is live."""
        token = CancellationToken()
        assert token.cancelled is False
        assert token.reason is None
        token.raise_if_cancelled()

    def test_cancel(self):
        """Test explicit cancellation."""
        token = CancellationToken()
        token.cancel("client went away")
        assert token.cancelled is True
        assert token.reason == "client went away"
        with pytest.raises(RequestCancelledError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.code == ErrorCode.REQUEST_CANCELLED

    def test_cancel_propagates_to_children(self):
        """Test children follow their parent."""
        parent = CancellationToken()
        child = parent.child()
        grandchild = child.child()
        parent.cancel()
        assert child.cancelled
        assert grandchild.cancelled

    def test_child_cancel_leaves_parent(self):
        """Test cancelling a child does not cancel the parent."""
        parent = CancellationToken()
        child = parent.child()
        child.cancel()
        assert not parent.cancelled

    def test_child_of_cancelled_parent(self):
        """Test a child created after cancellation starts cancelled."""
        parent = CancellationToken()
        parent.cancel("done")
        assert parent.child().cancelled

    def test_expired_deadline(self):
        """Test a zero timeout is immediately cancelled as a timeout."""
        token = CancellationToken.with_timeout(0)
        assert token.cancelled
        assert token.timed_out
        with pytest.raises(RequestCancelledError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.code == ErrorCode.REQUEST_TIMEOUT

    def test_deadline_inherited(self):
        """Test the effective deadline is the earliest ancestor deadline."""
        parent = CancellationToken.with_timeout(1.0)
        child = parent.child(timeout=100.0)
        assert child.deadline == parent.deadline

    def test_callbacks(self):
        """Test callbacks run once on cancellation."""
        calls = []
        token = CancellationToken()
        token.add_callback(lambda t: calls.append(t.reason))
        token.cancel("x")
        token.cancel("y")
        assert calls == ["x"]

    def test_callback_on_cancelled_token(self):
        """Test callbacks added late run immediately."""
        calls = []
        token = CancellationToken()
        token.cancel()
        token.add_callback(lambda t: calls.append(True))
        assert calls == [True]

    def test_dispose_detaches_from_parent(self):
        """Test a disposed child no longer hangs off its parent."""
        parent = CancellationToken()
        calls = []
        child = CancellationToken.with_timeout(30, parent=parent)
        child.add_callback(lambda t: calls.append(t.reason))
        child.dispose()
        assert parent._children == []
        parent.cancel()
        assert not child.cancelled
        assert calls == []

    def test_dispose_keeps_parent_deadline(self):
        """Test a disposed child still honours an expired ancestor deadline."""
        parent = CancellationToken(timeout=0)
        child = CancellationToken(parent=parent)
        child.dispose()
        assert child.timed_out

    def test_dispose_twice(self):
        """Test disposing is idempotent."""
        parent = CancellationToken()
        child = parent.child()
        child.dispose()
        child.dispose()
        assert parent._children == []

    def test_context_manager(self):
        """Test leaving a with block disposes the token."""
        parent = CancellationToken()
        with parent.child(timeout=5) as child:
            assert parent._children == [child]
        assert parent._children == []


class TestGuard:
    """Test racing awaitables against a token."""

    async def test_guard_returns_result(self):
        """Test a fast operation completes."""
        token = CancellationToken()

        async def work():
            return 42

        assert await token.guard(work()) == 42

    async def test_guard_times_out(self):
        """Test a slow operation is cancelled at the deadline."""
        token = CancellationToken.with_timeout(0.01)
        with pytest.raises(RequestCancelledError) as exc_info:
            await token.guard(asyncio.sleep(5))
        assert exc_info.value.timed_out

    async def test_guard_explicit_cancel(self):
        """Test cancelling while an operation is in flight."""
        token = CancellationToken()
        started = asyncio.Event()

        async def work():
            started.set()
            await asyncio.sleep(5)

        async def cancel_later():
            await started.wait()
            token.cancel("stop")

        canceller = asyncio.ensure_future(cancel_later())
        with pytest.raises(RequestCancelledError):
            await token.guard(work())
        await canceller

    async def test_guard_propagates_errors(self):
        """Test operation errors pass through."""
        token = CancellationToken()

        async def work():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await token.guard(work())


class TestGuardStream:
    """Test guarded streams."""

    async def test_passthrough(self):
        """Test items flow through a live token."""

        async def source():
            for i in range(3):
                yield i

        items = [i async for i in guard_stream(source(), CancellationToken())]
        assert items == [0, 1, 2]

    async def test_stops_when_cancelled(self):
        """Test the stream stops once the token fires."""
        token = CancellationToken()
        closed = []

        async def source():
            try:
                for i in range(10):
                    yield i
            finally:
                closed.append(True)

        items = []
        with pytest.raises(RequestCancelledError):
            async for item in guard_stream(source(), token):
                items.append(item)
                if item == 1:
                    token.cancel()
        assert items == [0, 1]
        assert closed == [True]

    async def test_no_token(self):
        """Test a missing token passes everything through."""

        async def source():
            yield "a"

        assert [i async for i in guard_stream(source(), None)] == ["a"]
