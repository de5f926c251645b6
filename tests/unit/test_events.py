"""Tests for the event emitter."""

from irbridge.events import Event, EventEmitter


class TestEventEmitter:
    """Test listener registration and dispatch."""

    async def test_emit(self):
        """Test listeners receive their events."""
        emitter = EventEmitter()
        seen = []
        emitter.on("request:start", seen.append)
        await emitter.emit(Event(type="request:start", request_id="r1"))
        await emitter.emit(Event(type="request:success", request_id="r1"))
        assert [e.type for e in seen] == ["request:start"]

    async def test_async_listener(self):
        """Test coroutine listeners are awaited."""
        emitter = EventEmitter()
        seen = []

        async def listener(event):
            seen.append(event.data["n"])

        emitter.on("x", listener)
        await emitter.emit(Event(type="x", data={"n": 1}))
        assert seen == [1]

    async def test_wildcard(self):
        """Test * listeners see everything."""
        emitter = EventEmitter()
        seen = []
        emitter.on("*", seen.append)
        await emitter.emit(Event(type="a"))
        await emitter.emit(Event(type="b"))
        assert [e.type for e in seen] == ["a", "b"]

    async def test_once_and_unsubscribe(self):
        """Test once listeners and the returned unsubscribe function."""
        emitter = EventEmitter()
        once, always = [], []
        emitter.once("x", once.append)
        unsubscribe = emitter.on("x", always.append)
        await emitter.emit(Event(type="x"))
        unsubscribe()
        await emitter.emit(Event(type="x"))
        assert len(once) == 1
        assert len(always) == 1
        assert emitter.listener_count("x") == 0

    async def test_failing_listener_is_isolated(self, caplog):
        """Test a broken listener does not stop the others."""
        emitter = EventEmitter()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        emitter.on("x", broken)
        emitter.on("x", seen.append)
        await emitter.emit(Event(type="x"))
        assert len(seen) == 1
        assert "Event listener failed" in caplog.text
