"""
Unit Tests: Session registry, packet router and pending requests
"""

import asyncio

import pytest

from tvclient import (
    Command,
    Heartbeat,
    PacketRouter,
    PendingRequests,
    ProtocolError,
    RawPacket,
    RequestTimeoutError,
    RouterCallbacks,
    SessionPacket,
    SessionRegistry,
)


# =============================================================================
# Session registry
# =============================================================================

class TestSessionRegistry:
    """Test session key binding and dispatch."""

    def test_dispatch_to_owner(self):
        registry = SessionRegistry()
        received = []
        registry.register("qs_a", "quote", received.append)

        owned = registry.dispatch(Command("qsd", ["qs_a", {"n": "X"}]))

        assert owned is True
        assert received == [SessionPacket(type="qsd", data=["qs_a", {"n": "X"}])]

    def test_unknown_key_is_not_owned(self):
        registry = SessionRegistry()

        assert registry.dispatch(Command("qsd", ["qs_missing"])) is False
        assert registry.dispatch(Command("x", [1, 2])) is False

    def test_keys_are_never_reused(self):
        registry = SessionRegistry()
        handler = lambda packet: None
        registry.register("cs_a", "chart", handler)

        assert registry.unregister("cs_a") is True
        assert registry.unregister("cs_a") is False
        with pytest.raises(ValueError):
            registry.register("cs_a", "chart", handler)

    def test_same_handler_reregistration_is_noop(self):
        registry = SessionRegistry()
        handler = lambda packet: None
        registry.register("cs_a", "chart", handler)
        registry.register("cs_a", "chart", handler)

        assert len(registry) == 1
        with pytest.raises(ValueError):
            registry.register("cs_a", "chart", lambda packet: None)

    def test_handler_failure_is_contained(self):
        registry = SessionRegistry()

        def boom(packet):
            raise RuntimeError("boom")

        registry.register("qs_a", "quote", boom)

        assert registry.dispatch(Command("qsd", ["qs_a"])) is True

    def test_clear_retires_keys(self):
        registry = SessionRegistry()
        registry.register("qs_a", "quote", lambda p: None)

        assert registry.clear() == 1
        assert "qs_a" not in registry
        with pytest.raises(ValueError):
            registry.register("qs_a", "quote", lambda p: None)


# =============================================================================
# Router
# =============================================================================

class TestPacketRouter:
    """Test route precedence."""

    def make_router(self, logged=False):
        seen = {"heartbeat": [], "protocol_error": [], "logged": [], "data": [], "session": []}
        registry = SessionRegistry()
        registry.register("cs_a", "chart", seen["session"].append)
        callbacks = RouterCallbacks(
            on_heartbeat=seen["heartbeat"].append,
            on_protocol_error=seen["protocol_error"].append,
            on_logged=seen["logged"].append,
            on_data=seen["data"].append,
            is_logged=lambda: logged,
        )
        return PacketRouter(registry, callbacks), seen

    def test_heartbeat(self):
        router, seen = self.make_router()

        assert router.route(Heartbeat(3)) == "heartbeat"
        assert seen["heartbeat"] == [3]

    def test_protocol_error(self):
        router, seen = self.make_router()

        assert router.route(ProtocolError(payload=["bad"])) == "protocol_error"
        assert len(seen["protocol_error"]) == 1

    def test_session_beats_greeting(self):
        router, seen = self.make_router(logged=False)

        assert router.route(Command("du", ["cs_a", {}])) == "session"
        assert seen["logged"] == []

    def test_greeting_before_login(self):
        router, seen = self.make_router(logged=False)
        greeting = RawPacket({"session_id": "x"})

        assert router.route(greeting) == "logged"
        assert seen["logged"] == [greeting]

    def test_data_after_login(self):
        router, seen = self.make_router(logged=True)
        packet = Command("unknown", ["zz_nobody"])

        assert router.route(packet) == "data"
        assert seen["data"] == [packet]


# =============================================================================
# Pending requests
# =============================================================================

class TestPendingRequests:
    """Test request correlation and deadlines."""

    @pytest.mark.asyncio
    async def test_resolve(self):
        pending = PendingRequests()
        future = pending.create(1, timeout_ms=1000)

        assert pending.resolve(1, "done") is True
        assert await future == "done"
        assert len(pending) == 0
        assert pending.resolve(1, "again") is False

    @pytest.mark.asyncio
    async def test_timeout_rejects_only_that_request(self):
        pending = PendingRequests()
        slow = pending.create(1, timeout_ms=10)
        other = pending.create(2, timeout_ms=5000)

        with pytest.raises(RequestTimeoutError):
            await slow

        assert 2 in pending
        assert not other.done()
        pending.resolve(2, None)

    @pytest.mark.asyncio
    async def test_reject_all(self):
        pending = PendingRequests()
        futures = [pending.create(i, timeout_ms=5000) for i in (1, 2)]

        count = pending.reject_all(lambda rid: RuntimeError(f"gone {rid}"))

        assert count == 2
        results = await asyncio.gather(*futures, return_exceptions=True)
        assert [str(r) for r in results] == ["gone 1", "gone 2"]
