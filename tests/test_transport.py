"""
Unit Tests: Send queue and endpoint URLs
"""

from datetime import datetime, timezone

import pytest

from tvclient import OutboundFrame, SendQueue, build_endpoint_url


def frame(data: str, **kwargs) -> OutboundFrame:
    return OutboundFrame(data=data, **kwargs)


# =============================================================================
# Send queue
# =============================================================================

class TestSendQueue:
    """Test the outbound FIFO."""

    def test_push_is_fifo(self):
        queue = SendQueue()
        queue.push(frame("a"))
        queue.push(frame("b"))

        assert queue.frames() == ["a", "b"]
        assert len(queue) == 2

    def test_prepend_goes_first(self):
        queue = SendQueue()
        queue.push(frame("b"))
        queue.prepend(frame("auth"))

        assert queue.frames() == ["auth", "b"]

    def test_prepend_many_keeps_order(self):
        queue = SendQueue()
        queue.push(frame("later"))
        queue.prepend_many([frame("1"), frame("2"), frame("3")])

        assert queue.frames() == ["1", "2", "3", "later"]

    def test_discard(self):
        queue = SendQueue()
        queue.push(frame("hb", control=True))
        queue.push(frame("create", session="qs_a", replayable=True))
        queue.push(frame("more", session="qs_a"))

        dropped = queue.discard(lambda f: f.control or f.replayable)

        assert dropped == 2
        assert queue.frames() == ["more"]

    @pytest.mark.asyncio
    async def test_flush_writes_while_allowed(self):
        queue = SendQueue()
        written = []
        for name in ("a", "b", "c"):
            queue.push(frame(name))

        async def send(data):
            written.append(data)

        sent = await queue.flush(send, lambda: len(written) < 2)

        assert sent == 2
        assert written == ["a", "b"]
        assert queue.frames() == ["c"]

    @pytest.mark.asyncio
    async def test_flush_requeues_failed_frame(self):
        queue = SendQueue()
        queue.push(frame("a"))
        queue.push(frame("b"))

        async def send(data):
            raise ConnectionError("gone")

        with pytest.raises(ConnectionError):
            await queue.flush(send, lambda: True)

        assert queue.frames() == ["a", "b"]
        assert queue.flushing is False

    @pytest.mark.asyncio
    async def test_flush_nothing_when_blocked(self):
        queue = SendQueue()
        queue.push(frame("a"))

        async def send(data):
            raise AssertionError("must not write")

        assert await queue.flush(send, lambda: False) == 0
        assert queue.frames() == ["a"]


# =============================================================================
# Endpoint URLs
# =============================================================================

class TestEndpointUrl:
    """Test WebSocket URL construction."""

    def test_data_endpoint(self):
        assert build_endpoint_url("data") == "wss://data.tradingview.com/socket.io/websocket?type=chart"

    def test_prodata_endpoint(self):
        assert build_endpoint_url("prodata").startswith("wss://prodata.tradingview.com/")

    def test_history_endpoint_carries_chart_date_and_auth(self):
        now = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)

        url = build_endpoint_url("history-data", chart_id="abc123", auth_token="tok", now=now)

        assert url.startswith("wss://history-data.tradingview.com/socket.io/websocket?type=chart")
        assert "from=chart/abc123/" in url
        assert "date=2024-01-02T03:04:05.678Z" in url
        assert url.endswith("auth=tok")
