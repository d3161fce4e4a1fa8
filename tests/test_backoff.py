"""
Unit Tests: Reconnect policy and heartbeat monitor
"""

import pytest

from tvclient import HeartbeatConfig, HeartbeatMonitor, ReconnectConfig, ReconnectPolicy


# =============================================================================
# Reconnect policy
# =============================================================================

class TestReconnectPolicy:
    """Test backoff delays."""

    def test_default_sequence_without_jitter(self):
        policy = ReconnectPolicy(ReconnectConfig(jitter=False))

        delays = [policy.delay_ms(k) for k in range(6)]

        assert delays == [250, 1000, 2000, 4000, 8000, 16000]

    def test_delay_is_capped(self):
        policy = ReconnectPolicy(ReconnectConfig(jitter=False))

        assert policy.delay_ms(6) == 30000
        assert policy.delay_ms(20) == 30000

    def test_without_fast_first(self):
        policy = ReconnectPolicy(ReconnectConfig(fast_first_delay_ms=None, jitter=False))

        assert policy.delay_ms(0) == 500
        assert policy.delay_ms(1) == 1000

    def test_jitter_bounds(self):
        low = ReconnectPolicy(ReconnectConfig(), rng=lambda: 0.0)
        high = ReconnectPolicy(ReconnectConfig(), rng=lambda: 0.999999)

        assert low.delay_ms(2) == 2000
        assert 2000 <= high.delay_ms(2) <= 2600

    def test_jitter_does_not_touch_fast_first(self):
        policy = ReconnectPolicy(ReconnectConfig(), rng=lambda: 0.9)

        assert policy.delay_ms(0) == 250

    def test_jitter_rounds_half_up(self):
        # 1000 * (1 + 0.5 * 0.3) = 1150 exactly; 2000 * 1.0015 = 2003
        policy = ReconnectPolicy(ReconnectConfig(), rng=lambda: 0.5)
        assert policy.delay_ms(1) == 1150

        policy = ReconnectPolicy(ReconnectConfig(), rng=lambda: 0.005)
        assert policy.delay_ms(2) == 2003

    def test_exhausted(self):
        policy = ReconnectPolicy(ReconnectConfig(max_retries=3))

        assert not policy.exhausted(2)
        assert policy.exhausted(3)
        assert policy.max_retries == 3


# =============================================================================
# Heartbeat monitor
# =============================================================================

class FakeClock:
    def __init__(self):
        self.value = 100.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class TestHeartbeatMonitor:
    """Test liveness checks with an injected clock."""

    @pytest.mark.asyncio
    async def test_no_timeout_while_active(self):
        clock = FakeClock()
        fired = []
        monitor = HeartbeatMonitor(HeartbeatConfig(timeout_ms=35000), on_timeout=fired.append, now=clock)

        clock.advance(30)
        monitor.record_activity()
        clock.advance(30)

        assert await monitor.check() is False
        assert fired == []

    @pytest.mark.asyncio
    async def test_timeout_after_silence(self):
        clock = FakeClock()
        fired = []
        monitor = HeartbeatMonitor(HeartbeatConfig(timeout_ms=35000), on_timeout=fired.append, now=clock)

        clock.advance(36)

        assert await monitor.check() is True
        assert len(fired) == 1
        assert fired[0] == pytest.approx(36000)

    @pytest.mark.asyncio
    async def test_async_timeout_callback_is_awaited(self):
        clock = FakeClock()
        fired = []

        async def on_timeout(idle):
            fired.append(idle)

        monitor = HeartbeatMonitor(HeartbeatConfig(timeout_ms=1000), on_timeout=on_timeout, now=clock)
        clock.advance(2)

        assert await monitor.check() is True
        assert fired

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        monitor = HeartbeatMonitor(HeartbeatConfig(check_interval_ms=100))

        monitor.start()
        assert monitor.running

        monitor.stop()
        assert not monitor.running
