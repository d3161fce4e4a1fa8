"""
Heartbeat monitor for connection liveness.

The server sends ``~h~<n>`` heartbeats at most every 30 seconds. The client
records the arrival time of every inbound message and periodically checks
the idle gap; when it exceeds the timeout the connection is declared dead
and the supervisor closes it, which starts the reconnection path.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional

from .config import HeartbeatConfig


logger = logging.getLogger("tvclient.heartbeat")


class HeartbeatMonitor:
    """
    Tracks last inbound activity and fires ``on_timeout`` after silence.

    Key features:
    - Configurable check interval and timeout
    - Background task for periodic checks
    - Injectable clock for testing
    """

    def __init__(
        self,
        config: Optional[HeartbeatConfig] = None,
        on_timeout: Optional[Callable[[float], Any]] = None,
        now: Optional[Callable[[], float]] = None
    ):
        """
        Initialize heartbeat monitor.

        Args:
            config: Heartbeat configuration
            on_timeout: Called with the idle gap in ms when the timeout is
                exceeded; may return an awaitable
            now: Time function (defaults to time.monotonic, injectable for testing)
        """
        self.config = config or HeartbeatConfig()
        self._on_timeout = on_timeout
        self._now = now or time.monotonic

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._last_seen: float = self._now()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_seen(self) -> float:
        return self._last_seen

    def record_activity(self) -> None:
        """Mark that an inbound message just arrived."""
        self._last_seen = self._now()

    def idle_ms(self) -> float:
        return (self._now() - self._last_seen) * 1000

    def start(self) -> None:
        """Start the background check task (resets the idle clock)."""
        self.stop()
        self.record_activity()
        self._running = True
        self._task = asyncio.create_task(self._heartbeat_loop())

    def stop(self) -> None:
        """Stop the background check task."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def check(self) -> bool:
        """
        Run one liveness check.

        Returns:
            True if the connection was declared dead
        """
        idle = self.idle_ms()
        if idle <= self.config.timeout_ms:
            return False

        logger.warning(f"No inbound activity for {idle:.0f}ms, declaring connection dead")
        self._running = False
        if self._on_timeout:
            result = self._on_timeout(idle)
            if inspect.isawaitable(result):
                await result
        return True

    async def _heartbeat_loop(self) -> None:
        """Main check loop running in background."""
        interval = self.config.check_interval_ms / 1000

        while self._running:
            try:
                await asyncio.sleep(interval)

                if not self._running:
                    break

                if await self.check():
                    break

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in heartbeat loop: {e}", exc_info=True)
