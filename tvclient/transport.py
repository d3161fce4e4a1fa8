"""
Transport utilities for the TradingView WebSocket.

Provides:
- The outbound send queue (FIFO with priority prepend for auth)
- Endpoint URL construction for every server flavour
- The default connector built on ``websockets``
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Iterable, List, Optional, Protocol
from urllib.parse import quote, urlencode

from websockets.asyncio.client import connect

from .types import ORIGIN, Server


logger = logging.getLogger("tvclient.transport")


class Connection(Protocol):
    """What the supervisor needs from an open WebSocket."""
    close_code: Optional[int]
    close_reason: Optional[str]

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    def __aiter__(self) -> Any: ...


Connector = Callable[..., Awaitable[Connection]]


@dataclass
class OutboundFrame:
    """An encoded frame waiting in the send queue."""
    data: str
    session: Optional[str] = None  # Owning session key, if session-bound
    replayable: bool = False  # Restored by the session's rehydrate hook
    control: bool = False  # Auth/heartbeat frame tied to one connection


class SendQueue:
    """
    FIFO of encoded frames pending transmission.

    ``flush`` is the only code path that writes to the transport; a second
    concurrent flush is a no-op, so at most one writer exists at a time.
    """

    def __init__(self):
        self._frames: Deque[OutboundFrame] = deque()
        self._flushing = False

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def flushing(self) -> bool:
        return self._flushing

    def frames(self) -> List[str]:
        """Encoded frames currently queued, head first."""
        return [f.data for f in self._frames]

    def push(self, frame: OutboundFrame) -> None:
        self._frames.append(frame)

    def prepend(self, frame: OutboundFrame) -> None:
        self._frames.appendleft(frame)

    def prepend_many(self, frames: Iterable[OutboundFrame]) -> None:
        """Put ``frames`` at the head, keeping their relative order."""
        for frame in reversed(list(frames)):
            self._frames.appendleft(frame)

    def discard(self, predicate: Callable[[OutboundFrame], bool]) -> int:
        """Drop every frame matching ``predicate``. Returns the count dropped."""
        kept = [f for f in self._frames if not predicate(f)]
        dropped = len(self._frames) - len(kept)
        self._frames = deque(kept)
        return dropped

    def clear(self) -> None:
        self._frames.clear()

    async def flush(
        self,
        send: Callable[[str], Awaitable[None]],
        can_send: Callable[[], bool]
    ) -> int:
        """
        Write queued frames one at a time while ``can_send()`` holds.

        A frame whose write raises is put back at the head before the
        exception propagates.

        Returns:
            Number of frames written
        """
        if self._flushing:
            return 0

        self._flushing = True
        sent = 0
        try:
            while self._frames and can_send():
                frame = self._frames.popleft()
                try:
                    await send(frame.data)
                except Exception:
                    self._frames.appendleft(frame)
                    raise
                sent += 1
                logger.debug(f"> {frame.data[:300]}")
        finally:
            self._flushing = False
        return sent


# =============================================================================
# Endpoints
# =============================================================================

def iso_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with milliseconds and a ``Z`` suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def build_endpoint_url(
    server: str = Server.DATA.value,
    chart_id: Optional[str] = None,
    auth_token: Optional[str] = None,
    now: Optional[datetime] = None
) -> str:
    """
    Build the WebSocket URL for ``server``.

    The ``history-data`` endpoint additionally carries the chart id, the
    current date and the auth token.
    """
    params = {"type": "chart"}
    if server == Server.HISTORY_DATA.value:
        params["from"] = f"chart/{chart_id or ''}/"
        params["date"] = iso_timestamp(now)
        params["auth"] = auth_token or ""
    query = urlencode(params, safe="/:", quote_via=quote)
    return f"wss://{server}.tradingview.com/socket.io/websocket?{query}"


async def open_websocket(
    url: str,
    origin: str = ORIGIN,
    compression: bool = True
) -> Connection:
    """
    Default connector.

    Library keepalive pings and the open timeout are disabled: liveness and
    connect timeout are handled by the client supervisor.
    """
    logger.debug(f"Opening {url}")
    return await connect(
        url,
        origin=origin,
        compression="deflate" if compression else None,
        open_timeout=None,
        ping_interval=None,
        max_size=None,
    )
