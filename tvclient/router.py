"""
Packet router and request correlation.

Handles:
- Heartbeat echo requests
- Server ``protocol_error`` packets
- Routing of session-bound packets through the session registry
- Surfacing the server greeting as the one-shot ``logged`` event
- Correlating integer request ids with their responses (history sessions)
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from .errors import RequestTimeoutError
from .sessions import SessionRegistry
from .types import Command, Heartbeat, Packet, ProtocolError


logger = logging.getLogger("tvclient.router")


@dataclass
class RouterCallbacks:
    """Callbacks for the packet router."""
    on_heartbeat: Optional[Callable[[int], None]] = None
    on_protocol_error: Optional[Callable[[ProtocolError], None]] = None
    on_logged: Optional[Callable[[Packet], None]] = None
    on_data: Optional[Callable[[Packet], None]] = None
    is_logged: Optional[Callable[[], bool]] = None


class PacketRouter:
    """
    Dispatches decoded packets in arrival order.

    Precedence: heartbeat, protocol error, owning session, greeting (while
    not logged in), generic data.
    """

    def __init__(self, registry: SessionRegistry, callbacks: Optional[RouterCallbacks] = None):
        self.registry = registry
        self.callbacks = callbacks or RouterCallbacks()

    def route(self, packet: Packet) -> str:
        """
        Route one packet.

        Returns:
            Name of the route taken (useful for tracing)
        """
        cb = self.callbacks

        if isinstance(packet, Heartbeat):
            if cb.on_heartbeat:
                cb.on_heartbeat(packet.tick)
            return "heartbeat"

        if isinstance(packet, ProtocolError):
            if cb.on_protocol_error:
                cb.on_protocol_error(packet)
            return "protocol_error"

        if isinstance(packet, Command) and self.registry.dispatch(packet):
            return "session"

        if cb.is_logged is not None and not cb.is_logged():
            if cb.on_logged:
                cb.on_logged(packet)
            return "logged"

        if cb.on_data:
            cb.on_data(packet)
        return "data"


@dataclass
class _Pending:
    future: asyncio.Future
    timer: asyncio.TimerHandle
    timeout_ms: int


class PendingRequests:
    """
    Tracks requests awaiting a correlated response.

    Each request gets a future and a single-shot deadline; expiry rejects
    only that request.
    """

    def __init__(self):
        self._pending: Dict[int, _Pending] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def create(self, request_id: int, timeout_ms: int) -> asyncio.Future:
        """Register ``request_id`` and return the future that settles it."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = loop.call_later(timeout_ms / 1000, self._expire, request_id)
        self._pending[request_id] = _Pending(future=future, timer=timer, timeout_ms=timeout_ms)
        return future

    def resolve(self, request_id: int, result: Any) -> bool:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return False
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(result)
        return True

    def reject(self, request_id: int, error: BaseException) -> bool:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return False
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_exception(error)
        return True

    def reject_all(self, error: Union[BaseException, Callable[[int], BaseException]]) -> int:
        """Reject every pending request. Returns the count rejected."""
        count = 0
        for request_id in list(self._pending):
            exc = error(request_id) if callable(error) and not isinstance(error, BaseException) else error
            if self.reject(request_id, exc):
                count += 1
        return count

    def _expire(self, request_id: int) -> None:
        entry = self._pending.get(request_id)
        if entry is None:
            return
        logger.warning(f"Request {request_id} timed out after {entry.timeout_ms}ms")
        self.reject(
            request_id,
            RequestTimeoutError(f"Request {request_id} timed out after {entry.timeout_ms}ms", request_id=request_id)
        )
