"""
Base contract shared by every session kind.

A session owns one key in the client's registry. On construction it:
1. generates its key
2. installs its packet handler in the registry
3. sends its "create session" command
4. registers a rehydrate hook that repeats 2 and 3 and restores its
   subscriptions after a reconnect
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from ..events import EventEmitter, Listener
from ..types import SessionPacket
from ..utils import gen_session_id

if TYPE_CHECKING:
    from ..client import ClientBridge


@dataclass
class Period:
    """One OHLCV bar."""
    time: int
    open: float
    close: float
    max: float
    min: float
    volume: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "open": self.open,
            "close": self.close,
            "max": self.max,
            "min": self.min,
            "volume": self.volume,
        }


class Session:
    """
    Base class for quote, chart and history sessions.

    Subclasses set ``PREFIX``, ``KIND``, ``EVENTS`` and ``DELETE_COMMAND``
    and implement ``_create`` and ``_handle``.
    """

    PREFIX = "xs"
    KIND = "session"
    EVENTS: Iterable[str] = ("data", "error")
    DELETE_COMMAND = ""

    def __init__(self, bridge: "ClientBridge", logger: Optional[logging.Logger] = None):
        self._bridge = bridge
        self._logger = logger or logging.getLogger("tvclient.sessions")
        self._events = EventEmitter(self.EVENTS, self._logger)
        self._deleted = False

        self.key = gen_session_id(self.PREFIX)

        self._install()
        self._create()
        bridge.register_rehydrate_hook(self.hook_key, self._rehydrate, session=self.key)

    @property
    def session_id(self) -> str:
        return self.key

    @property
    def hook_key(self) -> str:
        return f"{self.KIND}:{self.key}"

    @property
    def deleted(self) -> bool:
        return self._deleted

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: str, listener: Listener) -> Listener:
        return self._events.on(event, listener)

    def off(self, event: str, listener: Listener) -> bool:
        return self._events.off(event, listener)

    def on_error(self, listener: Listener) -> Listener:
        return self.on("error", listener)

    def on_event(self, listener: Listener) -> Listener:
        return self.on("event", listener)

    def _emit(self, event: str, *args: Any) -> None:
        self._events.emit(event, *args)

    def _emit_error(self, error: BaseException) -> None:
        self._events.emit_error(error)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _install(self) -> None:
        self._bridge.sessions.register(self.key, self.KIND, self._on_packet)

    def _create(self) -> None:
        raise NotImplementedError

    def _restore(self) -> None:
        """Re-send subscriptions after ``_create`` during rehydration."""

    def _rehydrate(self) -> None:
        if self._deleted:
            return
        self._logger.debug(f"Rehydrating {self.KIND} session [{self.key}]")
        self._install()
        self._create()
        self._restore()

    def _send(self, msg_type: str, params: Iterable[Any] = (), replayable: bool = True) -> None:
        """Send a command whose first parameter is this session's key."""
        self._bridge.send(msg_type, [self.key, *params], session=self.key, replayable=replayable)

    def _on_packet(self, packet: SessionPacket) -> None:
        self._logger.debug(f"[{self.key}] {packet.type}")
        self._handle(packet)

    def _handle(self, packet: SessionPacket) -> None:
        raise NotImplementedError

    def delete(self) -> None:
        """Delete the session on the server and release its key."""
        if self._deleted:
            return
        self._deleted = True
        self._bridge.unregister_rehydrate_hook(self.hook_key)
        if self.DELETE_COMMAND:
            self._send(self.DELETE_COMMAND, replayable=False)
        self._bridge.sessions.unregister(self.key)
        self._logger.debug(f"Deleted {self.KIND} session [{self.key}]")
