"""
Listener tables shared by the client and its sessions.

Every emitted event is delivered to its own listeners, then to the
catch-all ``event`` listeners as ``(name, *args)``. Listener failures are
logged and never propagate into the emitting code.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List


CATCH_ALL = "event"

Listener = Callable[..., Any]


class EventEmitter:
    """Per-event listener lists with a catch-all channel."""

    def __init__(self, events: Iterable[str], logger: logging.Logger):
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in events}
        self._listeners.setdefault(CATCH_ALL, [])
        self._logger = logger
        self._silenced = False

    def on(self, event: str, listener: Listener) -> Listener:
        """Register ``listener`` for ``event``. Returns the listener."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> bool:
        try:
            self._listeners[event].remove(listener)
            return True
        except (KeyError, ValueError):
            return False

    def has_listeners(self, event: str) -> bool:
        return bool(self._listeners.get(event))

    def emit(self, event: str, *args: Any) -> None:
        if self._silenced:
            return
        for listener in list(self._listeners.get(event, ())):
            self._invoke(event, listener, args)
        if event != CATCH_ALL:
            for listener in list(self._listeners[CATCH_ALL]):
                self._invoke(event, listener, (event, *args))

    def emit_error(self, error: BaseException) -> None:
        """Emit ``error`` (catch-all included); log it when no ``error`` listener exists."""
        if self._silenced:
            return
        if not self.has_listeners("error"):
            self._logger.error(f"{type(error).__name__}: {error}")
        self.emit("error", error)

    def silence(self) -> None:
        """Drop all listeners and ignore every later emit."""
        self._silenced = True
        for listeners in self._listeners.values():
            listeners.clear()

    def _invoke(self, event: str, listener: Listener, args: tuple) -> None:
        try:
            result = listener(*args)
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)
        except Exception as e:
            self._logger.error(f"Listener for '{event}' failed: {e}", exc_info=True)
