"""
Session registry for multiplexed subscriptions.

Maps opaque session keys (``qs_…``, ``cs_…``, ``hs_…``) to the handler that
owns them. A key is bound to exactly one handler and is never reused after
it has been unregistered. The registry is owned by the client supervisor
and touched only from the event loop thread, so it needs no locking.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .types import Command, SessionHandler, SessionPacket


logger = logging.getLogger("tvclient.sessions")


@dataclass
class SessionEntry:
    """Entry in the registry tracking one live session."""
    key: str
    kind: str
    handler: SessionHandler
    created_at: float = field(default_factory=time.time)


class SessionRegistry:
    """Routes session-bound packets to their owner."""

    def __init__(self):
        self._sessions: Dict[str, SessionEntry] = {}
        self._retired: set = set()

    def register(self, key: str, kind: str, handler: SessionHandler) -> None:
        """
        Bind ``key`` to ``handler``.

        Re-registering the same handler (as rehydration does) is a no-op.

        Raises:
            ValueError: If the key was retired or belongs to another handler
        """
        if key in self._retired:
            raise ValueError(f"Session key {key} was already used")

        existing = self._sessions.get(key)
        if existing is not None:
            if existing.handler != handler:
                raise ValueError(f"Session key {key} is bound to another handler")
            return

        self._sessions[key] = SessionEntry(key=key, kind=kind, handler=handler)
        logger.debug(f"Session registered [{key}] kind={kind}")

    def unregister(self, key: str) -> bool:
        """Remove ``key`` and retire it. Returns True if it was present."""
        entry = self._sessions.pop(key, None)
        if entry is None:
            return False
        self._retired.add(key)
        logger.debug(f"Session unregistered [{key}]")
        return True

    def get(self, key: str) -> Optional[SessionEntry]:
        return self._sessions.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def keys(self) -> List[str]:
        return list(self._sessions)

    def entries(self) -> List[SessionEntry]:
        return list(self._sessions.values())

    def dispatch(self, packet: Command) -> bool:
        """
        Hand ``packet`` to the session named by its first parameter.

        Returns:
            True if a session owned the packet
        """
        key = packet.session_key
        if key is None:
            return False

        entry = self._sessions.get(key)
        if entry is None:
            return False

        try:
            entry.handler(SessionPacket(type=packet.type, data=packet.params))
        except Exception as e:
            logger.error(f"Session [{key}] failed handling '{packet.type}': {e}", exc_info=True)
        return True

    def clear(self) -> int:
        """Remove every session. Returns count of cleared sessions."""
        count = len(self._sessions)
        self._retired.update(self._sessions)
        self._sessions.clear()
        return count
