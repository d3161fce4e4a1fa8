"""
Type definitions for the TradingView WebSocket client.

Packets decoded from the wire, the canonical session packet view,
connection states and the constants shared by every layer.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union
from enum import Enum


# Sentinel accepted by the server for limited-access sessions
UNAUTHORIZED_TOKEN = "unauthorized_user_token"

ORIGIN = "https://www.tradingview.com"
DEFAULT_LOCATION = "https://www.tradingview.com/"


class ConnectionState(str, Enum):
    """State of the client supervisor."""
    CONNECTING = "connecting"
    AWAITING_AUTH = "awaiting_auth"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class Server(str, Enum):
    """WebSocket endpoints."""
    DATA = "data"
    PRODATA = "prodata"
    WIDGETDATA = "widgetdata"
    HISTORY_DATA = "history-data"


class ClientEvent(str, Enum):
    """Events observable on the client."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    RECONNECTED = "reconnected"
    CONNECT_TIMEOUT = "connect_timeout"
    LOGGED = "logged"
    PING = "ping"
    DATA = "data"
    ERROR = "error"
    EVENT = "event"


# =============================================================================
# Packets
# =============================================================================

@dataclass(frozen=True)
class Heartbeat:
    """Server heartbeat carrying an integer tick (``~h~<n>``)."""
    tick: int


@dataclass
class Command:
    """
    Command packet ``{"m": type, "p": [params...]}``.

    ``raw`` keeps the decoded JSON object untouched so re-encoding a
    decoded packet reproduces the original bytes.
    """
    type: str
    params: list = field(default_factory=list)
    raw: Optional[dict] = None

    @property
    def session_key(self) -> Optional[str]:
        """First positional parameter when it is a string."""
        if self.params and isinstance(self.params[0], str):
            return self.params[0]
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        if self.raw is not None:
            return self.raw
        return {"m": self.type, "p": self.params}

    @classmethod
    def from_dict(cls, data: dict) -> "Command":
        params = data.get("p", [])
        if not isinstance(params, list):
            params = [params]
        return cls(type=data["m"], params=params, raw=data)


@dataclass
class ProtocolError:
    """Server-originated ``protocol_error`` control packet."""
    payload: Any = None
    raw: Optional[dict] = None
    type: str = "protocol_error"

    def to_dict(self) -> dict:
        if self.raw is not None:
            return self.raw
        return {"m": self.type, "p": self.payload}


@dataclass
class RawPacket:
    """JSON payload without a command tag (the server greeting, for one)."""
    data: Any

    def to_dict(self) -> Any:
        return self.data


Packet = Union[Heartbeat, Command, ProtocolError, RawPacket]


@dataclass
class SessionPacket:
    """Canonical ``{type, data}`` view handed to a session dispatcher."""
    type: str
    data: list = field(default_factory=list)


# Session handler signature held by the registry
SessionHandler = Callable[[SessionPacket], None]


# =============================================================================
# Credentials
# =============================================================================

@dataclass
class Credentials:
    """Cookie credentials used by REST helpers."""
    session: str = ""
    signature: str = ""
    user_name: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    remember: bool = True
    user_agent: Optional[str] = None


# Close codes (matching WebSocket standard + custom)
class CloseCode:
    NORMAL = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    ABNORMAL = 1006

    # Custom codes (4000-4999)
    HEARTBEAT_TIMEOUT = 4000


# Session key prefixes
class SessionPrefix:
    QUOTE = "qs"
    CHART = "cs"
    HISTORY = "hs"
