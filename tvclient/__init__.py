"""
tvclient - TradingView market data over WebSocket

An asyncio client that multiplexes quote, chart and deep-history sessions
over one supervised WebSocket connection.

Features:
- Length-prefixed frame codec with heartbeat echo
- Auth handshake with bounded retries and an unauthenticated fallback
- Exponential-backoff reconnection with a fast first retry and jitter
- Heartbeat liveness and connect timeout
- Automatic rehydration of every live session after a reconnect
- REST helpers for user auth, technical analysis, search and Pine scripts

Usage:
    from tvclient import Client

    async with Client(token=session, signature=signature) as client:
        chart = client.chart_session()
        chart.on_update(lambda changes: print(chart.periods[0]))
        chart.set_market("BINANCE:BTCEUR", timeframe="D")
"""

__version__ = "1.0.0"

# Type definitions
from .types import (
    UNAUTHORIZED_TOKEN,
    ORIGIN,
    DEFAULT_LOCATION,
    ConnectionState,
    Server,
    ClientEvent,
    Heartbeat,
    Command,
    ProtocolError,
    RawPacket,
    Packet,
    SessionPacket,
    Credentials,
    CloseCode,
    SessionPrefix,
)

# Errors
from .errors import (
    TVClientError,
    ProtocolDecodeError,
    ServerProtocolError,
    AuthError,
    TransportError,
    HeartbeatTimeout,
    ConnectTimeout,
    RehydrateError,
    ReconnectExhausted,
    RequestTimeoutError,
    SessionError,
    SessionClosedError,
    HTTPRequestError,
)

# Configuration
from .config import (
    ClientConfig,
    ReconnectConfig,
    HeartbeatConfig,
    ColoredFormatter,
    setup_logging,
)

# Wire protocol
from .protocol import (
    encode,
    encode_frame,
    encode_command,
    encode_heartbeat,
    decode,
)

# Connection machinery
from .transport import OutboundFrame, SendQueue, build_endpoint_url, open_websocket
from .auth import AuthCoordinator
from .backoff import ReconnectPolicy
from .heartbeat import HeartbeatMonitor
from .events import EventEmitter
from .sessions import SessionRegistry, SessionEntry
from .router import PacketRouter, RouterCallbacks, PendingRequests

# Client
from .client import Client, ClientBridge

# Sessions
from .session import (
    Session,
    Period,
    QuoteSession,
    QuoteMarket,
    ChartSession,
    ChartStudy,
    HistorySession,
    HistoryRequest,
    HistoryPeriod,
)

# Helpers
from .utils import (
    gen_session_id,
    gen_auth_cookies,
    normalize_timeframe,
    to_tv_timestamp,
    get_backtest_range,
    encode_script_text,
    parse_symbol,
)


__all__ = [
    "__version__",
    # Types
    "UNAUTHORIZED_TOKEN",
    "ORIGIN",
    "DEFAULT_LOCATION",
    "ConnectionState",
    "Server",
    "ClientEvent",
    "Heartbeat",
    "Command",
    "ProtocolError",
    "RawPacket",
    "Packet",
    "SessionPacket",
    "Credentials",
    "CloseCode",
    "SessionPrefix",
    # Errors
    "TVClientError",
    "ProtocolDecodeError",
    "ServerProtocolError",
    "AuthError",
    "TransportError",
    "HeartbeatTimeout",
    "ConnectTimeout",
    "RehydrateError",
    "ReconnectExhausted",
    "RequestTimeoutError",
    "SessionError",
    "SessionClosedError",
    "HTTPRequestError",
    # Config
    "ClientConfig",
    "ReconnectConfig",
    "HeartbeatConfig",
    "ColoredFormatter",
    "setup_logging",
    # Protocol
    "encode",
    "encode_frame",
    "encode_command",
    "encode_heartbeat",
    "decode",
    # Connection machinery
    "OutboundFrame",
    "SendQueue",
    "build_endpoint_url",
    "open_websocket",
    "AuthCoordinator",
    "ReconnectPolicy",
    "HeartbeatMonitor",
    "EventEmitter",
    "SessionRegistry",
    "SessionEntry",
    "PacketRouter",
    "RouterCallbacks",
    "PendingRequests",
    # Client
    "Client",
    "ClientBridge",
    # Sessions
    "Session",
    "Period",
    "QuoteSession",
    "QuoteMarket",
    "ChartSession",
    "ChartStudy",
    "HistorySession",
    "HistoryRequest",
    "HistoryPeriod",
    # Helpers
    "gen_session_id",
    "gen_auth_cookies",
    "normalize_timeframe",
    "to_tv_timestamp",
    "get_backtest_range",
    "encode_script_text",
    "parse_symbol",
]
