"""
Exception hierarchy for the TradingView client.

Every error carries a stable ``kind`` string so listeners can branch on it
without matching message text.
"""

from typing import Any, Optional


class TVClientError(Exception):
    """Base class for all client errors."""
    kind: str = "error"

    def __init__(self, message: str = "", kind: Optional[str] = None, **details: Any):
        super().__init__(message)
        if kind:
            self.kind = kind
        self.details = details

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, message={str(self)!r})"


class ProtocolDecodeError(TVClientError):
    """Malformed framing or a payload that is not valid JSON."""
    kind = "framing"

    def __init__(self, message: str, kind: str = "framing", payload: Optional[str] = None):
        super().__init__(message, kind=kind, payload=payload)
        self.payload = payload


class ServerProtocolError(TVClientError):
    """The server sent ``protocol_error``; the connection is poisoned."""
    kind = "protocol_error"


class AuthError(TVClientError):
    """Credential exchange failed."""
    kind = "auth"


class TransportError(TVClientError):
    """Underlying socket error."""
    kind = "transport"


class HeartbeatTimeout(TVClientError):
    kind = "heartbeat_timeout"


class ConnectTimeout(TVClientError):
    kind = "connect_timeout"


class RehydrateError(TVClientError):
    """A rehydrate hook raised."""
    kind = "rehydrate"


class ReconnectExhausted(TVClientError):
    kind = "reconnect_exhausted"


class RequestTimeoutError(TVClientError):
    """A correlated request did not get its response in time."""
    kind = "request_timeout"


class SessionError(TVClientError):
    """Error reported by the server for one session."""
    kind = "session_error"


class SessionClosedError(TVClientError):
    """Pending work cancelled because its session or client went away."""
    kind = "session_deleted"


class HTTPRequestError(TVClientError):
    """REST call failed."""
    kind = "http"

    def __init__(self, message: str, status_code: Optional[int] = None, **details: Any):
        super().__init__(message, status_code=status_code, **details)
        self.status_code = status_code
