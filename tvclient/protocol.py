"""
Frame codec for the TradingView WebSocket protocol.

Wire format:
- A frame is ``~m~<len>~m~<payload>`` where ``<len>`` is the UTF-8 byte
  length of the payload
- Heartbeats appear as ``~h~<n>``, standalone or as a frame payload
- Payloads are JSON objects ``{"m": <type>, "p": [...]}`` or heartbeats

The decoder walks the chunk left to right, skips stray bytes between frames,
and stops at the first malformed frame so it can never loop forever.
"""

import json
import logging
from typing import Any, Callable, List, Optional, Union

from .errors import ProtocolDecodeError
from .types import Command, Heartbeat, Packet, ProtocolError, RawPacket


logger = logging.getLogger("tvclient.protocol")

FRAME_MARKER = b"~m~"
HEARTBEAT_MARKER = b"~h~"

# Lengths must fit in 32 bits
MAX_FRAME_LENGTH = 0xFFFFFFFF

_DIGITS = frozenset(b"0123456789")

OnDecodeError = Callable[[ProtocolDecodeError], None]


# =============================================================================
# Encoding
# =============================================================================

def dumps(obj: Any) -> str:
    """Compact JSON the way the server expects it (no spaces, raw UTF-8)."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def encode_frame(payload: str) -> str:
    """Wrap a payload string in ``~m~<byte length>~m~`` framing."""
    return f"~m~{len(payload.encode('utf-8'))}~m~{payload}"


def encode(packet: Union[Packet, dict, str]) -> str:
    """
    Encode a packet, command dict or raw string into a wire frame.

    Args:
        packet: ``Command``/``ProtocolError``/``RawPacket``, a ``Heartbeat``,
            a JSON-serializable dict, or an already serialized string

    Returns:
        Framed string ready for the transport
    """
    if isinstance(packet, str):
        return encode_frame(packet)
    if isinstance(packet, Heartbeat):
        return encode_heartbeat(packet.tick)
    if hasattr(packet, "to_dict"):
        return encode_frame(dumps(packet.to_dict()))
    return encode_frame(dumps(packet))


def encode_command(msg_type: str, params: Optional[list] = None) -> str:
    """Encode ``{"m": msg_type, "p": params}``."""
    return encode_frame(dumps({"m": msg_type, "p": list(params or [])}))


def encode_heartbeat(tick: int) -> str:
    """Encode a heartbeat reply carrying ``tick``."""
    return encode_frame(f"~h~{int(tick)}")


# =============================================================================
# Decoding
# =============================================================================

def _read_digits(data: bytes, i: int) -> int:
    n = len(data)
    while i < n and data[i] in _DIGITS:
        i += 1
    return i


def _fail(
    message: str,
    kind: str,
    payload: Optional[str],
    strict: bool,
    on_error: Optional[OnDecodeError],
    report: bool
) -> None:
    err = ProtocolDecodeError(message, kind=kind, payload=payload)
    if report and on_error is not None:
        on_error(err)
    else:
        logger.warning(f"{message}: {payload!r}"[:500])
    if strict:
        raise err


def _classify(obj: Any) -> Packet:
    if isinstance(obj, dict) and isinstance(obj.get("m"), str):
        if obj["m"] == "protocol_error":
            return ProtocolError(payload=obj.get("p"), raw=obj)
        return Command.from_dict(obj)
    return RawPacket(obj)


def _decode_payload(
    raw: bytes,
    strict: bool,
    on_error: Optional[OnDecodeError]
) -> Optional[Packet]:
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        _fail(f"Packet is not valid UTF-8: {e}", "json", raw.decode("utf-8", "replace"), strict, on_error, True)
        return None

    if text.startswith("~h~"):
        digits = text[3:]
        if digits.isdigit():
            return Heartbeat(int(digits))
        logger.debug(f"Ignoring malformed heartbeat payload: {text!r}")
        return None

    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        _fail(f"TradingView packet JSON parse failed: {e}", "json", text, strict, on_error, True)
        return None

    return _classify(obj)


def decode(
    chunk: Union[str, bytes, bytearray],
    strict: bool = False,
    on_error: Optional[OnDecodeError] = None
) -> List[Packet]:
    """
    Decode one inbound WebSocket message into packets, in order.

    Args:
        chunk: Raw message (text or bytes)
        strict: Raise ``ProtocolDecodeError`` instead of skipping bad input
        on_error: Receives a diagnostic for every payload that is not valid
            JSON (the diagnostic carries the payload)

    Returns:
        Decoded packets; heartbeats as ``Heartbeat`` entries
    """
    data = chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
    out: List[Packet] = []

    i = 0
    n = len(data)
    while i < n:
        if data.startswith(HEARTBEAT_MARKER, i):
            i += 3
            start = i
            i = _read_digits(data, i)
            if i > start:
                out.append(Heartbeat(int(data[start:i])))
            continue

        if not data.startswith(FRAME_MARKER, i):
            # Skip unexpected byte
            i += 1
            continue

        i += 3
        start = i
        i = _read_digits(data, i)
        if i == start:
            _fail("Frame length is missing", "framing", _tail(data, start), strict, on_error, False)
            break

        length = int(data[start:i])
        if length > MAX_FRAME_LENGTH:
            _fail(f"Frame length {length} exceeds 32 bits", "framing", _tail(data, start), strict, on_error, False)
            break

        if not data.startswith(FRAME_MARKER, i):
            _fail("Second frame marker is missing", "framing", _tail(data, start), strict, on_error, False)
            break
        i += 3

        end = i + length
        if end > n:
            _fail(f"Frame truncated: expected {length} bytes, got {n - i}", "framing", _tail(data, i), strict, on_error, False)
            break

        packet = _decode_payload(data[i:end], strict, on_error)
        i = end
        if packet is not None:
            out.append(packet)

    return out


def _tail(data: bytes, start: int) -> str:
    return data[start:start + 200].decode("utf-8", "replace")
