"""
Utility functions for the TradingView client.
"""

import base64
import random
import re
import string
import time
from datetime import datetime
from typing import Optional, Tuple, Union


_KEY_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits

DateLike = Union[datetime, str, int, float, None]


def gen_session_id(prefix: str = "xs") -> str:
    """Generate a session key: ``<prefix>_`` plus 12 random alphanumerics."""
    return f"{prefix}_" + "".join(random.choice(_KEY_ALPHABET) for _ in range(12))


def gen_auth_cookies(session_id: str = "", signature: str = "") -> str:
    """Build the ``Cookie`` header value for session credentials."""
    if not session_id:
        return ""
    if not signature:
        return f"sessionid={session_id}"
    return f"sessionid={session_id};sessionid_sign={signature}"


def normalize_timeframe(tf: Optional[str]) -> str:
    """
    Convert a human timeframe to TradingView's resolution format.

    ``'5m'`` -> ``'5'``, ``'1h'`` -> ``'60'``, ``'1d'`` -> ``'D'``,
    ``'1w'`` -> ``'W'``, ``'1M'`` -> ``'M'``. Unparseable input gives ``'D'``.
    """
    if not tf:
        return "D"

    raw = str(tf).strip()
    lower = raw.lower()

    if re.fullmatch(r"[1-9]\d*", lower):
        return lower
    if re.fullmatch(r"[dwm]", lower):
        return lower.upper()

    match = re.fullmatch(r"(\d+)\s*([A-Za-z]?)", raw)
    if not match:
        return "D"

    n = int(match.group(1))
    # 'M' is months; every other suffix is case-insensitive
    suffix = match.group(2) if match.group(2) == "M" else match.group(2).lower()
    if suffix == "m":
        return str(n)
    if suffix == "h":
        return str(n * 60)
    if suffix == "d":
        return "D"
    if suffix == "w":
        return "W"
    if suffix == "M":
        return "M"
    if suffix:
        return "D"
    return str(n)


def to_tv_timestamp(date: DateLike = None) -> int:
    """
    Convert a date to Unix seconds.

    Numbers are taken as milliseconds, strings as ISO-8601, ``None`` as now.
    """
    if isinstance(date, datetime):
        return int(date.timestamp())
    if isinstance(date, str):
        return int(datetime.fromisoformat(date.replace("Z", "+00:00")).timestamp())
    if isinstance(date, (int, float)) and not isinstance(date, bool):
        return int(date // 1000)
    return int(time.time())


def get_backtest_range(
    days: int = 30,
    from_date: DateLike = None,
    to_date: DateLike = None
) -> Tuple[int, int]:
    """Return ``(from, to)`` in Unix seconds, defaulting to the last ``days`` days."""
    to = to_tv_timestamp(to_date) if to_date else int(time.time())
    start = to_tv_timestamp(from_date) if from_date else to - days * 24 * 60 * 60
    return start, to


def encode_script_text(source: str) -> str:
    """Base64-encode Pine source for strategy execution requests."""
    return base64.b64encode(source.encode("utf-8")).decode("ascii")


def parse_symbol(symbol: Optional[str]) -> Tuple[Optional[str], str]:
    """Split ``'EXCHANGE:TICKER'`` into ``(exchange, ticker)``."""
    if not symbol:
        return None, ""
    parts = symbol.strip().split(":")
    if len(parts) == 2:
        return parts[0], parts[1]
    return None, parts[0]
