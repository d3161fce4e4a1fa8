"""
Configuration and logging setup for the TradingView client.

Provides the client options record with documented defaults, environment
variable support, and a colored component-aware log formatter.
"""

import os
import sys
import math
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Optional

from dotenv import load_dotenv

from .types import DEFAULT_LOCATION, Server


logger = logging.getLogger("tvclient")


# =============================================================================
# Logging Configuration
# =============================================================================

# ANSI color codes for terminal output
class LogColors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BRIGHT_BLACK = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_MAGENTA = "\033[95m"
    BRIGHT_CYAN = "\033[96m"
    BRIGHT_WHITE = "\033[97m"


class ColoredFormatter(logging.Formatter):
    """Formatter that tags each line with the emitting client component."""

    COMPONENT_STYLES = {
        "tvclient": (LogColors.BRIGHT_CYAN, "TV"),
        "tvclient.client": (LogColors.MAGENTA, "CL"),
        "tvclient.protocol": (LogColors.BRIGHT_BLACK, "PR"),
        "tvclient.transport": (LogColors.BRIGHT_BLACK, "TX"),
        "tvclient.auth": (LogColors.BRIGHT_MAGENTA, "AU"),
        "tvclient.heartbeat": (LogColors.YELLOW, "HB"),
        "tvclient.sessions": (LogColors.GREEN, "SS"),
        "tvclient.router": (LogColors.CYAN, "RT"),
        "tvclient.quote": (LogColors.BLUE, "QS"),
        "tvclient.chart": (LogColors.BLUE, "CS"),
        "tvclient.history": (LogColors.BRIGHT_BLUE, "HS"),
        "tvclient.rest": (LogColors.WHITE, "RS"),
    }

    LEVEL_STYLES = {
        logging.DEBUG: (LogColors.BRIGHT_BLACK, "DBG"),
        logging.INFO: (LogColors.GREEN, "INF"),
        logging.WARNING: (LogColors.YELLOW, "WRN"),
        logging.ERROR: (LogColors.RED, "ERR"),
        logging.CRITICAL: (LogColors.BRIGHT_RED + LogColors.BOLD, "CRT"),
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        component_color, tag = self.COMPONENT_STYLES.get(
            record.name,
            (LogColors.WHITE, "--")
        )

        # Check for parent logger match
        if record.name not in self.COMPONENT_STYLES:
            for comp_name, style in self.COMPONENT_STYLES.items():
                if record.name.startswith(comp_name + "."):
                    component_color, tag = style
                    break

        level_color, level_label = self.LEVEL_STYLES.get(
            record.levelno,
            (LogColors.WHITE, "???")
        )

        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        short_name = record.name.replace("tvclient.", "").upper()
        if short_name == "TVCLIENT":
            short_name = "CORE"

        if self.use_colors:
            line = (
                f"{LogColors.DIM}{timestamp}{LogColors.RESET} "
                f"{level_color}{level_label}{LogColors.RESET} "
                f"{component_color}{tag} {short_name:10}{LogColors.RESET} "
                f"{LogColors.BRIGHT_WHITE}{record.getMessage()}{LogColors.RESET}"
            )
        else:
            line = f"{timestamp} {level_label} {short_name:10} {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging(
    level: int = logging.INFO,
    use_colors: bool = True
) -> logging.Logger:
    """
    Configure console logging for applications built on the client.

    The library itself never calls this; it only creates loggers.

    Args:
        level: Logging level
        use_colors: Whether to use colored output

    Returns:
        The ``tvclient`` root logger
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))
    console_handler.setLevel(level)

    root.setLevel(level)
    root.addHandler(console_handler)

    client_logger = logging.getLogger("tvclient")
    client_logger.setLevel(level)
    client_logger.propagate = True

    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return client_logger


# =============================================================================
# Option validation
# =============================================================================

def _number(
    name: str,
    value: Any,
    default: float,
    minimum: float,
    integer: bool = True
) -> float:
    """Coerce an option to a finite number clamped at ``minimum``.

    Invalid values never raise: they fall back to ``default`` with a warning.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        logger.warning(f"Option {name}={value!r} is not a number, using {default}")
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Option {name}={value!r} is not a number, using {default}")
        return default
    if not math.isfinite(number):
        logger.warning(f"Option {name}={value!r} is not finite, using {default}")
        return default
    if integer:
        number = math.floor(number)
    number = max(minimum, number)
    return int(number) if integer else number


def _flag(name: str, value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes", "on"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "0", "no", "off"):
        return False
    logger.warning(f"Option {name}={value!r} is not a boolean, using {default}")
    return default


# =============================================================================
# Client Configuration
# =============================================================================

@dataclass
class ReconnectConfig:
    """Exponential backoff settings."""
    max_retries: int = 10
    base_delay_ms: int = 500
    fast_first_delay_ms: Optional[int] = 250  # None disables the fast first retry
    max_delay_ms: int = 30_000
    multiplier: float = 2.0
    jitter: bool = True


@dataclass
class HeartbeatConfig:
    """Liveness check settings."""
    check_interval_ms: int = 10_000  # How often to look at the idle gap
    timeout_ms: int = 35_000  # Close after this much inbound silence


@dataclass
class ClientConfig:
    """Complete client options record."""
    # Credentials
    token: Optional[str] = None  # 'sessionid' cookie
    signature: Optional[str] = None  # 'sessionid_sign' cookie
    location: str = DEFAULT_LOCATION

    # Endpoint
    server: str = Server.DATA.value
    chart_id: Optional[str] = None
    compression: bool = True

    # Connection tuning
    connect_timeout_ms: int = 15_000
    auth_retry_delay_ms: int = 500
    auth_max_attempts: int = 2
    reset_attempts_after_ms: int = 0

    # Behaviour
    auto_rehydrate: bool = True
    strict_protocol: bool = False
    debug: bool = False

    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)

    @classmethod
    def from_options(cls, **options: Any) -> "ClientConfig":
        """
        Build a validated config from flat option names.

        Recognised names are the dataclass fields plus ``reconnect_max_retries``,
        ``reconnect_base_delay_ms``, ``reconnect_fast_first_delay_ms``,
        ``reconnect_max_delay_ms``, ``reconnect_multiplier``,
        ``reconnect_jitter``, ``heartbeat_check_interval_ms`` and
        ``heartbeat_timeout_ms``. Out-of-range values are clamped, invalid
        ones replaced by defaults; unknown names are logged and ignored.
        """
        defaults = cls()
        rc = ReconnectConfig()
        hb = HeartbeatConfig()
        known = {f.name for f in fields(cls)} | {
            "reconnect_max_retries", "reconnect_base_delay_ms",
            "reconnect_fast_first_delay_ms", "reconnect_max_delay_ms",
            "reconnect_multiplier", "reconnect_jitter",
            "heartbeat_check_interval_ms", "heartbeat_timeout_ms",
        }
        for name in options:
            if name not in known:
                logger.warning(f"Ignoring unknown client option: {name}")

        get = options.get

        server = get("server") or defaults.server
        if isinstance(server, Server):
            server = server.value
        if server not in {s.value for s in Server}:
            logger.warning(f"Unknown server {server!r}, using {defaults.server}")
            server = defaults.server

        fast_first = get("reconnect_fast_first_delay_ms", rc.fast_first_delay_ms)
        if fast_first is not None:
            fast_first = _number("reconnect_fast_first_delay_ms", fast_first, rc.fast_first_delay_ms, 0)

        reconnect = get("reconnect")
        if not isinstance(reconnect, ReconnectConfig):
            reconnect = ReconnectConfig(
                max_retries=_number("reconnect_max_retries", get("reconnect_max_retries"), rc.max_retries, 0),
                base_delay_ms=_number("reconnect_base_delay_ms", get("reconnect_base_delay_ms"), rc.base_delay_ms, 0),
                fast_first_delay_ms=fast_first,
                max_delay_ms=_number("reconnect_max_delay_ms", get("reconnect_max_delay_ms"), rc.max_delay_ms, 0),
                multiplier=_number("reconnect_multiplier", get("reconnect_multiplier"), rc.multiplier, 1, integer=False),
                jitter=_flag("reconnect_jitter", get("reconnect_jitter"), rc.jitter),
            )

        heartbeat = get("heartbeat")
        if not isinstance(heartbeat, HeartbeatConfig):
            heartbeat = HeartbeatConfig(
                check_interval_ms=_number("heartbeat_check_interval_ms", get("heartbeat_check_interval_ms"), hb.check_interval_ms, 100),
                timeout_ms=_number("heartbeat_timeout_ms", get("heartbeat_timeout_ms"), hb.timeout_ms, 1000),
            )

        return cls(
            token=get("token") or None,
            signature=get("signature") or None,
            location=get("location") or defaults.location,
            server=server,
            chart_id=get("chart_id"),
            compression=_flag("compression", get("compression"), defaults.compression),
            connect_timeout_ms=_number("connect_timeout_ms", get("connect_timeout_ms"), defaults.connect_timeout_ms, 1000),
            auth_retry_delay_ms=_number("auth_retry_delay_ms", get("auth_retry_delay_ms"), defaults.auth_retry_delay_ms, 0),
            auth_max_attempts=_number("auth_max_attempts", get("auth_max_attempts"), defaults.auth_max_attempts, 1),
            reset_attempts_after_ms=_number("reset_attempts_after_ms", get("reset_attempts_after_ms"), defaults.reset_attempts_after_ms, 0),
            auto_rehydrate=_flag("auto_rehydrate", get("auto_rehydrate"), defaults.auto_rehydrate),
            strict_protocol=_flag("strict_protocol", get("strict_protocol"), defaults.strict_protocol),
            debug=_flag("debug", get("debug"), defaults.debug),
            reconnect=reconnect,
            heartbeat=heartbeat,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> "ClientConfig":
        """Create config from environment variables (and a local ``.env``)."""
        load_dotenv()
        options = {
            "token": os.getenv("TV_SESSION"),
            "signature": os.getenv("TV_SIGNATURE"),
            "location": os.getenv("TV_LOCATION"),
            "server": os.getenv("TV_SERVER"),
            "chart_id": os.getenv("TV_CHART_ID"),
            "connect_timeout_ms": os.getenv("TV_CONNECT_TIMEOUT_MS"),
            "reconnect_max_retries": os.getenv("TV_RECONNECT_MAX_RETRIES"),
            "auto_rehydrate": os.getenv("TV_AUTO_REHYDRATE"),
            "strict_protocol": os.getenv("TV_STRICT_PROTOCOL"),
            "debug": os.getenv("TV_DEBUG"),
        }
        options.update(overrides)
        return cls.from_options(**options)
