"""
Quote sessions: live field updates for a set of symbols.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..errors import SessionError
from ..events import EventEmitter, Listener
from ..types import SessionPacket, SessionPrefix
from .base import Session

if TYPE_CHECKING:
    from ..client import ClientBridge


logger = logging.getLogger("tvclient.quote")

FIELD_PRESETS: Dict[str, List[str]] = {
    "all": [
        "base-currency-logoid", "ch", "chp", "currency-logoid", "currency_code",
        "current_session", "description", "exchange", "format", "fractional",
        "is_tradable", "language", "local_description", "logoid", "lp",
        "lp_time", "minmov", "minmove2", "original_name", "pricescale",
        "pro_name", "short_name", "type", "update_mode", "volume", "ask",
        "bid", "fundamentals", "high_price", "low_price", "open_price",
        "prev_close_price", "rch", "rchp", "rtc", "rtc_time", "status",
        "industry", "basic_eps_net_income", "beta_1_year", "market_cap_basic",
        "earnings_per_share_basic_ttm", "price_earnings_ttm", "sector",
        "dividends_yield", "timezone", "country_code", "provider_id",
    ],
    "price": ["lp"],
}


class QuoteMarket:
    """
    Subscription to one symbol inside a quote session.

    Events: loaded, data (cumulative field values), error, event.
    """

    EVENTS = ("loaded", "data", "error")

    def __init__(self, session: "QuoteSession", symbol: str):
        self.symbol = symbol
        self._session = session
        self._events = EventEmitter(self.EVENTS, logger)
        self._last_data: Dict[str, Any] = {}
        self._loaded = False
        self._closed = False
        session._attach(self)

    @property
    def last_data(self) -> Dict[str, Any]:
        return dict(self._last_data)

    def on(self, event: str, listener: Listener) -> Listener:
        return self._events.on(event, listener)

    def on_loaded(self, listener: Listener) -> Listener:
        return self.on("loaded", listener)

    def on_data(self, listener: Listener) -> Listener:
        return self.on("data", listener)

    def on_error(self, listener: Listener) -> Listener:
        return self.on("error", listener)

    def on_event(self, listener: Listener) -> Listener:
        return self.on("event", listener)

    def close(self) -> None:
        """Stop this subscription (the symbol is removed with its last listener)."""
        if self._closed:
            return
        self._closed = True
        self._session._detach(self)
        self._events.silence()

    def _handle_completed(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        self._events.emit("loaded")

    def _handle_data(self, values: Dict[str, Any]) -> None:
        self._last_data.update(values)
        self._events.emit("data", dict(self._last_data))

    def _handle_error(self, error: SessionError) -> None:
        self._events.emit_error(error)


class QuoteSession(Session):
    """
    Quote session (``qs_`` keys).

    Usage:
        quotes = client.quote_session(fields="price")
        market = quotes.market("BINANCE:BTCUSDT")
        market.on_data(lambda data: print(data["lp"]))
    """

    PREFIX = SessionPrefix.QUOTE
    KIND = "quote"
    EVENTS = ("error",)
    DELETE_COMMAND = "quote_delete_session"

    def __init__(
        self,
        bridge: "ClientBridge",
        fields: Union[str, List[str]] = "all",
        custom_fields: Optional[List[str]] = None
    ):
        if custom_fields:
            self.fields = list(custom_fields)
        elif isinstance(fields, str):
            if fields not in FIELD_PRESETS:
                raise ValueError(f"Unknown field preset: {fields}")
            self.fields = list(FIELD_PRESETS[fields])
        else:
            self.fields = list(fields)

        # Symbol -> markets, in subscription order
        self._markets: Dict[str, List[QuoteMarket]] = {}

        super().__init__(bridge, logger=logger)

    @property
    def symbols(self) -> List[str]:
        return list(self._markets)

    def market(self, symbol: str) -> QuoteMarket:
        """Subscribe to ``symbol``."""
        return QuoteMarket(self, symbol)

    def _create(self) -> None:
        self._send("quote_create_session")
        self._send("quote_set_fields", self.fields)

    def _restore(self) -> None:
        for symbol in self._markets:
            self._send("quote_add_symbols", [symbol])

    def _attach(self, market: QuoteMarket) -> None:
        listeners = self._markets.get(market.symbol)
        if listeners is None:
            self._markets[market.symbol] = [market]
            self._send("quote_add_symbols", [market.symbol])
        else:
            listeners.append(market)

    def _detach(self, market: QuoteMarket) -> None:
        listeners = self._markets.get(market.symbol)
        if not listeners or market not in listeners:
            return
        listeners.remove(market)
        if not listeners:
            del self._markets[market.symbol]
            if not self._deleted:
                self._send("quote_remove_symbols", [market.symbol])

    def _handle(self, packet: SessionPacket) -> None:
        if packet.type == "quote_completed":
            symbol = packet.data[1] if len(packet.data) > 1 else None
            for market in list(self._markets.get(symbol, ())):
                market._handle_completed()
            return

        if packet.type == "qsd":
            update = packet.data[1] if len(packet.data) > 1 and isinstance(packet.data[1], dict) else {}
            symbol = update.get("n")
            markets = list(self._markets.get(symbol, ()))
            if not markets:
                logger.debug(f"[{self.key}] Update for unsubscribed symbol {symbol}")
                return

            if update.get("s") == "error":
                error = SessionError(f"Market error for {symbol}: {update.get('v')}", kind="symbol_error", symbol=symbol)
                for market in markets:
                    market._handle_error(error)
                return

            values = update.get("v") or {}
            for market in markets:
                market._handle_data(values)
            return

        if packet.type in ("critical_error", "protocol_error"):
            self._emit_error(SessionError(f"Quote session error: {packet.data[1:]}", kind=packet.type))

    def delete(self) -> None:
        """Close every market and delete the session."""
        for listeners in list(self._markets.values()):
            for market in list(listeners):
                market._closed = True
                market._events.silence()
        self._markets.clear()
        super().delete()
