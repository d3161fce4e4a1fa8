"""
Deep history sessions on the ``history-data`` endpoint.

Requests are correlated by an integer id: each ``request_history_data``
gets a future that the matching ``request_data`` response resolves, with
its own deadline. Deleting the session or a server-reported error rejects
every pending request.
"""

import json
import logging
import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, model_validator

from ..errors import ProtocolDecodeError, SessionClosedError, SessionError
from ..events import Listener
from ..protocol import dumps
from ..router import PendingRequests
from ..types import SessionPacket, SessionPrefix
from .base import Period, Session

if TYPE_CHECKING:
    from ..client import ClientBridge


logger = logging.getLogger("tvclient.history")

DEFAULT_SCRIPT_ID = "StrategyScript@tv-scripting-101!"

HistoryPeriod = Period


class HistoryRequest(BaseModel):
    """Parameters of one ``request_history_data`` call."""
    symbol: str = ""
    timeframe: str = "1"
    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None
    adjustment: str = "splits"
    currency: str = "USD"
    session: str = "regular"
    script_id: str = DEFAULT_SCRIPT_ID
    script_text: Optional[str] = None

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_required(self) -> "HistoryRequest":
        if not self.symbol:
            raise ValueError("Symbol is required")
        if self.from_ is None or self.to is None:
            raise ValueError("Both from and to timestamps are required")
        return self

    def symbol_config(self) -> str:
        """Symbol descriptor in the ``=<json>`` form the server expects."""
        return "=" + dumps({
            "adjustment": self.adjustment,
            "currency-id": self.currency,
            "session": self.session,
            "symbol": self.symbol.upper(),
        })

    def to_params(self, request_id: int) -> List[Any]:
        """Command parameters after the session key."""
        params: List[Any] = [
            request_id,
            self.symbol_config(),
            self.timeframe,
            0,
            {"from_to": {"from": self.from_, "to": self.to}},
            self.script_id,
        ]
        if self.script_text:
            params.append({"text": self.script_text})
        return params


class HistorySession(Session):
    """
    History session (``hs_`` keys) for deep backtesting.

    Usage:
        client = Client(server="history-data", chart_id=chart_id, token=..., signature=...)
        history = client.history_session()
        result = await history.backtest_strategy(
            symbol="BINANCE:BTCUSDT", timeframe="60",
            from_=start, to=end, script_text=encode_script_text(source),
        )
        print(result["report"]["performance"]["all"]["netProfit"])

    Events: data, error, loaded, complete, event.
    """

    PREFIX = SessionPrefix.HISTORY
    KIND = "history"
    EVENTS = ("data", "error", "loaded", "complete")
    DELETE_COMMAND = "history_delete_session"

    def __init__(self, bridge: "ClientBridge"):
        self._pending = PendingRequests()
        self._request_counter = 0
        self._periods: Dict[int, Period] = {}
        self._strategy_report: Optional[Dict[str, Any]] = None

        super().__init__(bridge, logger=logger)
        bridge.register_shutdown_hook(self.hook_key, self._reject_pending)

    @property
    def periods(self) -> List[Period]:
        """Bars, newest first."""
        return sorted(self._periods.values(), key=lambda p: p.time, reverse=True)

    @property
    def strategy_report(self) -> Optional[Dict[str, Any]]:
        return self._strategy_report

    @property
    def pending_requests(self) -> int:
        return len(self._pending)

    def on_data(self, listener: Listener) -> Listener:
        return self.on("data", listener)

    def on_loaded(self, listener: Listener) -> Listener:
        return self.on("loaded", listener)

    def on_complete(self, listener: Listener) -> Listener:
        return self.on("complete", listener)

    # =========================================================================
    # Requests
    # =========================================================================

    async def request_history_data(
        self,
        request: Union[HistoryRequest, Dict[str, Any], None] = None,
        timeout_ms: int = 30_000,
        **fields: Any
    ) -> Dict[str, Any]:
        """
        Request historical bars, optionally running a strategy over them.

        Args:
            request: ``HistoryRequest`` or a dict of its fields (``from`` or
                ``from_`` for the start)
            timeout_ms: Deadline for this request only
            **fields: Request fields when ``request`` is omitted

        Returns:
            ``{"periods": [...], "report": {...} | None}``

        Raises:
            ValueError: If symbol, from or to is missing
            RequestTimeoutError: If the response does not arrive in time
            SessionError: If the server reports an error for the session
            SessionClosedError: If the session or client closes first
        """
        if isinstance(request, HistoryRequest):
            req = request
        else:
            req = HistoryRequest.model_validate({**(request or {}), **fields})

        if self._deleted:
            raise SessionClosedError("History session deleted")

        self._request_counter += 1
        request_id = self._request_counter

        future = self._pending.create(request_id, timeout_ms)
        logger.debug(f"[{self.key}] Request {request_id}: {req.symbol} {req.timeframe} {req.from_}-{req.to}")
        self._send("request_history_data", req.to_params(request_id), replayable=False)
        return await future

    async def get_historical_data(
        self,
        symbol: str,
        timeframe: str,
        from_: int,
        to: int,
        timeout_ms: int = 30_000
    ) -> List[Period]:
        """Fetch plain OHLCV bars (no strategy). Returns periods newest first."""
        await self.request_history_data(
            HistoryRequest(symbol=symbol, timeframe=timeframe, from_=from_, to=to),
            timeout_ms=timeout_ms,
        )
        return self.periods

    async def backtest_strategy(
        self,
        symbol: str,
        timeframe: str,
        from_: int,
        to: int,
        script_text: str,
        script_id: Optional[str] = None,
        timeout_ms: int = 60_000
    ) -> Dict[str, Any]:
        """
        Run a strategy over historical data.

        Args:
            script_text: Encoded strategy source (see ``encode_script_text``)

        Raises:
            ValueError: If ``script_text`` is empty
        """
        if not script_text:
            raise ValueError("Strategy script text is required for backtesting")

        return await self.request_history_data(
            HistoryRequest(
                symbol=symbol,
                timeframe=timeframe,
                from_=from_,
                to=to,
                script_id=script_id or DEFAULT_SCRIPT_ID,
                script_text=script_text,
            ),
            timeout_ms=timeout_ms,
        )

    def clear_data(self) -> None:
        """Forget stored periods and the last strategy report."""
        self._periods = {}
        self._strategy_report = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _create(self) -> None:
        self._send("history_create_session")

    def _handle(self, packet: SessionPacket) -> None:
        data = packet.data

        if packet.type == "request_data":
            request_id = data[1] if len(data) > 1 else None
            payload = data[2] if len(data) > 2 and isinstance(data[2], dict) else {}
            self._handle_request_data(request_id, payload)
            return

        if packet.type in ("symbol_error", "critical_error", "protocol_error"):
            error = SessionError(f"History {packet.type.replace('_', ' ')}: {data[1:]}", kind=packet.type)
            self._emit_error(error)
            rejected = self._pending.reject_all(error)
            if rejected:
                logger.warning(f"[{self.key}] Rejected {rejected} pending requests: {error}")

    def _handle_request_data(self, request_id: Any, payload: Dict[str, Any]) -> None:
        series = payload.get("series")
        if isinstance(series, dict) and series.get("data"):
            self._parse_series(series["data"])

        ns = payload.get("ns")
        if isinstance(ns, dict) and ns.get("d"):
            try:
                parsed = json.loads(ns["d"])
            except (TypeError, ValueError) as e:
                self._emit_error(ProtocolDecodeError(f"Failed to parse strategy report: {e}", kind="json", payload=str(ns["d"])[:500]))
            else:
                report = (parsed.get("data") or {}).get("report") if isinstance(parsed, dict) else None
                if report:
                    self._strategy_report = report
                    self._emit("data", {"type": "report", "report": report})

        self._pending.resolve(request_id, {"periods": self.periods, "report": self._strategy_report})
        self._emit("loaded", {"request_id": request_id, "data": payload})

        if len(self._pending) == 0:
            self._emit("complete")

    def _parse_series(self, points: Any) -> None:
        if not isinstance(points, list):
            return
        for point in points:
            values = point.get("v") if isinstance(point, dict) else None
            if not values or len(values) < 6:
                continue
            time, open_, high, low, close, volume = values[:6]
            self._periods[time] = Period(
                time=time,
                open=open_,
                close=close,
                max=high,
                min=low,
                volume=math.floor((volume or 0) * 100 + 0.5) / 100,
            )

    def _reject_pending(self, error: BaseException) -> None:
        self._pending.reject_all(error)

    def delete(self) -> None:
        """Reject pending requests and delete the session."""
        if self._deleted:
            return
        self._reject_pending(SessionClosedError("History session deleted"))
        self._bridge.unregister_shutdown_hook(self.hook_key)
        super().delete()
