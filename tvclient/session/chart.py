"""
Chart sessions: one price series plus optional studies.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import SessionError
from ..events import EventEmitter, Listener
from ..protocol import dumps
from ..types import SessionPacket, SessionPrefix
from ..utils import normalize_timeframe
from .base import Period, Session

if TYPE_CHECKING:
    from ..client import ClientBridge


logger = logging.getLogger("tvclient.chart")

PRICES = "$prices"


class ChartStudy:
    """
    Indicator attached to a chart session (``st<n>`` ids).

    Events: update (list of ``{time, values}`` newest first), error, event.
    """

    EVENTS = ("update", "error")

    def __init__(self, chart: "ChartSession", study_id: str, script_id: str, inputs: Optional[Dict[str, Any]] = None):
        self.id = study_id
        self.script_id = script_id
        self.inputs = dict(inputs or {})
        self._chart = chart
        self._events = EventEmitter(self.EVENTS, logger)
        self._periods: Dict[Any, Dict[str, Any]] = {}
        self._removed = False

    @property
    def periods(self) -> List[Dict[str, Any]]:
        return sorted(self._periods.values(), key=lambda p: p["time"], reverse=True)

    def on(self, event: str, listener: Listener) -> Listener:
        return self._events.on(event, listener)

    def on_update(self, listener: Listener) -> Listener:
        return self.on("update", listener)

    def on_error(self, listener: Listener) -> Listener:
        return self.on("error", listener)

    def remove(self) -> None:
        """Remove the study from the chart."""
        if self._removed:
            return
        self._removed = True
        self._chart._remove_study(self)
        self._events.silence()

    def _handle_update(self, payload: Dict[str, Any]) -> None:
        for point in payload.get("st") or []:
            values = point.get("v") or []
            if not values:
                continue
            self._periods[values[0]] = {"time": values[0], "values": values[1:]}
        self._events.emit("update", self.periods)

    def _handle_error(self, error: SessionError) -> None:
        self._events.emit_error(error)


class ChartSession(Session):
    """
    Chart session (``cs_`` keys).

    Usage:
        chart = client.chart_session()
        chart.on_update(lambda changes: print(chart.periods[0]))
        chart.set_market("BINANCE:BTCEUR", timeframe="240", range=100)

    Events: symbol_loaded, update, series_completed, error, event.
    """

    PREFIX = SessionPrefix.CHART
    KIND = "chart"
    EVENTS = ("symbol_loaded", "update", "series_completed", "error")
    DELETE_COMMAND = "chart_delete_session"

    def __init__(self, bridge: "ClientBridge"):
        self.infos: Dict[str, Any] = {}
        self._periods: Dict[int, Period] = {}
        self._studies: Dict[str, ChartStudy] = {}
        self._series_count = 0
        self._study_count = 0
        self._series_created = False
        self._symbol_init: Optional[str] = None
        self._timeframe = "240"
        self._range: Any = 100

        super().__init__(bridge, logger=logger)

    @property
    def periods(self) -> List[Period]:
        """Bars, newest first."""
        return sorted(self._periods.values(), key=lambda p: p.time, reverse=True)

    @property
    def studies(self) -> List[ChartStudy]:
        return list(self._studies.values())

    @property
    def series_id(self) -> str:
        return f"ser_{self._series_count}"

    def on_symbol_loaded(self, listener: Listener) -> Listener:
        return self.on("symbol_loaded", listener)

    def on_update(self, listener: Listener) -> Listener:
        return self.on("update", listener)

    def on_series_completed(self, listener: Listener) -> Listener:
        return self.on("series_completed", listener)

    # =========================================================================
    # Commands
    # =========================================================================

    def set_market(
        self,
        symbol: str,
        timeframe: str = "240",
        range: int = 100,
        to: Optional[int] = None,
        adjustment: str = "splits",
        session: str = "regular",
        currency: Optional[str] = None
    ) -> None:
        """
        Load a market on the chart (replaces the previous one).

        Args:
            symbol: Market id (e.g. 'BINANCE:BTCEUR')
            timeframe: Resolution ('1', '60', '240', 'D', or '4h' style)
            range: Number of bars to load
            to: Last bar timestamp (seconds) for a fixed window
            adjustment: 'splits', 'dividends' or 'none'
            session: 'regular' or 'extended'
            currency: Convert prices to this currency
        """
        self._periods = {}
        self.infos = {}

        init: Dict[str, Any] = {"symbol": symbol, "adjustment": adjustment, "session": session}
        if currency:
            init["currency-id"] = currency

        self._series_count += 1
        self._symbol_init = "=" + dumps(init)
        self._timeframe = normalize_timeframe(timeframe)
        self._range = ["bar_count", self._timeframe, range, to] if to else range

        self._send("resolve_symbol", [self.series_id, self._symbol_init])
        self._send_series()

    def set_series(self, timeframe: str = "240", range: int = 100) -> None:
        """Change the resolution or bar count of the loaded market."""
        if self._symbol_init is None:
            raise ValueError("Call set_market() before set_series()")
        self._periods = {}
        self._timeframe = normalize_timeframe(timeframe)
        self._range = range
        self._send_series()

    def fetch_more(self, count: int = 1) -> None:
        """Load ``count`` older bars."""
        self._send("request_more_data", [PRICES, count], replayable=False)

    def create_study(self, script_id: str, inputs: Optional[Dict[str, Any]] = None) -> ChartStudy:
        """Attach an indicator by its script id."""
        self._study_count += 1
        study = ChartStudy(self, f"st{self._study_count}", script_id, inputs)
        self._studies[study.id] = study
        self._send_study(study)
        return study

    def _send_series(self) -> None:
        command = "modify_series" if self._series_created else "create_series"
        self._send(command, [PRICES, "s1", self.series_id, self._timeframe, self._range])
        self._series_created = True

    def _send_study(self, study: ChartStudy) -> None:
        self._send("create_study", [study.id, "st1", PRICES, study.script_id, study.inputs])

    def _remove_study(self, study: ChartStudy) -> None:
        if self._studies.pop(study.id, None) is not None and not self._deleted:
            self._send("remove_study", [study.id])

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _create(self) -> None:
        self._send("chart_create_session", [""])

    def _restore(self) -> None:
        if self._symbol_init is None:
            return
        self._series_created = False
        self._send("resolve_symbol", [self.series_id, self._symbol_init])
        self._send_series()
        for study in self._studies.values():
            self._send_study(study)

    def _handle(self, packet: SessionPacket) -> None:
        data = packet.data

        if packet.type == "symbol_resolved":
            self.infos = data[2] if len(data) > 2 and isinstance(data[2], dict) else {}
            self._emit("symbol_loaded", self.infos)
            return

        if packet.type in ("timescale_update", "du"):
            payload = data[1] if len(data) > 1 and isinstance(data[1], dict) else {}
            changes = []
            for name, value in payload.items():
                if not isinstance(value, dict):
                    continue
                if name == PRICES:
                    self._update_prices(value)
                    changes.append(name)
                elif name in self._studies:
                    self._studies[name]._handle_update(value)
                    changes.append(name)
            if changes:
                self._emit("update", changes)
            return

        if packet.type == "series_completed":
            self._emit("series_completed")
            return

        if packet.type == "study_error":
            study = self._studies.get(data[1]) if len(data) > 1 else None
            error = SessionError(f"Study error: {data[1:]}", kind="study_error")
            if study is not None:
                study._handle_error(error)
            else:
                self._emit_error(error)
            return

        if packet.type in ("symbol_error", "series_error", "critical_error"):
            self._emit_error(SessionError(f"Chart {packet.type.replace('_', ' ')}: {data[1:]}", kind=packet.type))

    def _update_prices(self, payload: Dict[str, Any]) -> None:
        for point in payload.get("s") or []:
            values = point.get("v") or []
            if len(values) < 5:
                continue
            time, open_, high, low, close = values[:5]
            volume = values[5] if len(values) > 5 else None
            self._periods[time] = Period(
                time=time,
                open=open_,
                close=close,
                max=high,
                min=low,
                volume=volume,
            )

    def delete(self) -> None:
        for study in list(self._studies.values()):
            study._removed = True
            study._events.silence()
        self._studies.clear()
        super().delete()
