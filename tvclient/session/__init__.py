"""
Session kinds multiplexed over one client connection.
"""

from .base import Period, Session
from .quote import FIELD_PRESETS, QuoteMarket, QuoteSession
from .chart import ChartSession, ChartStudy
from .history import DEFAULT_SCRIPT_ID, HistoryPeriod, HistoryRequest, HistorySession


__all__ = [
    "Period",
    "Session",
    "FIELD_PRESETS",
    "QuoteMarket",
    "QuoteSession",
    "ChartSession",
    "ChartStudy",
    "DEFAULT_SCRIPT_ID",
    "HistoryPeriod",
    "HistoryRequest",
    "HistorySession",
]
