"""
Technical analysis ratings from the TradingView scanner.
"""

import math
from typing import Any, Dict, List, Optional

from .http import HTTPClient, get_http_client


SCANNER_URL = "https://scanner.tradingview.com/global/scan"

INDICATORS = ["Recommend.Other", "Recommend.All", "Recommend.MA"]
PERIODS = ["1", "5", "15", "60", "240", "1D", "1W", "1M"]


async def fetch_scan_data(
    tickers: List[str],
    columns: List[str],
    http: Optional[HTTPClient] = None
) -> Dict[str, Any]:
    """POST a scanner query and return the decoded body."""
    http = http or get_http_client()
    response = await http.post(
        SCANNER_URL,
        json={"symbols": {"tickers": tickers}, "columns": columns},
    )
    return response.json()


def ta_columns() -> List[str]:
    """Scanner columns for every indicator/period pair (daily has no suffix)."""
    return [
        indicator if period == "1D" else f"{indicator}|{period}"
        for period in PERIODS
        for indicator in INDICATORS
    ]


async def get_ta(market_id: str, http: Optional[HTTPClient] = None) -> Optional[Dict[str, Dict[str, float]]]:
    """
    Get technical analysis ratings for a market.

    Args:
        market_id: Full market id (e.g. 'COINBASE:BTCEUR')

    Returns:
        ``{period: {"Other": x, "All": y, "MA": z}}`` with values in
        ``[-2, 2]``, or None when the scanner knows nothing about the market
    """
    columns = ta_columns()
    data = await fetch_scan_data([market_id], columns, http=http)

    rows = data.get("data") if isinstance(data, dict) else None
    if not rows:
        return None

    advice: Dict[str, Dict[str, float]] = {}
    for column, value in zip(columns, rows[0].get("d", [])):
        name, _, period = column.partition("|")
        period = period or "1D"
        if value is None:
            continue
        advice.setdefault(period, {})[name.split(".")[-1]] = math.floor(value * 1000 + 0.5) / 500

    return advice


def format_technical_rating(rating: float) -> str:
    """Map a rating value to its label."""
    if rating >= 0.5:
        return "Strong Buy"
    if rating >= 0.1:
        return "Buy"
    if rating >= -0.1:
        return "Neutral"
    if rating > -0.5:
        return "Sell"
    return "Strong Sell"
