"""
Market symbol search.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .http import HTTPClient, get_http_client
from .ta import get_ta


SEARCH_URL = "https://symbol-search.tradingview.com/symbol_search"


class SearchMarketResult(BaseModel):
    """One search hit."""
    id: str
    exchange: str
    full_exchange: str = Field(alias="fullExchange")
    symbol: str
    description: str = ""
    type: str = ""

    model_config = {"populate_by_name": True}

    async def get_ta(self, http: Optional[HTTPClient] = None) -> Optional[Dict[str, Dict[str, float]]]:
        """Technical analysis ratings for this market."""
        return await get_ta(self.id, http=http)


async def search_market(
    text: str,
    filter: str = "",
    http: Optional[HTTPClient] = None
) -> List[SearchMarketResult]:
    """
    Find markets by keyword.

    Args:
        text: Keywords
        filter: Category ('stock', 'futures', 'forex', 'cfd', 'crypto',
            'index', 'economic') or empty for all
    """
    http = http or get_http_client()
    response = await http.get(SEARCH_URL, params={"text": text, "type": filter})

    results = []
    for item in response.json():
        full_exchange = item.get("exchange", "")
        exchange = full_exchange.split(" ")[0]
        results.append(SearchMarketResult(
            id=f"{exchange}:{item['symbol']}",
            exchange=exchange,
            full_exchange=full_exchange,
            symbol=item["symbol"],
            description=item.get("description") or "",
            type=item.get("type") or "",
        ))
    return results
