"""
REST collaborators for the TradingView web services.

Usage:
    from tvclient.rest import get_user, get_ta, search_market

    user = await get_user(session, signature)
    ratings = await get_ta("BINANCE:BTCUSDT")
"""

from .http import HTTPClient, HTTPClientConfig, get_http_client, set_http_client
from .auth import (
    User,
    UserNotifications,
    get_user,
    login_user,
    parse_user_page,
    with_credential_refresh,
)
from .ta import fetch_scan_data, get_ta, format_technical_rating
from .search import SearchMarketResult, search_market
from .pine import (
    PINE_FACADE_BASE,
    build_auth_headers,
    list_script_versions,
    get_script_version,
    delete_script_version,
)


__all__ = [
    # HTTP
    "HTTPClient",
    "HTTPClientConfig",
    "get_http_client",
    "set_http_client",
    # Auth
    "User",
    "UserNotifications",
    "get_user",
    "login_user",
    "parse_user_page",
    "with_credential_refresh",
    # Technical analysis
    "fetch_scan_data",
    "get_ta",
    "format_technical_rating",
    # Search
    "SearchMarketResult",
    "search_market",
    # Pine
    "PINE_FACADE_BASE",
    "build_auth_headers",
    "list_script_versions",
    "get_script_version",
    "delete_script_version",
]
