"""
Unit Tests: Helpers
"""

import base64
from datetime import datetime, timezone

import pytest

from tvclient import (
    encode_script_text,
    gen_auth_cookies,
    gen_session_id,
    get_backtest_range,
    normalize_timeframe,
    parse_symbol,
    to_tv_timestamp,
)


class TestSessionIds:
    def test_format(self):
        key = gen_session_id("cs")

        assert key.startswith("cs_")
        assert len(key) == 15
        assert key[3:].isalnum()

    def test_unique(self):
        assert len({gen_session_id("qs") for _ in range(200)}) == 200


class TestAuthCookies:
    def test_cookie_forms(self):
        assert gen_auth_cookies() == ""
        assert gen_auth_cookies("s") == "sessionid=s"
        assert gen_auth_cookies("s", "g") == "sessionid=s;sessionid_sign=g"


class TestTimeframes:
    @pytest.mark.parametrize("raw,expected", [
        ("5", "5"),
        ("5m", "5"),
        ("1h", "60"),
        ("4H", "240"),
        ("1d", "D"),
        ("D", "D"),
        ("1w", "W"),
        ("1M", "M"),
        ("", "D"),
        ("soon", "D"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_timeframe(raw) == expected


class TestTimestamps:
    def test_datetime_and_string(self):
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc)

        assert to_tv_timestamp(moment) == 1704067200
        assert to_tv_timestamp("2024-01-01T00:00:00Z") == 1704067200

    def test_numbers_are_milliseconds(self):
        assert to_tv_timestamp(1704067200123) == 1704067200

    def test_backtest_range(self):
        start, end = get_backtest_range(days=2, to_date="2024-01-03T00:00:00Z")

        assert end == 1704240000
        assert end - start == 2 * 86400


class TestMisc:
    def test_encode_script_text(self):
        encoded = encode_script_text("strategy('x')")
        assert base64.b64decode(encoded).decode() == "strategy('x')"

    def test_parse_symbol(self):
        assert parse_symbol("BINANCE:BTCUSDT") == ("BINANCE", "BTCUSDT")
        assert parse_symbol("AAPL") == (None, "AAPL")
        assert parse_symbol(None) == (None, "")
