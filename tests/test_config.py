"""
Unit Tests: Client configuration
"""

import logging

from tvclient import ClientConfig, HeartbeatConfig, Server


class TestClientConfig:
    """Test option validation and defaults."""

    def test_defaults(self):
        config = ClientConfig.from_options()

        assert config.server == "data"
        assert config.token is None
        assert config.connect_timeout_ms == 15000
        assert config.reconnect.max_retries == 10
        assert config.reconnect.fast_first_delay_ms == 250
        assert config.reconnect.jitter is True
        assert config.heartbeat.timeout_ms == 35000
        assert config.auto_rehydrate is True
        assert config.strict_protocol is False

    def test_out_of_range_values_are_clamped(self):
        config = ClientConfig.from_options(
            connect_timeout_ms=10,
            reconnect_max_retries=-3,
            reconnect_multiplier=0.5,
            heartbeat_timeout_ms=5,
        )

        assert config.connect_timeout_ms == 1000
        assert config.reconnect.max_retries == 0
        assert config.reconnect.multiplier == 1
        assert config.heartbeat.timeout_ms == 1000

    def test_invalid_values_fall_back_to_defaults(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tvclient"):
            config = ClientConfig.from_options(
                connect_timeout_ms="soon",
                reconnect_base_delay_ms=float("nan"),
                auto_rehydrate="maybe",
            )

        assert config.connect_timeout_ms == 15000
        assert config.reconnect.base_delay_ms == 500
        assert config.auto_rehydrate is True
        assert "not a number" in caplog.text

    def test_fractional_values_are_floored(self):
        config = ClientConfig.from_options(reconnect_base_delay_ms=12.9)
        assert config.reconnect.base_delay_ms == 12

    def test_fast_first_can_be_disabled(self):
        config = ClientConfig.from_options(reconnect_fast_first_delay_ms=None)
        assert config.reconnect.fast_first_delay_ms is None

    def test_unknown_option_is_ignored(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tvclient"):
            config = ClientConfig.from_options(colour="blue")

        assert not hasattr(config, "colour")
        assert "colour" in caplog.text

    def test_unknown_server_falls_back(self):
        assert ClientConfig.from_options(server="nowhere").server == "data"
        assert ClientConfig.from_options(server=Server.PRODATA).server == "prodata"

    def test_nested_config_objects_are_kept(self):
        heartbeat = HeartbeatConfig(check_interval_ms=50, timeout_ms=200)

        config = ClientConfig.from_options(heartbeat=heartbeat)

        assert config.heartbeat is heartbeat

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TV_SESSION", "abc")
        monkeypatch.setenv("TV_SIGNATURE", "sig")
        monkeypatch.setenv("TV_SERVER", "prodata")
        monkeypatch.setenv("TV_RECONNECT_MAX_RETRIES", "4")
        monkeypatch.setenv("TV_AUTO_REHYDRATE", "false")

        config = ClientConfig.from_env()

        assert config.token == "abc"
        assert config.signature == "sig"
        assert config.server == "prodata"
        assert config.reconnect.max_retries == 4
        assert config.auto_rehydrate is False

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TV_SESSION", "abc")

        config = ClientConfig.from_env(token="other")

        assert config.token == "other"
