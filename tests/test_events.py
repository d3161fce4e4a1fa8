"""
Unit Tests: Listener tables
"""

import logging

import pytest

from tvclient import EventEmitter, SessionError


logger = logging.getLogger("tvclient.test")


class TestEventEmitter:
    """Test per-event and catch-all delivery."""

    def test_catch_all_receives_name_and_args(self):
        emitter = EventEmitter(["data"], logger)
        seen = []
        emitter.on("event", lambda name, *args: seen.append((name, args)))

        emitter.emit("data", 1, 2)

        assert seen == [("data", (1, 2))]

    def test_error_without_listener_reaches_catch_all_and_log(self, caplog):
        emitter = EventEmitter(["error"], logger)
        seen = []
        emitter.on("event", lambda name, *args: seen.append((name, args)))
        error = SessionError("bad symbol", kind="symbol_error")

        with caplog.at_level(logging.ERROR, logger="tvclient.test"):
            emitter.emit_error(error)

        assert seen == [("error", (error,))]
        assert "bad symbol" in caplog.text

    def test_error_with_listener_is_not_logged(self, caplog):
        emitter = EventEmitter(["error"], logger)
        errors = []
        emitter.on("error", errors.append)

        with caplog.at_level(logging.ERROR, logger="tvclient.test"):
            emitter.emit_error(RuntimeError("boom"))

        assert len(errors) == 1
        assert caplog.text == ""

    def test_listener_failure_is_contained(self):
        emitter = EventEmitter(["data"], logger)
        seen = []

        def broken(value):
            raise RuntimeError("listener bug")

        emitter.on("data", broken)
        emitter.on("data", seen.append)

        emitter.emit("data", 5)

        assert seen == [5]

    def test_silence_drops_everything(self):
        emitter = EventEmitter(["data"], logger)
        seen = []
        emitter.on("data", seen.append)
        emitter.on("event", lambda *args: seen.append(args))

        emitter.silence()
        emitter.emit("data", 1)
        emitter.emit_error(RuntimeError("late"))

        assert seen == []

    def test_unknown_event(self):
        emitter = EventEmitter(["data"], logger)
        with pytest.raises(ValueError):
            emitter.on("nope", lambda: None)
