from __future__ import annotations

import threading
from typing import Any

from coda.channel import ChannelMessage, EvaluationErrorCode, EvaluationFailure, MessageKind, WebviewChannel


class _FakeWindow:
    def __init__(self, results: dict[str, Any] | None = None) -> None:
        self.results = results or {}
        self.evaluated: list[str] = []
        self.loaded: list[tuple[str, dict[str, Any]]] = []

    def evaluate_js(self, script: str) -> Any:
        self.evaluated.append(script)
        result = self.results.get(script)
        if isinstance(result, Exception):
            raise result
        return result

    def load_html(self, html: str, **kwargs: Any) -> None:
        self.loaded.append((html, kwargs))


def test_parse_control_channels() -> None:
    message = ChannelMessage.parse("event", {"event": "playbackTimeDidChange", "listener": 0})

    assert message.kind is MessageKind.EVENT
    assert message.correlation_id is None
    assert ChannelMessage.parse("loaded", "").kind is MessageKind.LOADED
    assert ChannelMessage.parse("loadFailed", "x").kind is MessageKind.LOAD_FAILED


def test_parse_correlated_channels() -> None:
    success = ChannelMessage.parse("success_abc123", 4)
    failure = ChannelMessage.parse("error_abc123", "{}")

    assert success.kind is MessageKind.SUCCESS
    assert success.correlation_id == "abc123"
    assert success.body == 4
    assert failure.kind is MessageKind.FAILURE
    assert failure.correlation_id == "abc123"


def test_parse_unknown_channels() -> None:
    assert ChannelMessage.parse("success_").kind is MessageKind.UNKNOWN
    assert ChannelMessage.parse("whatever").kind is MessageKind.UNKNOWN


def test_deliver_drops_unregistered_channels() -> None:
    channel = WebviewChannel()
    received: list[ChannelMessage] = []
    channel.set_message_handler(received.append)

    channel.api.post_message("success_abc", 1)
    channel.register_channel("success_abc")
    channel.api.post_message("success_abc", 2)
    channel.unregister_channel("success_abc")
    channel.api.post_message("success_abc", 3)
    channel.api.post_message("log", "hello")

    assert [message.body for message in received] == [2, "hello"]


def test_deliver_survives_handler_errors() -> None:
    channel = WebviewChannel()

    def _broken(message: ChannelMessage) -> None:
        raise RuntimeError("handler bug")

    channel.set_message_handler(_broken)
    channel.deliver("log", "hello")


def test_execute_evaluates_in_order_and_reports() -> None:
    window = _FakeWindow({"music.player.volume": 0.5, "boom()": RuntimeError("boom is not defined")})
    channel = WebviewChannel()
    channel.attach_window(window)
    results: list[tuple[Any, EvaluationFailure | None]] = []
    done = threading.Event()

    channel.execute("music.player.volume", lambda value, failure: results.append((value, failure)))
    channel.execute("boom()", lambda value, failure: results.append((value, failure)))
    channel.execute("music.play()", lambda value, failure: done.set())

    assert done.wait(timeout=5)
    assert window.evaluated == ["music.player.volume", "boom()", "music.play()"]
    assert results[0] == (0.5, None)
    assert results[1][1] is not None
    assert results[1][1].code is EvaluationErrorCode.EXCEPTION


def test_unsupported_result_is_classified() -> None:
    window = _FakeWindow({"music.play()": TypeError("Unsupported type: Promise")})
    channel = WebviewChannel()
    channel.attach_window(window)
    failures: list[EvaluationFailure | None] = []
    done = threading.Event()

    def _record(value: Any, failure: EvaluationFailure | None) -> None:
        failures.append(failure)
        done.set()

    channel.execute("music.play()", _record)

    assert done.wait(timeout=5)
    assert failures[0] is not None
    assert failures[0].code is EvaluationErrorCode.UNSUPPORTED_RESULT


def test_load_html_passes_base_uri() -> None:
    window = _FakeWindow()
    channel = WebviewChannel()
    channel.attach_window(window)

    channel.load_html("<html></html>", "https://localhost")

    assert window.loaded == [("<html></html>", {"base_uri": "https://localhost"})]
