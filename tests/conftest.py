from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from coda.channel import CONTROL_CHANNELS, ChannelMessage, EvaluationCallback, EvaluationFailure, MessageHandler


class FakeChannel:
    """In-memory ScriptChannel; evaluations stay queued until a test answers them."""

    def __init__(self) -> None:
        self.executed: list[tuple[str, EvaluationCallback | None]] = []
        self.registered: set[str] = {kind.value for kind in CONTROL_CHANNELS}
        self.registration_log: list[tuple[str, str]] = []
        self.loaded_pages: list[tuple[str, str]] = []
        self.handler: MessageHandler | None = None

    def execute(self, fragment: str, callback: EvaluationCallback | None = None) -> None:
        self.executed.append((fragment, callback))

    def register_channel(self, name: str) -> None:
        self.registration_log.append(("register", name))
        self.registered.add(name)

    def unregister_channel(self, name: str) -> None:
        self.registration_log.append(("unregister", name))
        self.registered.discard(name)

    def set_message_handler(self, handler: MessageHandler) -> None:
        self.handler = handler

    def load_html(self, html: str, base_url: str) -> None:
        self.loaded_pages.append((html, base_url))

    # Test helpers

    @property
    def fragments(self) -> list[str]:
        return [fragment for fragment, _ in self.executed]

    def post(self, name: str, body: Any = None) -> bool:
        if name not in self.registered or self.handler is None:
            return False
        self.handler(ChannelMessage.parse(name, body))
        return True

    def answer(self, index: int, value: Any = None, failure: EvaluationFailure | None = None) -> None:
        _, callback = self.executed[index]
        if callback is not None:
            callback(value, failure)

    def answer_last(self, value: Any = None, failure: EvaluationFailure | None = None) -> None:
        self.answer(len(self.executed) - 1, value, failure)


class ManualScheduler:
    def __init__(self) -> None:
        self.scheduled: list[tuple[float, Callable[[], None]]] = []

    def __call__(self, delay_sec: float, fn: Callable[[], None]) -> None:
        self.scheduled.append((delay_sec, fn))

    def fire_all(self) -> None:
        for _, fn in list(self.scheduled):
            fn()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
