from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from queue import Queue
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import webview

logger = logging.getLogger(__name__)

SUCCESS_PREFIX = "success_"
FAILURE_PREFIX = "error_"


class MessageKind(StrEnum):
    LOADED = "loaded"
    LOAD_FAILED = "loadFailed"
    LOG = "log"
    ERROR = "error"
    EVENT = "event"
    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


CONTROL_CHANNELS = (
    MessageKind.LOADED,
    MessageKind.LOAD_FAILED,
    MessageKind.LOG,
    MessageKind.ERROR,
    MessageKind.EVENT,
)


@dataclass(frozen=True)
class ChannelMessage:
    kind: MessageKind
    name: str
    body: Any = None
    correlation_id: str | None = None

    @classmethod
    def parse(cls, name: str, body: Any = None) -> ChannelMessage:
        for kind in CONTROL_CHANNELS:
            if name == kind.value:
                return cls(kind=kind, name=name, body=body)
        if name.startswith(SUCCESS_PREFIX) and len(name) > len(SUCCESS_PREFIX):
            return cls(MessageKind.SUCCESS, name, body, name[len(SUCCESS_PREFIX) :])
        if name.startswith(FAILURE_PREFIX) and len(name) > len(FAILURE_PREFIX):
            return cls(MessageKind.FAILURE, name, body, name[len(FAILURE_PREFIX) :])
        return cls(kind=MessageKind.UNKNOWN, name=name, body=body)


class EvaluationErrorCode(StrEnum):
    EXCEPTION = "exception"
    # The fragment evaluated to a value the channel cannot hand back (e.g. a bare promise).
    UNSUPPORTED_RESULT = "unsupported_result"


@dataclass(frozen=True)
class EvaluationFailure:
    message: str
    code: EvaluationErrorCode = EvaluationErrorCode.EXCEPTION


EvaluationCallback = Callable[[Any, EvaluationFailure | None], None]
MessageHandler = Callable[[ChannelMessage], None]


class ScriptChannel(Protocol):
    def execute(self, fragment: str, callback: EvaluationCallback | None = None) -> None: ...

    def register_channel(self, name: str) -> None: ...

    def unregister_channel(self, name: str) -> None: ...

    def set_message_handler(self, handler: MessageHandler) -> None: ...

    def load_html(self, html: str, base_url: str) -> None: ...


class ChannelApi:
    """Object handed to pywebview as ``js_api``; the page calls ``post_message``."""

    def __init__(self, channel: WebviewChannel) -> None:
        self._channel = channel

    def post_message(self, name: str, body: Any = None) -> None:
        self._channel.deliver(name, body)


class WebviewChannel:
    def __init__(self) -> None:
        self._window: webview.Window | None = None
        self._handler: MessageHandler | None = None
        self._registered: set[str] = {kind.value for kind in CONTROL_CHANNELS}
        self._registry_lock = threading.Lock()
        # Inbound messages are dispatched one at a time: the bridge sees a single delivery context.
        self._dispatch_lock = threading.RLock()
        self._requests: Queue[tuple[str, EvaluationCallback | None]] = Queue()
        self._worker: threading.Thread | None = None
        self.api = ChannelApi(self)

    def attach_window(self, window: webview.Window) -> None:
        self._window = window

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._handler = handler

    def register_channel(self, name: str) -> None:
        with self._registry_lock:
            self._registered.add(name)

    def unregister_channel(self, name: str) -> None:
        with self._registry_lock:
            self._registered.discard(name)

    def is_registered(self, name: str) -> bool:
        with self._registry_lock:
            return name in self._registered

    def deliver(self, name: str, body: Any = None) -> None:
        if not self.is_registered(name):
            logger.warning("dropped message on unregistered channel %s", name)
            return
        handler = self._handler
        if handler is None:
            logger.warning("no message handler for channel %s", name)
            return
        message = ChannelMessage.parse(name, body)
        with self._dispatch_lock:
            try:
                handler(message)
            except Exception:
                logger.exception("message handler failed for %s", name)

    def execute(self, fragment: str, callback: EvaluationCallback | None = None) -> None:
        if self._window is None:
            raise RuntimeError("WebviewChannel has no window attached")
        with self._registry_lock:
            if self._worker is None:
                self._worker = threading.Thread(target=self._evaluate_loop, name="coda-evaluate", daemon=True)
                self._worker.start()
        self._requests.put((fragment, callback))

    def _evaluate_loop(self) -> None:
        # Imported here so the channel module stays importable without a GUI backend.
        from webview.errors import JavascriptException

        # One worker keeps fragments evaluated in the order they were issued.
        while True:
            fragment, callback = self._requests.get()
            window = self._window
            if window is None:
                continue
            try:
                value = window.evaluate_js(fragment)
            except JavascriptException as exc:
                self._complete(callback, None, EvaluationFailure(str(exc)))
                continue
            except Exception as exc:
                code = EvaluationErrorCode.EXCEPTION
                if "unsupported type" in str(exc).lower():
                    code = EvaluationErrorCode.UNSUPPORTED_RESULT
                self._complete(callback, None, EvaluationFailure(str(exc), code))
                continue
            self._complete(callback, value, None)

    def _complete(self, callback: EvaluationCallback | None, value: Any, failure: EvaluationFailure | None) -> None:
        if callback is None:
            if failure is not None and failure.code is EvaluationErrorCode.EXCEPTION:
                logger.warning("fire-and-forget evaluation failed: %s", failure.message)
            return
        with self._dispatch_lock:
            try:
                callback(value, failure)
            except Exception:
                logger.exception("evaluation callback failed")

    def load_html(self, html: str, base_url: str) -> None:
        window = self._window
        if window is None:
            raise RuntimeError("WebviewChannel has no window attached")
        logger.info("loading runtime page for %s", base_url)
        window.load_html(html, base_uri=base_url)
