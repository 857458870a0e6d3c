"""Request/response/event correlation over a ScriptChannel.

Calls that expect a promise resolution get a fresh correlation id; the script is
suffixed so the runtime posts the outcome to ``success_<id>`` or ``error_<id>``.
Event listeners are kept here and re-attached to the runtime after every load,
since the runtime forgets its own registrations when the page reloads.

Invariant: each PendingCall invokes exactly one continuation, at most once.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from coda.channel import (
    FAILURE_PREFIX,
    SUCCESS_PREFIX,
    ChannelMessage,
    EvaluationErrorCode,
    EvaluationFailure,
    MessageKind,
    ScriptChannel,
)
from coda.decoder import DecodeStrategy, decode_response
from coda.errors import (
    DecodingError,
    JavaScriptError,
    LoadingError,
    LoadTimeoutError,
    NavigationError,
    PromiseRejectedError,
    default_error_handler,
)
from coda.models import Event

T = TypeVar("T")

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], None]
Scheduler = Callable[[float, Callable[[], None]], Any]

DEFAULT_LOAD_TIMEOUT_SEC = 10.0


class LoadState(StrEnum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"


@dataclass
class PendingCall:
    call_id: str
    on_success: Callable[[Any], None]
    on_error: Callable[[Any], None]

    @property
    def success_channel(self) -> str:
        return f"{SUCCESS_PREFIX}{self.call_id}"

    @property
    def error_channel(self) -> str:
        return f"{FAILURE_PREFIX}{self.call_id}"


@dataclass(frozen=True)
class EventRegistration:
    token: int
    event: Event
    callback: Callable[[], None]


def _timer_scheduler(delay_sec: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay_sec, fn)
    timer.daemon = True
    timer.start()
    return timer


def _continuation_suffix(pending: PendingCall, returns_value: bool) -> str:
    success = json.dumps(pending.success_channel)
    failure = json.dumps(pending.error_channel)
    if returns_value:
        resolved = f".then(function(response) {{ __coda.post({success}, response); }})"
    else:
        resolved = f".then(function() {{ __coda.post({success}, ''); }})"
    rejected = (
        ".catch(function(error) {\n"
        "    var text;\n"
        "    try { text = JSON.stringify(error); } catch (err) { text = String(error); }\n"
        "    console.log(error);\n"
        f"    __coda.post({failure}, text);\n"
        "});"
    )
    return f"{resolved}\n{rejected}"


class Bridge:
    def __init__(
        self,
        channel: ScriptChannel,
        *,
        load_timeout_sec: float = DEFAULT_LOAD_TIMEOUT_SEC,
        enhanced_error_logging: bool = False,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._channel = channel
        self._load_timeout_sec = load_timeout_sec
        self.enhanced_error_logging = enhanced_error_logging
        self._schedule = scheduler or _timer_scheduler
        self._lock = threading.Lock()
        self._pending: dict[str, PendingCall] = {}
        self._registrations: list[EventRegistration] = []
        self._next_token = 0
        self._load_state = LoadState.NOT_LOADED
        self._load_generation = 0
        self._load_error_handler: ErrorHandler | None = None
        channel.set_message_handler(self.handle_message)

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def is_loaded(self) -> bool:
        return self._load_state is LoadState.LOADED

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def has_pending(self, call_id: str) -> bool:
        with self._lock:
            return call_id in self._pending

    # Loading

    def load(self, html: str, base_url: str, on_error: ErrorHandler = default_error_handler) -> None:
        with self._lock:
            self._load_generation += 1
            generation = self._load_generation
            self._load_state = LoadState.LOADING
            self._load_error_handler = on_error
        self._schedule(self._load_timeout_sec, lambda: self._on_watchdog(generation))
        try:
            self._channel.load_html(html, base_url)
        except Exception as exc:
            logger.exception("failed to hand runtime page to the channel")
            self.handle_navigation_error(exc)

    def handle_navigation_error(self, error: Any) -> None:
        self._throw_load_error(NavigationError(error))

    def _on_watchdog(self, generation: int) -> None:
        with self._lock:
            if generation != self._load_generation or self._load_state is LoadState.LOADED:
                return
            armed = self._load_error_handler is not None
        if armed:
            self._throw_load_error(LoadTimeoutError(self._load_timeout_sec))

    def _throw_load_error(self, error: Exception) -> None:
        with self._lock:
            handler = self._load_error_handler
            self._load_error_handler = None
            if self._load_state is LoadState.LOADING:
                self._load_state = LoadState.NOT_LOADED
        if handler is None:
            default_error_handler(error)
            return
        handler(error)

    def _handle_loaded(self) -> None:
        with self._lock:
            # A page finishing after a timeout still brings the runtime up; the error handler is spent.
            if self._load_state is LoadState.LOADED or self._load_generation == 0:
                ignored = True
            else:
                ignored = False
                self._load_state = LoadState.LOADED
                self._load_error_handler = None
            registrations = list(self._registrations)
        if ignored:
            logger.warning("ignoring load signal outside of a load attempt (%s)", self._load_state.value)
            return
        logger.info("runtime loaded; attaching %d event listeners", len(registrations))
        for registration in registrations:
            if registration.event is Event.MUSIC_KIT_DID_LOAD:
                self._invoke_listener(registration)
            else:
                self._attach(registration)

    # Event listeners

    def add_event_listener(self, event: Event, callback: Callable[[], None]) -> None:
        with self._lock:
            registration = EventRegistration(token=self._next_token, event=event, callback=callback)
            self._next_token += 1
            self._registrations.append(registration)
            loaded = self._load_state is LoadState.LOADED
        if not loaded:
            return
        if event is Event.MUSIC_KIT_DID_LOAD:
            self._invoke_listener(registration)
        else:
            self._attach(registration)

    def _attach(self, registration: EventRegistration) -> None:
        event_name = json.dumps(registration.event.value)
        self.evaluate(
            f"music.addEventListener({event_name}, function() {{\n"
            f"    __coda.post('event', {{ event: {event_name}, listener: {registration.token} }});\n"
            "})"
        )

    def _dispatch_event(self, body: Any) -> None:
        token: int | None = None
        name = body
        if isinstance(body, dict):
            name = body.get("event")
            raw_token = body.get("listener")
            if isinstance(raw_token, int) and not isinstance(raw_token, bool):
                token = raw_token
        try:
            event = Event(name)
        except ValueError:
            logger.warning("no callback for event listener %r", body)
            return
        with self._lock:
            targets = [
                registration
                for registration in self._registrations
                if registration.event is event and (token is None or registration.token == token)
            ]
        if not targets:
            logger.warning("no callback for event listener %r", body)
            return
        for registration in targets:
            self._invoke_listener(registration)

    def _invoke_listener(self, registration: EventRegistration) -> None:
        try:
            registration.callback()
        except Exception:
            logger.exception("event listener for %s failed", registration.event.value)

    # Evaluation

    def evaluate(
        self,
        fragment: str,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        def _done(_value: Any, failure: EvaluationFailure | None) -> None:
            if failure is not None:
                self._report_failure(fragment, failure, on_error)
                return
            if on_success is not None:
                on_success()

        self._channel.execute(fragment, _done)

    def evaluate_for_value(
        self,
        fragment: str,
        target: type[T] | Any,
        strategy: DecodeStrategy,
        on_success: Callable[[T], None] | None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        if on_success is None:
            self.evaluate(fragment, on_error=on_error)
            return

        def _done(value: Any, failure: EvaluationFailure | None) -> None:
            if failure is not None:
                self._report_failure(fragment, failure, on_error)
                return
            self._deliver_decoded(value, fragment, target, strategy, on_success, on_error)

        self._channel.execute(fragment, _done)

    def call(
        self,
        fragment: str,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        if on_success is None:
            self.evaluate(fragment, on_error=on_error)
            return
        self._call_with_promise(fragment, False, lambda _raw: on_success(), on_error)

    def call_for_value(
        self,
        fragment: str,
        target: type[T] | Any,
        strategy: DecodeStrategy,
        on_success: Callable[[T], None] | None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        if on_success is None:
            self.evaluate(fragment, on_error=on_error)
            return
        self._call_with_promise(
            fragment,
            True,
            lambda raw: self._deliver_decoded(raw, fragment, target, strategy, on_success, on_error),
            on_error,
        )

    def _call_with_promise(
        self,
        fragment: str,
        returns_value: bool,
        on_resolved: Callable[[Any], None],
        on_error: ErrorHandler,
    ) -> None:
        def _on_rejected(raw: Any) -> None:
            on_error(PromiseRejectedError(self._rejection_context(raw)))

        with self._lock:
            call_id = uuid.uuid4().hex
            while call_id in self._pending:
                call_id = uuid.uuid4().hex
            pending = PendingCall(call_id=call_id, on_success=on_resolved, on_error=_on_rejected)
            self._pending[call_id] = pending
        # Channels must exist before the runtime can post to them.
        self._channel.register_channel(pending.success_channel)
        self._channel.register_channel(pending.error_channel)
        script = fragment + _continuation_suffix(pending, returns_value)

        def _evaluated(_value: Any, failure: EvaluationFailure | None) -> None:
            if failure is None or failure.code is EvaluationErrorCode.UNSUPPORTED_RESULT:
                return
            if self._take_pending(call_id) is None:
                return
            self._report_failure(script, failure, on_error)

        self._channel.execute(script, _evaluated)

    def _take_pending(self, call_id: str) -> PendingCall | None:
        with self._lock:
            pending = self._pending.pop(call_id, None)
        if pending is not None:
            self._channel.unregister_channel(pending.success_channel)
            self._channel.unregister_channel(pending.error_channel)
        return pending

    def _complete_pending(self, message: ChannelMessage) -> None:
        pending = self._take_pending(message.correlation_id or "")
        if pending is None:
            logger.warning("message %s for unknown or completed call", message.name)
            return
        if message.kind is MessageKind.SUCCESS:
            pending.on_success(message.body)
        else:
            pending.on_error(message.body)

    def _deliver_decoded(
        self,
        raw: Any,
        fragment: str,
        target: type[T] | Any,
        strategy: DecodeStrategy,
        on_success: Callable[[T], None],
        on_error: ErrorHandler,
    ) -> None:
        try:
            decoded = decode_response(raw, target, strategy)
        except DecodingError as exc:
            if self.enhanced_error_logging:
                logger.warning(
                    "Error decoding JavaScript result:\n"
                    "Underlying error: %s\nJavaScript input: %s\nJavaScript response: %r\nDecoding strategy: %s",
                    exc.underlying,
                    fragment,
                    raw,
                    strategy,
                )
            on_error(exc)
            return
        on_success(decoded)

    def _report_failure(self, fragment: str, failure: EvaluationFailure, on_error: ErrorHandler) -> None:
        if failure.code is EvaluationErrorCode.UNSUPPORTED_RESULT:
            return
        error = JavaScriptError(fragment, failure.message)
        if self.enhanced_error_logging:
            logger.warning(error.describe())
        on_error(error)

    def _rejection_context(self, raw: Any) -> dict[str, str]:
        try:
            return decode_response(raw, dict[str, str], DecodeStrategy.JSON_TEXT)
        except DecodingError:
            return {"unknown": str(raw)}

    # Inbound messages

    def handle_message(self, message: ChannelMessage) -> None:
        match message.kind:
            case MessageKind.LOADED:
                self._handle_loaded()
            case MessageKind.LOAD_FAILED:
                text = message.body if isinstance(message.body, str) and message.body else "Error loading webpage"
                self._throw_load_error(LoadingError(text))
            case MessageKind.LOG:
                logger.info("runtime: %s", message.body)
            case MessageKind.ERROR:
                logger.error("runtime error: %s", message.body)
            case MessageKind.EVENT:
                self._dispatch_event(message.body)
            case MessageKind.SUCCESS | MessageKind.FAILURE:
                self._complete_pending(message)
            case _:
                logger.warning("unhandled script message: %s - %r", message.name, message.body)
