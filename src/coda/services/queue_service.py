"""Local mirror of the runtime's playback queue.

The runtime only supports prepend, append and remove, so an insert in the middle
is an append followed by a write-back: once the append is confirmed by the next
item-change event, the local list is reordered and the tail after the affected
index is removed and re-appended in the corrected order.

Invariant: ``items`` and ``position`` are replaced together, as one snapshot.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, TypeVar

from coda.errors import default_error_handler
from coda.models import Event, MediaItem

T = TypeVar("T")

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], None]


class QueueUpdateKind(StrEnum):
    INITIAL_LOAD = "initial_load"
    ITEMS_CHANGED = "items_changed"
    POSITION_CHANGED = "position_changed"
    USER_MODIFIED = "user_modified"
    ERROR = "error"


@dataclass(frozen=True)
class QueueUpdate:
    kind: QueueUpdateKind
    position_change: int = 0


@dataclass(frozen=True)
class QueueSnapshot:
    items: tuple[MediaItem, ...] = ()
    position: int = -1

    @property
    def upcoming_count(self) -> int:
        return max(0, len(self.items) - self.position - 1)


@dataclass(frozen=True)
class PendingReorder:
    source_indexes: frozenset[int]
    destination: int


@dataclass
class _FetchJoin:
    remaining: int
    results: dict[str, Any] = field(default_factory=dict)
    failed: bool = False


class QueueHost(Protocol):
    """What the reconciler needs from the client; satisfied by ``MusicClient``."""

    player: Any

    def set_queue(
        self,
        *,
        songs: list[str] | None = None,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = ...,
    ) -> None: ...

    def add_event_listener(self, event: Event, callback: Callable[[], None]) -> None: ...


def move_items(items: Sequence[T], sources: Iterable[int], destination: int) -> tuple[T, ...]:
    """Move the items at ``sources`` so they land before the item now at ``destination``."""
    source_set = set(sources)
    moving = [items[index] for index in sorted(source_set)]
    remaining = [item for index, item in enumerate(items) if index not in source_set]
    insert_at = destination - sum(1 for index in source_set if index < destination)
    insert_at = max(0, min(insert_at, len(remaining)))
    return tuple(remaining[:insert_at] + moving + remaining[insert_at:])


class QueueService:
    def __init__(self, host: QueueHost) -> None:
        self._host = host
        self._lock = threading.RLock()
        self._snapshot = QueueSnapshot()
        self._pending_reorder: PendingReorder | None = None
        self._reload_in_flight = False
        # Set while one of our own writes (queue replace or write-back) is in flight.
        self._writing = False
        # Set once a write-back finished; the next item-change event is its echo.
        self._did_write = False
        self._subscribed = False
        self._listeners: list[Callable[[QueueUpdate], None]] = []

    # State

    @property
    def snapshot(self) -> QueueSnapshot:
        return self._snapshot

    @property
    def items(self) -> list[MediaItem]:
        return list(self._snapshot.items)

    @property
    def position(self) -> int:
        return self._snapshot.position

    @property
    def upcoming_count(self) -> int:
        return self._snapshot.upcoming_count

    @property
    def pending_reorder(self) -> PendingReorder | None:
        return self._pending_reorder

    @property
    def is_reloading(self) -> bool:
        return self._reload_in_flight

    @property
    def is_writing(self) -> bool:
        return self._writing

    def to_absolute(self, index: int) -> int:
        return index + self._snapshot.position + 1

    def to_absolute_set(self, indexes: Iterable[int]) -> set[int]:
        offset = self._snapshot.position + 1
        return {index + offset for index in indexes}

    def to_relative(self, index: int) -> int:
        return index - self._snapshot.position - 1

    # Listeners

    def add_listener(self, listener: Callable[[QueueUpdate], None]) -> None:
        self._listeners.append(listener)

    def _emit(self, update: QueueUpdate) -> None:
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception:
                logger.exception("queue listener failed for %s", update.kind.value)

    def setup(self) -> None:
        if not self._subscribed:
            self._subscribed = True
            self._host.add_event_listener(Event.QUEUE_ITEMS_DID_CHANGE, self._on_items_changed)
            self._host.add_event_listener(
                Event.QUEUE_POSITION_DID_CHANGE, lambda: self.reload(QueueUpdateKind.POSITION_CHANGED)
            )
        self.reload(QueueUpdateKind.INITIAL_LOAD)

    def _on_items_changed(self) -> None:
        with self._lock:
            echo = self._did_write and not self._writing
            if echo:
                self._did_write = False
        self.reload(QueueUpdateKind.USER_MODIFIED if echo else QueueUpdateKind.ITEMS_CHANGED)

    # Reconciliation

    def reload(self, trigger: QueueUpdateKind) -> None:
        with self._lock:
            if self._reload_in_flight or self._writing:
                # Dropped, not queued: the fetch in flight already reflects this change or a later one.
                logger.debug("queue reload (%s) dropped; update in flight", trigger.value)
                return
            self._reload_in_flight = True
        join = _FetchJoin(remaining=2)

        def _arrive(key: str, value: Any) -> None:
            with self._lock:
                if join.failed:
                    return
                join.results[key] = value
                join.remaining -= 1
                if join.remaining:
                    return
            self._apply(trigger, join.results["position"], join.results["items"])

        def _fail(error: Exception) -> None:
            with self._lock:
                if join.failed:
                    return
                join.failed = True
                self._reload_in_flight = False
            logger.warning("queue reload (%s) failed: %s", trigger.value, error)
            self._emit(QueueUpdate(QueueUpdateKind.ERROR))

        queue = self._host.player.queue
        queue.get_position(lambda position: _arrive("position", position), _fail)
        queue.get_items(lambda items: _arrive("items", items), _fail)

    def _apply(self, trigger: QueueUpdateKind, position: int, items: list[MediaItem]) -> None:
        try:
            with self._lock:
                previous = self._snapshot
                size_delta = len(items) - len(previous.items)
                fetched = tuple(items)
                reorder = self._pending_reorder
                self._pending_reorder = None
                mismatch = reorder is not None and (
                    size_delta != len(reorder.source_indexes)
                    or any(index >= len(fetched) for index in reorder.source_indexes)
                )
                if reorder is not None and not mismatch:
                    fetched = move_items(fetched, reorder.source_indexes, reorder.destination)
                self._snapshot = QueueSnapshot(items=fetched, position=position)
            if mismatch:
                # Append can fail if too many items are added at once.
                logger.error("error reordering queue: %s, size delta %d", reorder, size_delta)
                self._emit(QueueUpdate(QueueUpdateKind.ERROR))
                return
            kind = trigger
            if reorder is not None:
                self._write_back(reorder.destination)
                # The item change was our own insert, not an external edit.
                kind = QueueUpdateKind.USER_MODIFIED
            change = position - previous.position if kind is QueueUpdateKind.POSITION_CHANGED else 0
            self._emit(QueueUpdate(kind, change))
        finally:
            with self._lock:
                self._reload_in_flight = False

    def _write_back(self, start: int) -> None:
        """Push the local order of every item from ``start`` on back to the runtime."""
        with self._lock:
            self._writing = True
        queue = self._host.player.queue
        remove_failures: list[Exception] = []

        def _failed(error: Exception) -> None:
            with self._lock:
                self._writing = False
                self._did_write = False
            logger.error("queue write-back failed: %s", error)
            self._emit(QueueUpdate(QueueUpdateKind.ERROR))

        def _appended() -> None:
            with self._lock:
                self._writing = False
                self._did_write = not remove_failures
            if remove_failures:
                # Removes are independent calls; the mirror resyncs on the next reload.
                logger.error("queue write-back removed only part of the tail: %s", remove_failures)
                self._emit(QueueUpdate(QueueUpdateKind.ERROR))

        def _with_length(length: int) -> None:
            def _with_position(position: int) -> None:
                first = max(start, position + 1)
                with self._lock:
                    ids = [item.id for item in self._snapshot.items[first:length]]
                for index in reversed(range(first, length)):
                    queue.remove(index, on_error=remove_failures.append)
                if not ids:
                    _appended()
                    return
                queue.append(ids, on_success=_appended, on_error=_failed)

            queue.get_position(_with_position, _failed)

        queue.get_length(_with_length, _failed)

    # Edits

    def insert(self, ids: list[str], at: int, on_error: ErrorHandler = default_error_handler) -> None:
        """Insert ``ids`` before upcoming index ``at``."""
        if not ids:
            return
        if not self._snapshot.items:
            self._replace_queue(ids, on_error)
            return
        with self._lock:
            start = len(self._snapshot.items)
            self._pending_reorder = PendingReorder(
                source_indexes=frozenset(range(start, start + len(ids))),
                destination=self.to_absolute(at),
            )

        def _append_failed(error: Exception) -> None:
            with self._lock:
                self._pending_reorder = None
            on_error(error)

        self._host.player.queue.append(ids, on_error=_append_failed)

    def prepend(self, ids: list[str], on_error: ErrorHandler = default_error_handler) -> None:
        if not ids:
            return
        if not self._snapshot.items:
            self._replace_queue(ids, on_error)
            return
        self._host.player.queue.prepend(ids, on_error=on_error)

    def append(self, ids: list[str], on_error: ErrorHandler = default_error_handler) -> None:
        if not ids:
            return
        if not self._snapshot.items:
            self._replace_queue(ids, on_error)
            return
        self._host.player.queue.append(ids, on_error=on_error)

    def _replace_queue(self, ids: list[str], on_error: ErrorHandler) -> None:
        # Appending to an empty queue fires no item-change event, so replace the queue instead.
        with self._lock:
            self._writing = True

        def _replaced() -> None:
            with self._lock:
                self._writing = False
            self.reload(QueueUpdateKind.USER_MODIFIED)

        def _failed(error: Exception) -> None:
            with self._lock:
                self._writing = False
            logger.error("could not replace queue with %d items: %s", len(ids), error)
            on_error(error)

        self._host.set_queue(songs=list(ids), on_success=_replaced, on_error=_failed)

    def delete(self, index: int) -> None:
        self._host.player.queue.remove(self.to_absolute(index))

    def delete_many(self, indexes: Iterable[int]) -> None:
        self._host.player.queue.remove_indexes(self.to_absolute_set(indexes))

    def change_to_item(self, index: int, on_success: Callable[[], None] | None = None) -> None:
        self._host.player.change_to_media_at_index(self.to_absolute(index), on_success)

    def move(self, source: int, destination: int) -> None:
        """Move one upcoming item so it ends up at upcoming index ``destination``."""
        with self._lock:
            upcoming = self._snapshot.upcoming_count
            if not (0 <= source < upcoming and 0 <= destination < upcoming):
                raise IndexError(f"move {source} -> {destination} outside of {upcoming} upcoming items")
            frm = self.to_absolute(source)
            to = self.to_absolute(destination)
            items = list(self._snapshot.items)
            items.insert(to, items.pop(frm))
            self._snapshot = QueueSnapshot(items=tuple(items), position=self._snapshot.position)
        self._write_back(min(frm, to))

    def move_many(self, sources: Iterable[int], destination: int) -> None:
        """Move upcoming items so they land before the upcoming item now at ``destination``."""
        with self._lock:
            upcoming = self._snapshot.upcoming_count
            source_list = sorted(set(sources))
            if not source_list:
                return
            if source_list[0] < 0 or source_list[-1] >= upcoming or not 0 <= destination <= upcoming:
                raise IndexError(f"move {source_list} -> {destination} outside of {upcoming} upcoming items")
            absolute_sources = self.to_absolute_set(source_list)
            to = self.to_absolute(destination)
            items = move_items(self._snapshot.items, absolute_sources, to)
            self._snapshot = QueueSnapshot(items=items, position=self._snapshot.position)
        self._write_back(min(min(absolute_sources), to))
