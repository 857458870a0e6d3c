from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from coda.models import Event, MediaItem
from coda.services.queue_service import QueueService, QueueUpdate, QueueUpdateKind, move_items


def _item(media_id: str) -> MediaItem:
    return MediaItem.model_validate(
        {
            "id": media_id,
            "type": "song",
            "attributes": {
                "albumName": "Album",
                "artistName": "Artist",
                "name": f"Song {media_id}",
                "durationInMillis": 180_000,
                "trackNumber": 1,
                "playParams": {"id": media_id, "kind": "song"},
            },
        }
    )


def _items(*ids: str) -> list[MediaItem]:
    return [_item(media_id) for media_id in ids]


def _ids(items: list[MediaItem]) -> list[str]:
    return [item.id for item in items]


class _FakeQueue:
    def __init__(self) -> None:
        self.position_requests: list[tuple[Callable[[int], None], Callable[[Exception], None]]] = []
        self.item_requests: list[tuple[Callable[[list[MediaItem]], None], Callable[[Exception], None]]] = []
        self.length_requests: list[tuple[Callable[[int], None], Callable[[Exception], None]]] = []
        self.appended: list[tuple[list[str], Any, Any]] = []
        self.prepended: list[tuple[list[str], Any, Any]] = []
        self.removed: list[tuple[int, Any, Any]] = []
        self.removed_sets: list[set[int]] = []

    def get_position(self, on_success, on_error) -> None:
        self.position_requests.append((on_success, on_error))

    def get_items(self, on_success, on_error) -> None:
        self.item_requests.append((on_success, on_error))

    def get_length(self, on_success, on_error) -> None:
        self.length_requests.append((on_success, on_error))

    def append(self, ids, on_success=None, on_error=None) -> None:
        self.appended.append((list(ids), on_success, on_error))

    def prepend(self, ids, on_success=None, on_error=None) -> None:
        self.prepended.append((list(ids), on_success, on_error))

    def remove(self, index, on_success=None, on_error=None) -> None:
        self.removed.append((index, on_success, on_error))

    def remove_indexes(self, indexes, on_success=None, on_error=None) -> None:
        self.removed_sets.append(set(indexes))


class _FakePlayer:
    def __init__(self) -> None:
        self.queue = _FakeQueue()
        self.changed_to: list[int] = []

    def change_to_media_at_index(self, index, on_success=None, on_error=None) -> None:
        self.changed_to.append(index)


class _FakeHost:
    def __init__(self) -> None:
        self.player = _FakePlayer()
        self.listeners: dict[Event, list[Callable[[], None]]] = {}
        self.set_queue_calls: list[dict[str, Any]] = []

    def set_queue(self, **kwargs: Any) -> None:
        self.set_queue_calls.append(kwargs)

    def add_event_listener(self, event: Event, callback: Callable[[], None]) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def fire(self, event: Event) -> None:
        for callback in self.listeners.get(event, []):
            callback()


def _answer_reload(host: _FakeHost, position: int, items: list[MediaItem]) -> None:
    queue = host.player.queue
    on_position, _ = queue.position_requests.pop(0)
    on_items, _ = queue.item_requests.pop(0)
    on_position(position)
    on_items(items)


def _service(position: int = 0, ids: tuple[str, ...] = ("a", "b", "c", "d")) -> tuple[QueueService, _FakeHost, list[QueueUpdate]]:
    host = _FakeHost()
    service = QueueService(host)
    updates: list[QueueUpdate] = []
    service.add_listener(updates.append)
    service.setup()
    _answer_reload(host, position, _items(*ids))
    return service, host, updates


def test_setup_loads_initial_snapshot() -> None:
    service, host, updates = _service(position=1)

    assert _ids(service.items) == ["a", "b", "c", "d"]
    assert service.position == 1
    assert service.upcoming_count == 2
    assert updates == [QueueUpdate(QueueUpdateKind.INITIAL_LOAD)]
    assert set(host.listeners) == {Event.QUEUE_ITEMS_DID_CHANGE, Event.QUEUE_POSITION_DID_CHANGE}
    assert not service.is_reloading


def test_setup_subscribes_once() -> None:
    service, host, _ = _service()
    service.setup()
    _answer_reload(host, 0, _items("a"))

    assert len(host.listeners[Event.QUEUE_ITEMS_DID_CHANGE]) == 1


def test_index_translation_round_trip() -> None:
    service, _, _ = _service(position=1, ids=("a", "b", "c", "d", "e"))

    assert service.to_absolute(0) == 2
    assert service.to_relative(4) == 2
    assert service.to_absolute_set({0, 2}) == {2, 4}
    for index in range(service.upcoming_count):
        assert service.to_relative(service.to_absolute(index)) == index


def test_empty_queue_has_no_upcoming_items() -> None:
    service, _, _ = _service(position=-1, ids=())

    assert service.upcoming_count == 0
    assert service.to_absolute(0) == 0


def test_reload_is_coalesced_while_in_flight() -> None:
    service, host, updates = _service()
    queue = host.player.queue

    host.fire(Event.QUEUE_ITEMS_DID_CHANGE)
    host.fire(Event.QUEUE_ITEMS_DID_CHANGE)
    host.fire(Event.QUEUE_POSITION_DID_CHANGE)

    assert len(queue.position_requests) == 1
    assert len(queue.item_requests) == 1
    _answer_reload(host, 0, _items("a", "b", "c", "d", "e"))
    assert updates[-1] == QueueUpdate(QueueUpdateKind.ITEMS_CHANGED)
    assert not service.is_reloading


def test_reload_failure_reports_error_and_releases_guard() -> None:
    service, host, updates = _service()
    queue = host.player.queue

    service.reload(QueueUpdateKind.ITEMS_CHANGED)
    _, on_error = queue.position_requests.pop(0)
    on_error(RuntimeError("gone"))
    # The second half of the join arriving late is ignored.
    on_items, _ = queue.item_requests.pop(0)
    on_items(_items("z"))

    assert updates[-1].kind is QueueUpdateKind.ERROR
    assert _ids(service.items) == ["a", "b", "c", "d"]
    assert not service.is_reloading
    service.reload(QueueUpdateKind.ITEMS_CHANGED)
    assert len(queue.position_requests) == 1


def test_position_change_reports_delta() -> None:
    service, host, updates = _service(position=0)

    host.fire(Event.QUEUE_POSITION_DID_CHANGE)
    _answer_reload(host, 2, _items("a", "b", "c", "d"))

    assert updates[-1] == QueueUpdate(QueueUpdateKind.POSITION_CHANGED, 2)
    assert service.position == 2


def test_insert_appends_then_writes_back_corrected_tail() -> None:
    service, host, updates = _service(position=0)
    queue = host.player.queue

    service.insert(["x", "y"], at=1)
    assert queue.appended[0][0] == ["x", "y"]
    assert service.pending_reorder is not None
    assert service.pending_reorder.source_indexes == frozenset({4, 5})
    assert service.pending_reorder.destination == 2

    host.fire(Event.QUEUE_ITEMS_DID_CHANGE)
    _answer_reload(host, 0, _items("a", "b", "c", "d", "x", "y"))

    assert _ids(service.items) == ["a", "b", "x", "y", "c", "d"]
    assert service.pending_reorder is None
    assert updates[-1].kind is QueueUpdateKind.USER_MODIFIED
    assert service.is_writing

    on_length, _ = queue.length_requests.pop(0)
    on_length(6)
    on_position, _ = queue.position_requests.pop(0)
    on_position(0)

    assert [index for index, _, _ in queue.removed] == [5, 4, 3, 2]
    ids, on_appended, _ = queue.appended[-1]
    assert ids == ["x", "y", "c", "d"]

    # Item-change events caused by the write-back itself are dropped.
    host.fire(Event.QUEUE_ITEMS_DID_CHANGE)
    assert queue.position_requests == []

    on_appended()
    assert not service.is_writing

    host.fire(Event.QUEUE_ITEMS_DID_CHANGE)
    _answer_reload(host, 0, _items("a", "b", "x", "y", "c", "d"))
    assert updates[-1].kind is QueueUpdateKind.USER_MODIFIED
    assert _ids(service.items) == ["a", "b", "x", "y", "c", "d"]


def test_insert_with_unexpected_growth_is_an_error() -> None:
    service, host, updates = _service(position=0)
    queue = host.player.queue

    service.insert(["x", "y"], at=0)
    host.fire(Event.QUEUE_ITEMS_DID_CHANGE)
    _answer_reload(host, 0, _items("a", "b", "c", "d", "x"))

    assert updates[-1].kind is QueueUpdateKind.ERROR
    assert service.pending_reorder is None
    assert queue.length_requests == []
    assert _ids(service.items) == ["a", "b", "c", "d", "x"]
    assert not service.is_reloading


def test_insert_append_failure_drops_pending_reorder() -> None:
    service, host, _ = _service()
    errors: list[Exception] = []

    service.insert(["x"], at=0, on_error=errors.append)
    _, _, on_error = host.player.queue.appended[0]
    on_error(RuntimeError("catalog lookup failed"))

    assert service.pending_reorder is None
    assert len(errors) == 1


def test_append_to_empty_queue_replaces_it() -> None:
    service, host, updates = _service(position=-1, ids=())
    queue = host.player.queue

    service.append(["x", "y"])

    assert queue.appended == []
    assert host.set_queue_calls[0]["songs"] == ["x", "y"]
    assert service.is_writing
    host.fire(Event.QUEUE_ITEMS_DID_CHANGE)
    assert queue.position_requests == []

    host.set_queue_calls[0]["on_success"]()
    assert not service.is_writing
    _answer_reload(host, 0, _items("x", "y"))
    assert updates[-1].kind is QueueUpdateKind.USER_MODIFIED
    assert _ids(service.items) == ["x", "y"]


def test_replace_failure_releases_guard_without_retry() -> None:
    service, host, _ = _service(position=-1, ids=())
    errors: list[Exception] = []

    service.insert(["x"], at=0, on_error=errors.append)
    host.set_queue_calls[0]["on_error"](RuntimeError("not authorized"))

    assert len(errors) == 1
    assert not service.is_writing
    assert len(host.set_queue_calls) == 1
    service.reload(QueueUpdateKind.ITEMS_CHANGED)
    assert len(host.player.queue.position_requests) == 1


def test_prepend_and_append_pass_through_when_not_empty() -> None:
    service, host, _ = _service()

    service.prepend(["p"])
    service.append(["q"])
    service.append([])

    assert [ids for ids, _, _ in host.player.queue.prepended] == [["p"]]
    assert [ids for ids, _, _ in host.player.queue.appended] == [["q"]]
    assert host.set_queue_calls == []


def test_delete_and_change_translate_relative_indexes() -> None:
    service, host, _ = _service(position=1, ids=("a", "b", "c", "d", "e"))

    service.delete(0)
    service.delete_many([0, 2])
    service.change_to_item(1)

    assert host.player.queue.removed[0][0] == 2
    assert host.player.queue.removed_sets == [{2, 4}]
    assert host.player.changed_to == [3]


def test_move_reorders_locally_and_writes_back() -> None:
    service, host, _ = _service(position=0, ids=("a", "b", "c", "d", "e"))
    queue = host.player.queue

    service.move(0, 2)

    assert _ids(service.items) == ["a", "c", "d", "b", "e"]
    on_length, _ = queue.length_requests.pop(0)
    on_length(5)
    on_position, _ = queue.position_requests.pop(0)
    on_position(0)
    assert [index for index, _, _ in queue.removed] == [4, 3, 2, 1]
    assert queue.appended[-1][0] == ["c", "d", "b", "e"]


def test_move_outside_upcoming_items_raises() -> None:
    service, _, _ = _service(position=1)

    with pytest.raises(IndexError):
        service.move(0, 2)
    with pytest.raises(IndexError):
        service.move_many([5], 0)


def test_move_many_lands_before_destination() -> None:
    service, host, _ = _service(position=-1, ids=("a", "b", "c", "d", "e"))

    service.move_many([0, 1], 4)

    assert _ids(service.items) == ["c", "d", "a", "b", "e"]
    on_length, _ = host.player.queue.length_requests.pop(0)
    on_length(5)
    on_position, _ = host.player.queue.position_requests.pop(0)
    on_position(-1)
    assert [index for index, _, _ in host.player.queue.removed] == [4, 3, 2, 1, 0]
    assert host.player.queue.appended[-1][0] == ["c", "d", "a", "b", "e"]


def test_write_back_never_touches_the_playing_item() -> None:
    service, host, _ = _service(position=0, ids=("a", "b", "c", "d"))

    service.move(0, 2)
    on_length, _ = host.player.queue.length_requests.pop(0)
    on_length(4)
    # Playback moved on while the write was in flight.
    on_position, _ = host.player.queue.position_requests.pop(0)
    on_position(2)

    assert [index for index, _, _ in host.player.queue.removed] == [3]
    assert host.player.queue.appended[-1][0] == ["b"]


def test_partial_remove_failure_reports_error_after_append() -> None:
    service, host, updates = _service(position=0, ids=("a", "b", "c", "d"))
    queue = host.player.queue

    service.move(0, 1)
    queue.length_requests.pop(0)[0](4)
    queue.position_requests.pop(0)[0](0)
    _, _, on_remove_error = queue.removed[0]
    on_remove_error(RuntimeError("index gone"))
    _, on_appended, _ = queue.appended[-1]
    on_appended()

    assert updates[-1].kind is QueueUpdateKind.ERROR
    assert not service.is_writing
    # No completed write to echo; the next change is treated as external.
    host.fire(Event.QUEUE_ITEMS_DID_CHANGE)
    _answer_reload(host, 0, _items("a", "c", "b", "d"))
    assert updates[-1].kind is QueueUpdateKind.ITEMS_CHANGED


def test_move_items_matches_drop_semantics() -> None:
    assert move_items("abcde", {0}, 3) == ("b", "c", "a", "d", "e")
    assert move_items("abcde", {3, 4}, 1) == ("a", "d", "e", "b", "c")
    assert move_items("abcde", {1}, 5) == ("a", "c", "d", "e", "b")
