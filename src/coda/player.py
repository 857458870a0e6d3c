from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from typing import TypeVar

from coda.bridge import Bridge, ErrorHandler
from coda.decoder import DecodeStrategy
from coda.errors import default_error_handler
from coda.models import MediaItem, PlaybackBitrate, PlaybackState, RepeatMode, ShuffleMode, SongType

T = TypeVar("T")


def _ids_literal(ids: Iterable[str]) -> str:
    return json.dumps([str(media_id) for media_id in ids])


class PlayerQueue:
    """The runtime's playback queue. It only supports prepend, append and remove."""

    def __init__(self, bridge: Bridge) -> None:
        self._bridge = bridge

    def get_is_empty(self, on_success: Callable[[bool], None], on_error: ErrorHandler = default_error_handler) -> None:
        self._bridge.evaluate_for_value(
            "music.player.queue.isEmpty", bool, DecodeStrategy.PRIMITIVE, on_success, on_error
        )

    def get_items(
        self,
        on_success: Callable[[list[MediaItem]], None],
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.evaluate_for_value(
            "JSON.stringify(music.player.queue.items)",
            list[MediaItem],
            DecodeStrategy.JSON_TEXT,
            on_success,
            on_error,
        )

    def get_length(self, on_success: Callable[[int], None], on_error: ErrorHandler = default_error_handler) -> None:
        self._bridge.evaluate_for_value(
            "music.player.queue.length", int, DecodeStrategy.PRIMITIVE, on_success, on_error
        )

    def get_position(self, on_success: Callable[[int], None], on_error: ErrorHandler = default_error_handler) -> None:
        self._bridge.evaluate_for_value(
            "music.player.queue.position", int, DecodeStrategy.PRIMITIVE, on_success, on_error
        )

    def prepend(
        self,
        ids: list[str],
        song_type: SongType = SongType.SONG,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.call(self._resolve_then(ids, song_type, "prepend"), on_success, on_error)

    def append(
        self,
        ids: list[str],
        song_type: SongType = SongType.SONG,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.call(self._resolve_then(ids, song_type, "append"), on_success, on_error)

    def remove(
        self,
        index: int,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.evaluate(f"music.player.queue.remove({int(index)})", on_success, on_error)

    def remove_indexes(
        self,
        indexes: Iterable[int],
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        ordered = sorted({int(index) for index in indexes}, reverse=True)
        self._bridge.evaluate(
            f"{json.dumps(ordered)}.forEach(function(element) {{\n"
            "    music.player.queue.remove(element);\n"
            "})",
            on_success,
            on_error,
        )

    def _resolve_then(self, ids: list[str], song_type: SongType, method: str) -> str:
        # The returned promise settles once the songs are fetched and handed to the queue.
        return (
            f"music.api.{song_type.value}({_ids_literal(ids)}, null).then(function(songs) {{\n"
            f"    music.player.queue.{method}(songs);\n"
            "})"
        )


class Player:
    def __init__(self, bridge: Bridge) -> None:
        self._bridge = bridge
        self.queue = PlayerQueue(bridge)

    # Properties

    def get_current_playback_duration(
        self, on_success: Callable[[int], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._read("music.player.currentPlaybackDuration", int, on_success, on_error)

    def get_current_playback_progress(
        self, on_success: Callable[[float], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._read("music.player.currentPlaybackProgress", float, on_success, on_error)

    def get_current_playback_time(
        self, on_success: Callable[[int], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._read("music.player.currentPlaybackTime", int, on_success, on_error)

    def get_current_playback_time_remaining(
        self, on_success: Callable[[int], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._read("music.player.currentPlaybackTimeRemaining", int, on_success, on_error)

    def get_is_playing(self, on_success: Callable[[bool], None], on_error: ErrorHandler = default_error_handler) -> None:
        self._read("music.player.isPlaying", bool, on_success, on_error)

    def get_now_playing_item(
        self,
        on_success: Callable[[MediaItem | None], None],
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        # JSON.stringify(undefined) is undefined, so map it to null first.
        self._bridge.evaluate_for_value(
            "JSON.stringify(music.player.nowPlayingItem !== undefined ? music.player.nowPlayingItem : null)",
            MediaItem | None,
            DecodeStrategy.JSON_TEXT,
            on_success,
            on_error,
        )

    def get_now_playing_item_index(
        self, on_success: Callable[[int], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._read("music.player.nowPlayingItemIndex", int, on_success, on_error)

    def get_playback_state(
        self, on_success: Callable[[PlaybackState], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._bridge.evaluate_for_value(
            "music.player.playbackState", PlaybackState, DecodeStrategy.ENUM_FROM_PRIMITIVE, on_success, on_error
        )

    def get_repeat_mode(
        self, on_success: Callable[[RepeatMode], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._bridge.evaluate_for_value(
            "music.player.repeatMode", RepeatMode, DecodeStrategy.ENUM_FROM_PRIMITIVE, on_success, on_error
        )

    def get_shuffle_mode(
        self, on_success: Callable[[ShuffleMode], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._bridge.evaluate_for_value(
            "music.player.shuffleMode", ShuffleMode, DecodeStrategy.ENUM_FROM_PRIMITIVE, on_success, on_error
        )

    def get_bitrate(
        self, on_success: Callable[[PlaybackBitrate], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self._bridge.evaluate_for_value(
            "music.bitrate", PlaybackBitrate, DecodeStrategy.ENUM_FROM_PRIMITIVE, on_success, on_error
        )

    def get_volume(self, on_success: Callable[[float], None], on_error: ErrorHandler = default_error_handler) -> None:
        self._read("music.player.volume", float, on_success, on_error)

    def _read(
        self,
        expression: str,
        target: type[T],
        on_success: Callable[[T], None],
        on_error: ErrorHandler,
    ) -> None:
        self._bridge.evaluate_for_value(expression, target, DecodeStrategy.PRIMITIVE, on_success, on_error)

    # Methods

    def change_to_media_at_index(
        self,
        index: int,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.call(f"music.player.changeToMediaAtIndex({int(index)})", on_success, on_error)

    def mute(self) -> None:
        self._bridge.evaluate("music.player.mute()")

    def pause(self) -> None:
        self._bridge.evaluate("music.player.pause()")

    def play(self) -> None:
        self._bridge.evaluate("music.player.play()")

    def stop(self) -> None:
        self._bridge.evaluate("music.player.stop()")

    def toggle_play_pause(self) -> None:
        def _toggle(state: PlaybackState) -> None:
            if state is PlaybackState.PLAYING:
                self.pause()
            elif state in (PlaybackState.PAUSED, PlaybackState.STOPPED, PlaybackState.ENDED):
                self.play()

        self.get_playback_state(_toggle)

    def seek(
        self,
        time_sec: float,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.call(f"music.player.seekToTime({float(time_sec)!r})", on_success, on_error)

    def skip_to_next_item(
        self,
        on_success: Callable[[int], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.call_for_value(
            "music.player.skipToNextItem()", int, DecodeStrategy.PRIMITIVE, on_success, on_error
        )

    def skip_to_previous_item(
        self,
        on_success: Callable[[int], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.call_for_value(
            "music.player.skipToPreviousItem()", int, DecodeStrategy.PRIMITIVE, on_success, on_error
        )

    def set_repeat_mode(
        self,
        mode: RepeatMode,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.evaluate(f"music.player.repeatMode = {int(mode)}", on_success, on_error)

    def set_shuffle_mode(
        self,
        mode: ShuffleMode,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.evaluate(f"music.player.shuffleMode = {int(mode)}", on_success, on_error)

    def set_bitrate(
        self,
        bitrate: PlaybackBitrate,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._bridge.evaluate(f"music.bitrate = {int(bitrate)}", on_success, on_error)

    def set_volume(
        self,
        volume: float,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        clamped = min(1.0, max(0.0, float(volume)))
        self._bridge.evaluate(f"music.player.volume = {clamped!r}", on_success, on_error)
