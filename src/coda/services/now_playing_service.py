from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Protocol

from coda.models import ContentRating, Event, MediaItem, NowPlayingInfo, PlaybackState
from coda.player import Player

logger = logging.getLogger(__name__)

# Below this many seconds into a track, "previous" skips back instead of restarting.
PREVIOUS_TRACK_THRESHOLD_SEC = 2
ARTWORK_SIZE = 600


class NowPlayingState(StrEnum):
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


class NowPlayingSink(Protocol):
    def update_info(self, info: NowPlayingInfo) -> None: ...

    def update_state(self, state: NowPlayingState) -> None: ...


class LoggingSink:
    def update_info(self, info: NowPlayingInfo) -> None:
        logger.info("now playing: %s", info.to_dict())

    def update_state(self, state: NowPlayingState) -> None:
        logger.info("playback %s", state.value)


def build_now_playing_info(item: MediaItem, duration_sec: int, elapsed_sec: int) -> NowPlayingInfo:
    attributes = item.attributes
    artwork_url = None
    artwork = attributes.artwork
    if artwork is not None:
        artwork_url = artwork.url_for(artwork.width or ARTWORK_SIZE, artwork.height or ARTWORK_SIZE)
    genre = attributes.genre_names[0] if attributes.genre_names else None
    explicit = None
    if attributes.content_rating is not None:
        explicit = attributes.content_rating is ContentRating.EXPLICIT
    return NowPlayingInfo(
        title=attributes.name,
        album_title=attributes.album_name,
        artist=attributes.artist_name,
        # The player reports 0 until the media is buffered.
        duration_sec=duration_sec or attributes.duration_in_secs,
        elapsed_sec=elapsed_sec,
        composer=attributes.composer_name,
        genre=genre,
        release_date=attributes.release_date,
        track_number=attributes.track_number,
        disc_number=attributes.disc_number,
        is_explicit=explicit,
        artwork_url=artwork_url,
    )


class RemoteCommandService:
    """Handlers for media keys and other remote transport commands."""

    def __init__(self, player: Player) -> None:
        self._player = player

    def play(self) -> None:
        self._player.play()

    def pause(self) -> None:
        self._player.pause()

    def toggle_play_pause(self) -> None:
        def _toggle(is_playing: bool) -> None:
            if is_playing:
                self._player.pause()
            else:
                self._player.play()

        self._player.get_is_playing(_toggle)

    def previous_track(self) -> None:
        def _with_time(elapsed_sec: int) -> None:
            if elapsed_sec < PREVIOUS_TRACK_THRESHOLD_SEC:
                self._player.skip_to_previous_item()
            else:
                self._player.seek(0)

        self._player.get_current_playback_time(_with_time)

    def next_track(self) -> None:
        self._player.skip_to_next_item()

    def change_playback_position(self, position_sec: float) -> None:
        self._player.seek(position_sec)


class NowPlayingService:
    def __init__(self, player: Player, sink: NowPlayingSink | None = None) -> None:
        self._player = player
        self._sink = sink or LoggingSink()
        self._subscribed = False

    def setup(self, add_event_listener: Callable[[Event, Callable[[], None]], None]) -> None:
        if self._subscribed:
            return
        self._subscribed = True
        add_event_listener(Event.PLAYBACK_STATE_DID_CHANGE, self.refresh)

    def refresh(self) -> None:
        self._player.get_playback_state(self._on_state)

    def _on_state(self, state: PlaybackState) -> None:
        if state in (PlaybackState.PLAYING, PlaybackState.LOADING):
            self._gather_info()
        match state:
            case PlaybackState.PLAYING:
                self._sink.update_state(NowPlayingState.PLAYING)
            case PlaybackState.PAUSED:
                self._sink.update_state(NowPlayingState.PAUSED)
            case PlaybackState.STOPPED | PlaybackState.ENDED:
                self._sink.update_state(NowPlayingState.STOPPED)
            case _:
                pass

    def _gather_info(self) -> None:
        lock = threading.Lock()
        results: dict[str, Any] = {}

        def _arrive(key: str, value: Any) -> None:
            with lock:
                results[key] = value
                if len(results) < 3:
                    return
            item = results["item"]
            if item is None:
                return
            self._sink.update_info(build_now_playing_info(item, results["duration"], results["time"]))

        def _failed(error: Exception) -> None:
            logger.warning("could not read now playing info: %s", error)

        self._player.get_now_playing_item(lambda item: _arrive("item", item), _failed)
        self._player.get_current_playback_duration(lambda value: _arrive("duration", value), _failed)
        self._player.get_current_playback_time(lambda value: _arrive("time", value), _failed)
