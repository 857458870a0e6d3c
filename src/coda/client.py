from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from coda.bridge import Bridge, ErrorHandler
from coda.catalog import CatalogClient, Library
from coda.config import BridgeConfig
from coda.decoder import DecodeStrategy
from coda.errors import default_error_handler
from coda.models import Event
from coda.player import Player
from coda.services import NowPlayingService, QueueService, RemoteCommandService
from coda.services.now_playing_service import NowPlayingSink
from coda.webpage import render_page

logger = logging.getLogger(__name__)


class MusicClient:
    """Typed entry point to the music runtime.

    One instance per bridge. ``configure`` loads the runtime page; every other
    operation assumes it finished, which callers observe through a
    ``Event.MUSIC_KIT_DID_LOAD`` listener or the ``configure`` success callback.
    """

    def __init__(
        self,
        bridge: Bridge,
        config: BridgeConfig,
        catalog: CatalogClient | None = None,
        now_playing_sink: NowPlayingSink | None = None,
    ) -> None:
        self.bridge = bridge
        self.config = config
        self.catalog = catalog or CatalogClient(self)
        self.player = Player(bridge)
        self.library = Library(bridge, self.catalog)
        self.queue = QueueService(self)
        self.remote = RemoteCommandService(self.player)
        self.now_playing = NowPlayingService(self.player, now_playing_sink)
        self._on_configured: Callable[[], None] | None = None
        # Registered first so internal services are ready before public listeners run.
        bridge.add_event_listener(Event.MUSIC_KIT_DID_LOAD, self._setup)

    def configure(
        self,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self._on_configured = on_success
        html = render_page(
            self.config.developer_token,
            self.config.app_name,
            self.config.app_build,
            self.config.app_icon_url,
        )
        logger.info("configuring %s %s", self.config.app_name, self.config.app_build)
        self.bridge.load(html, self.config.app_url, on_error)

    def _setup(self) -> None:
        self.queue.setup()
        self.now_playing.setup(self.add_event_listener)
        callback = self._on_configured
        self._on_configured = None
        if callback is not None:
            callback()

    def add_event_listener(self, event: Event, callback: Callable[[], None]) -> None:
        self.bridge.add_event_listener(event, callback)

    # Authorization

    def authorize(
        self,
        on_success: Callable[[str], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self.bridge.call_for_value("music.authorize()", str, DecodeStrategy.PRIMITIVE, on_success, on_error)

    def unauthorize(
        self,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self.bridge.call("music.unauthorize()", on_success, on_error)

    def get_is_authorized(
        self, on_success: Callable[[bool], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self.bridge.evaluate_for_value("music.isAuthorized", bool, DecodeStrategy.PRIMITIVE, on_success, on_error)

    def get_developer_token(
        self, on_success: Callable[[str], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        self.bridge.evaluate_for_value(
            "music.developerToken", str, DecodeStrategy.PRIMITIVE, on_success, on_error
        )

    def get_user_token(
        self, on_success: Callable[[str | None], None], on_error: ErrorHandler = default_error_handler
    ) -> None:
        # Signed out the token is undefined; stringify keeps the answer representable.
        self.bridge.evaluate_for_value(
            "JSON.stringify(music.musicUserToken !== undefined ? music.musicUserToken : null)",
            str | None,
            DecodeStrategy.JSON_TEXT,
            on_success,
            on_error,
        )

    # Queue and library

    def set_queue(
        self,
        *,
        url: str | None = None,
        song: str | None = None,
        songs: list[str] | None = None,
        playlist: str | None = None,
        album: str | None = None,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        options = {
            key: value
            for key, value in (
                ("url", url),
                ("song", song),
                ("songs", list(songs) if songs is not None else None),
                ("playlist", playlist),
                ("album", album),
            )
            if value is not None
        }
        if len(options) != 1:
            raise ValueError("set_queue takes exactly one of url, song, songs, playlist or album")
        self.bridge.call(f"music.setQueue({json.dumps(options)})", on_success, on_error)

    def add_to_library(
        self,
        *,
        songs: list[str] | None = None,
        albums: list[str] | None = None,
        playlists: list[str] | None = None,
        on_success: Callable[[], None] | None = None,
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        params: dict[str, Any] = {}
        if songs:
            params["songs"] = list(songs)
        if albums:
            params["albums"] = list(albums)
        if playlists:
            params["playlists"] = list(playlists)
        if not params:
            raise ValueError("add_to_library needs at least one id")
        self.bridge.call(f"MusicKit.getInstance().api.addToLibrary({json.dumps(params)})", on_success, on_error)
