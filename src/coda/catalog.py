from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol, TypeVar
from urllib.parse import quote, urlencode, urlparse

import requests
from pydantic import BaseModel, ConfigDict, ValidationError

from coda.bridge import Bridge, ErrorHandler
from coda.decoder import DecodeStrategy, decode_response
from coda.errors import DecodingError, EmptyResponseError, RequestError, default_error_handler
from coda.models import Album, Playlist, ResponseMeta, Song

T = TypeVar("T")

logger = logging.getLogger(__name__)

API_ROOT = "https://api.music.apple.com/v1"
_REQUEST_TIMEOUT_SEC = 10

Executor = Callable[[Callable[[], None]], None]


class TokenSource(Protocol):
    def get_developer_token(self, on_success: Callable[[str], None], on_error: ErrorHandler) -> None: ...

    def get_user_token(self, on_success: Callable[[str | None], None], on_error: ErrorHandler) -> None: ...


class _Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: Any = None
    errors: list[dict[str, Any]] | None = None
    meta: ResponseMeta | None = None


def _thread_executor(fn: Callable[[], None]) -> None:
    thread = threading.Thread(target=fn, name="coda-catalog", daemon=True)
    thread.start()


class CatalogClient:
    def __init__(self, tokens: TokenSource, executor: Executor | None = None) -> None:
        self._tokens = tokens
        self._execute = executor or _thread_executor

    def request(
        self,
        endpoint: str,
        requires_user_token: bool,
        target: type[T] | Any,
        on_success: Callable[[T], None],
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        self.request_with_meta(
            endpoint,
            requires_user_token,
            target,
            lambda data, _meta: on_success(data),
            on_error,
        )

    def request_with_meta(
        self,
        endpoint: str,
        requires_user_token: bool,
        target: type[T] | Any,
        on_success: Callable[[T, ResponseMeta | None], None],
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        def _with_user_token(developer_token: str, user_token: str | None) -> None:
            if requires_user_token and user_token is None:
                on_error(RequestError("This endpoint requires that a user is signed in"))
                return
            self._execute(
                lambda: self._perform(endpoint, developer_token, user_token, target, on_success, on_error)
            )

        self._tokens.get_developer_token(
            lambda developer_token: self._tokens.get_user_token(
                lambda user_token: _with_user_token(developer_token, user_token),
                on_error,
            ),
            on_error,
        )

    def _perform(
        self,
        endpoint: str,
        developer_token: str,
        user_token: str | None,
        target: type[T] | Any,
        on_success: Callable[[T, ResponseMeta | None], None],
        on_error: ErrorHandler,
    ) -> None:
        parsed = urlparse(endpoint)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            on_error(RequestError("The URL supplied for the endpoint is invalid"))
            return
        headers = {"Authorization": f"Bearer {developer_token}"}
        if user_token:
            headers["Music-User-Token"] = user_token
        try:
            response = requests.get(endpoint, headers=headers, timeout=_REQUEST_TIMEOUT_SEC)
        except requests.RequestException as exc:
            logger.warning("catalog request failed: %s", exc)
            on_error(RequestError(underlying=exc))
            return
        try:
            envelope = _Envelope.model_validate_json(response.content)
        except ValidationError as exc:
            if response.status_code >= 400:
                on_error(RequestError(status_code=response.status_code))
            else:
                on_error(DecodingError("response envelope", DecodeStrategy.JSON_TEXT, exc))
            return
        if envelope.data is not None:
            try:
                data = decode_response(envelope.data, target, DecodeStrategy.STRUCTURED)
            except DecodingError as exc:
                on_error(exc)
                return
            on_success(data, envelope.meta)
        elif envelope.errors:
            on_error(RequestError(status_code=response.status_code, errors=envelope.errors))
        elif response.status_code >= 400:
            on_error(RequestError(status_code=response.status_code))
        else:
            on_error(
                DecodingError(
                    'values for keys named "data" or "errors"',
                    DecodeStrategy.STRUCTURED,
                    ValueError("empty envelope"),
                )
            )


class Library:
    """The signed-in user's cloud library."""

    def __init__(self, bridge: Bridge, catalog: CatalogClient) -> None:
        self._bridge = bridge
        self._catalog = catalog

    def get_song(
        self,
        song_id: str,
        on_success: Callable[[Song], None],
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        def _first(songs: list[Song]) -> None:
            if not songs:
                on_error(EmptyResponseError())
                return
            on_success(songs[0])

        self._catalog.request(
            f"{API_ROOT}/me/library/songs/{quote(song_id, safe='')}",
            True,
            list[Song],
            _first,
            on_error,
        )

    def get_songs(
        self,
        ids: list[str],
        on_success: Callable[[list[Song]], None],
        on_error: ErrorHandler = default_error_handler,
    ) -> None:
        query = urlencode({"ids": ",".join(ids)})
        self._catalog.request(f"{API_ROOT}/me/library/songs?{query}", True, list[Song], on_success, on_error)

    def get_songs_page(
        self,
        on_success: Callable[[list[Song], ResponseMeta | None], None],
        on_error: ErrorHandler = default_error_handler,
        limit: int = 25,
        offset: int = 0,
    ) -> None:
        query = urlencode({"limit": limit, "offset": offset})
        self._catalog.request_with_meta(
            f"{API_ROOT}/me/library/songs?{query}", True, list[Song], on_success, on_error
        )

    def get_playlist_songs(
        self,
        playlist_id: str,
        on_success: Callable[[list[Song], ResponseMeta | None], None],
        on_error: ErrorHandler = default_error_handler,
        limit: int = 10,
        offset: int = 0,
    ) -> None:
        query = urlencode({"limit": limit, "offset": offset})
        self._catalog.request_with_meta(
            f"{API_ROOT}/me/library/playlists/{quote(playlist_id, safe='')}/tracks?{query}",
            True,
            list[Song],
            on_success,
            on_error,
        )

    def get_albums(
        self,
        on_success: Callable[[list[Album]], None],
        on_error: ErrorHandler = default_error_handler,
        ids: list[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> None:
        self._bridge.call_for_value(
            f"music.api.library.albums({self._selection(ids, limit, offset)})",
            list[Album],
            DecodeStrategy.STRUCTURED,
            on_success,
            on_error,
        )

    def get_playlists(
        self,
        on_success: Callable[[list[Playlist]], None],
        on_error: ErrorHandler = default_error_handler,
        ids: list[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> None:
        self._bridge.call_for_value(
            f"music.api.library.playlists({self._selection(ids, limit, offset)})",
            list[Playlist],
            DecodeStrategy.STRUCTURED,
            on_success,
            on_error,
        )

    @staticmethod
    def _selection(ids: list[str] | None, limit: int | None, offset: int) -> str:
        id_literal = json.dumps(list(ids)) if ids else "null"
        if limit is None:
            return f"{id_literal}, null"
        return f"{id_literal}, {json.dumps({'limit': int(limit), 'offset': int(offset)})}"
