from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum, IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Event(StrEnum):
    AUTHORIZATION_STATUS_DID_CHANGE = "authorizationStatusDidChange"
    AUTHORIZATION_STATUS_WILL_CHANGE = "authorizationStatusWillChange"
    ELIGIBLE_FOR_SUBSCRIBE_VIEW = "eligibleForSubscribeView"
    LOADED = "loaded"
    MEDIA_CAN_PLAY = "mediaCanPlay"
    MEDIA_ITEM_DID_CHANGE = "mediaItemDidChange"
    MEDIA_ITEM_WILL_CHANGE = "mediaItemWillChange"
    MEDIA_PLAYBACK_ERROR = "mediaPlaybackError"
    METADATA_DID_CHANGE = "metadataDidChange"
    # Pseudo-event: fired by the host when the bridge itself is ready, never attached to the runtime.
    MUSIC_KIT_DID_LOAD = "musicKitDidLoad"
    PLAYBACK_BITRATE_DID_CHANGE = "playbackBitrateDidChange"
    PLAYBACK_DURATION_DID_CHANGE = "playbackDurationDidChange"
    PLAYBACK_PROGRESS_DID_CHANGE = "playbackProgressDidChange"
    PLAYBACK_STATE_DID_CHANGE = "playbackStateDidChange"
    PLAYBACK_STATE_WILL_CHANGE = "playbackStateWillChange"
    PLAYBACK_TARGET_AVAILABLE_DID_CHANGE = "playbackTargetAvailableDidChange"
    PLAYBACK_TIME_DID_CHANGE = "playbackTimeDidChange"
    PLAYBACK_VOLUME_DID_CHANGE = "playbackVolumeDidChange"
    PRIMARY_PLAYER_DID_CHANGE = "primaryPlayerDidChange"
    QUEUE_ITEMS_DID_CHANGE = "queueItemsDidChange"
    QUEUE_POSITION_DID_CHANGE = "queuePositionDidChange"
    STOREFRONT_COUNTRY_CODE_DID_CHANGE = "storefrontCountryCodeDidChange"
    STOREFRONT_IDENTIFIER_DID_CHANGE = "storefrontIdentifierDidChange"
    USER_TOKEN_DID_CHANGE = "userTokenDidChange"


class PlaybackState(IntEnum):
    NONE = 0
    LOADING = 1
    PLAYING = 2
    PAUSED = 3
    STOPPED = 4
    ENDED = 5
    SEEKING = 6
    WAITING = 8
    STALLED = 9
    COMPLETED = 10


class RepeatMode(IntEnum):
    NONE = 0
    ONE = 1
    ALL = 2


class ShuffleMode(IntEnum):
    OFF = 0
    SHUFFLE = 1  # the SDK docs call this "songs"


class PlaybackBitrate(IntEnum):
    HIGH = 256
    STANDARD = 64


class ContentRating(StrEnum):
    CLEAN = "clean"
    EXPLICIT = "explicit"


class SongType(Enum):
    SONG = "songs"
    LIBRARY_SONG = "library.songs"


class _Resource(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Artwork(_Resource):
    url: str
    width: int | None = None
    height: int | None = None

    def url_for(self, width: int, height: int) -> str:
        return self.url.replace("{w}", str(width)).replace("{h}", str(height))


class PlayParams(_Resource):
    id: str
    kind: str
    catalog_id: str | None = Field(default=None, alias="catalogId")
    is_library: bool | None = Field(default=None, alias="isLibrary")
    reporting: bool | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        # The SDK sends the id as a number for some catalog items.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class MediaItemAttributes(_Resource):
    album_name: str = Field(alias="albumName")
    artist_name: str = Field(alias="artistName")
    name: str
    duration_in_millis: int = Field(alias="durationInMillis")
    track_number: int = Field(alias="trackNumber")
    play_params: PlayParams = Field(alias="playParams")
    artwork: Artwork | None = None
    composer_name: str | None = Field(default=None, alias="composerName")
    content_rating: ContentRating | None = Field(default=None, alias="contentRating")
    disc_number: int | None = Field(default=None, alias="discNumber")
    genre_names: list[str] | None = Field(default=None, alias="genreNames")
    isrc: str | None = None
    release_date: str | None = Field(default=None, alias="releaseDate")
    url: str | None = None

    @property
    def duration_in_secs(self) -> int:
        return self.duration_in_millis // 1000


class MediaItem(_Resource):
    id: str
    type: str
    attributes: MediaItemAttributes
    asset_url: str | None = Field(default=None, alias="assetURL")
    flavor: str | None = None


class SongAttributes(_Resource):
    album_name: str = Field(alias="albumName")
    artist_name: str = Field(alias="artistName")
    name: str
    duration_in_millis: int = Field(alias="durationInMillis")
    track_number: int = Field(alias="trackNumber")
    artwork: Artwork | None = None
    # None when the song is no longer playable (removed from the catalog).
    play_params: PlayParams | None = Field(default=None, alias="playParams")

    @property
    def track_time(self) -> str:
        total = self.duration_in_millis // 1000
        return f"{total // 60}:{total % 60:02d}"


class Song(_Resource):
    id: str
    type: str
    href: str
    attributes: SongAttributes


class AlbumAttributes(_Resource):
    artist_name: str = Field(alias="artistName")
    name: str
    track_count: int = Field(alias="trackCount")
    artwork: Artwork | None = None
    date_added: str | None = Field(default=None, alias="dateAdded")
    release_date: str | None = Field(default=None, alias="releaseDate")
    play_params: PlayParams | None = Field(default=None, alias="playParams")


class Album(_Resource):
    id: str
    type: str
    href: str
    attributes: AlbumAttributes


class PlaylistAttributes(_Resource):
    name: str
    play_params: PlayParams | None = Field(default=None, alias="playParams")
    can_edit: bool | None = Field(default=None, alias="canEdit")
    date_added: str | None = Field(default=None, alias="dateAdded")
    has_catalog: bool | None = Field(default=None, alias="hasCatalog")


class Playlist(_Resource):
    id: str
    type: str
    href: str
    attributes: PlaylistAttributes


class ResponseMeta(_Resource):
    total: int


@dataclass(frozen=True)
class NowPlayingInfo:
    title: str
    album_title: str | None
    artist: str | None
    duration_sec: int
    elapsed_sec: int
    composer: str | None = None
    genre: str | None = None
    release_date: str | None = None
    track_number: int | None = None
    disc_number: int | None = None
    is_explicit: bool | None = None
    artwork_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
