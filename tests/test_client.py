from __future__ import annotations

import pytest

from coda.bridge import Bridge
from coda.client import MusicClient
from coda.config import BridgeConfig
from coda.models import Event


def _client(channel, scheduler) -> MusicClient:
    config = BridgeConfig(developer_token="dev-token", app_name="Jukebox", app_url="https://jukebox.local")
    return MusicClient(Bridge(channel, scheduler=scheduler), config)


def test_configure_loads_runtime_page(channel, scheduler) -> None:
    client = _client(channel, scheduler)

    client.configure()

    html, base_url = channel.loaded_pages[0]
    assert base_url == "https://jukebox.local"
    assert '"dev-token"' in html
    assert '"Jukebox"' in html


def test_internal_setup_runs_before_public_listeners(channel, scheduler) -> None:
    client = _client(channel, scheduler)
    seen: list[list[str]] = []
    configured: list[str] = []
    client.add_event_listener(Event.MUSIC_KIT_DID_LOAD, lambda: seen.append(list(channel.fragments)))

    client.configure(lambda: configured.append("ok"))
    channel.post("loaded", "")

    fragments = seen[0]
    assert any('"queueItemsDidChange"' in fragment for fragment in fragments)
    assert any('"playbackStateDidChange"' in fragment for fragment in fragments)
    assert "music.player.queue.position" in fragments
    assert "JSON.stringify(music.player.queue.items)" in fragments
    assert configured == ["ok"]


def test_reload_does_not_duplicate_internal_listeners(channel, scheduler) -> None:
    client = _client(channel, scheduler)
    client.configure()
    channel.post("loaded", "")
    first = sum('"queueItemsDidChange"' in fragment for fragment in channel.fragments)

    client.configure()
    channel.post("loaded", "")
    total = sum('"queueItemsDidChange"' in fragment for fragment in channel.fragments)

    assert first == 1
    assert total == 2


def test_set_queue_takes_exactly_one_source(channel, scheduler) -> None:
    client = _client(channel, scheduler)

    with pytest.raises(ValueError):
        client.set_queue()
    with pytest.raises(ValueError):
        client.set_queue(song="1", album="2")

    client.set_queue(songs=["1", "2"])
    client.set_queue(playlist="p.123", on_success=lambda: None)

    assert channel.fragments[0] == 'music.setQueue({"songs": ["1", "2"]})'
    assert channel.fragments[1].startswith('music.setQueue({"playlist": "p.123"}).then(')


def test_user_token_is_none_when_signed_out(channel, scheduler) -> None:
    client = _client(channel, scheduler)
    tokens: list[str | None] = []

    client.get_user_token(tokens.append)
    channel.answer_last("null")
    client.get_user_token(tokens.append)
    channel.answer_last('"music-user-token"')

    assert tokens == [None, "music-user-token"]


def test_authorize_resolves_with_token(channel, scheduler) -> None:
    client = _client(channel, scheduler)
    tokens: list[str] = []

    client.authorize(tokens.append)
    success = next(name for action, name in channel.registration_log if name.startswith("success_"))
    channel.post(success, "music-user-token")

    assert tokens == ["music-user-token"]


def test_add_to_library_renders_ids(channel, scheduler) -> None:
    client = _client(channel, scheduler)

    client.add_to_library(songs=["1"], playlists=["p.1"])

    assert channel.fragments[0] == 'MusicKit.getInstance().api.addToLibrary({"songs": ["1"], "playlists": ["p.1"]})'
    with pytest.raises(ValueError):
        client.add_to_library()


def test_developer_token_is_read_from_runtime(channel, scheduler) -> None:
    client = _client(channel, scheduler)
    developer: list[str] = []

    client.get_developer_token(developer.append)
    channel.answer_last("dev-token")

    assert channel.fragments == ["music.developerToken"]
    assert developer == ["dev-token"]
