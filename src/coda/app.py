from __future__ import annotations

import logging
import sys

import webview

from coda.bridge import Bridge
from coda.channel import WebviewChannel
from coda.client import MusicClient
from coda.config import BridgeConfig, load_config_from_env
from coda.errors import ConfigurationError, LoadingError
from coda.logging_utils import configure_logging
from coda.models import Event

logger = logging.getLogger(__name__)

_BLANK_PAGE = "<!DOCTYPE html><html><body></body></html>"


def load_config() -> BridgeConfig:
    config, error = load_config_from_env()
    if error or config is None:
        raise ConfigurationError(error or "Invalid config.")
    return config


def build_client(config: BridgeConfig, channel: WebviewChannel) -> MusicClient:
    bridge = Bridge(
        channel,
        load_timeout_sec=config.load_timeout_sec,
        enhanced_error_logging=config.enhanced_error_logging,
    )
    return MusicClient(bridge, config)


def _on_load_error(error: Exception) -> None:
    if isinstance(error, LoadingError):
        logger.error("music runtime failed to load: %s", error)
        return
    logger.error("music runtime page failed: %s", error)


def run(config: BridgeConfig) -> None:
    channel = WebviewChannel()
    client = build_client(config, channel)
    window = webview.create_window(
        config.app_name,
        html=_BLANK_PAGE,
        js_api=channel.api,
        hidden=True,
    )
    if window is None:
        raise RuntimeError("Failed to create runtime window")
    channel.attach_window(window)

    def _log_page_loaded() -> None:
        logger.info("runtime window loaded a page")

    window.events.loaded += _log_page_loaded
    client.add_event_listener(Event.MUSIC_KIT_DID_LOAD, lambda: logger.info("music runtime ready"))

    def _start() -> None:
        client.configure(on_error=_on_load_error)

    webview.start(_start, debug=config.debug)


def main() -> None:
    try:
        config = load_config()
    except ConfigurationError as exc:
        configure_logging()
        logger.error("%s", exc)
        sys.exit(2)
    configure_logging(debug=config.debug)
    run(config)


if __name__ == "__main__":
    main()
