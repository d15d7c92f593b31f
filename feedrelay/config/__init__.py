"""Configuration: settings, proxy endpoints and feed sources."""

from feedrelay.config.feed_sources import load_feed_sources
from feedrelay.config.proxy_endpoints import (
    DEFAULT_PROXY_CONFIGS,
    ProxyEndpointConfig,
    build_endpoints,
    load_proxy_configs,
)
from feedrelay.config.settings import FeedRelaySettings

__all__ = [
    "DEFAULT_PROXY_CONFIGS",
    "FeedRelaySettings",
    "ProxyEndpointConfig",
    "build_endpoints",
    "load_feed_sources",
    "load_proxy_configs",
]
