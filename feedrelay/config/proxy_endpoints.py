"""Proxy endpoint models and YAML loader.

Provides typed Pydantic models for proxy endpoint configuration and a loader
that parses the YAML file into ``ProxyEndpoint`` objects. API keys are never
read from YAML; they come from settings and are attached by provider name.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from feedrelay.proxy.types import ProxyEndpoint, ResponseKind

logger = logging.getLogger(__name__)

_FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"
_USER_AGENT = "Mozilla/5.0 (compatible; FeedRelay/1.0)"


class ProxyEndpointConfig(BaseModel):
    """Configuration for a single proxy endpoint."""

    name: str = Field(min_length=1)
    url_template: str = Field(min_length=1)
    timeout_seconds: float = Field(default=10.0, gt=0)
    priority: int = Field(default=0, ge=0)
    headers: dict[str, str] = Field(default_factory=dict)
    response_kind: ResponseKind = ResponseKind.RAW
    api_key_param: str | None = None
    enabled: bool = True

    def to_endpoint(self, api_key: str | None = None) -> ProxyEndpoint:
        return ProxyEndpoint(
            name=self.name,
            url_template=self.url_template,
            timeout_seconds=self.timeout_seconds,
            priority=self.priority,
            headers=dict(self.headers),
            response_kind=self.response_kind,
            api_key_param=self.api_key_param,
            api_key=api_key if self.api_key_param else None,
            enabled=self.enabled,
        )


DEFAULT_PROXY_CONFIGS: list[ProxyEndpointConfig] = [
    ProxyEndpointConfig(
        name="RSS2JSON",
        url_template="https://api.rss2json.com/v1/api.json?rss_url=",
        timeout_seconds=5.0,
        priority=0,
        headers={"Accept": "application/json"},
        response_kind=ResponseKind.RSS2JSON,
        api_key_param="api_key",
    ),
    ProxyEndpointConfig(
        name="AllOrigins",
        url_template="https://api.allorigins.win/get?url=",
        timeout_seconds=10.0,
        priority=1,
        headers={"Accept": "application/json"},
        response_kind=ResponseKind.ALLORIGINS,
    ),
    ProxyEndpointConfig(
        name="CorsProxy.io",
        url_template="https://corsproxy.io/?",
        timeout_seconds=8.0,
        priority=2,
        headers={"Accept": _FEED_ACCEPT, "User-Agent": _USER_AGENT},
        response_kind=ResponseKind.RAW,
        api_key_param="key",
    ),
    ProxyEndpointConfig(
        name="CORS Anywhere",
        url_template="https://cors-anywhere.herokuapp.com/",
        timeout_seconds=12.0,
        priority=3,
        headers={"Accept": _FEED_ACCEPT, "X-Requested-With": "XMLHttpRequest"},
        response_kind=ResponseKind.RAW,
    ),
    ProxyEndpointConfig(
        name="CodeTabs",
        url_template="https://api.codetabs.com/v1/proxy?quest=",
        timeout_seconds=15.0,
        priority=4,
        headers={"Accept": _FEED_ACCEPT},
        response_kind=ResponseKind.CODETABS,
    ),
]


def build_endpoints(
    configs: list[ProxyEndpointConfig],
    api_keys: dict[str, str | None] | None = None,
) -> list[ProxyEndpoint]:
    """Turn configs into endpoints, attaching API keys by provider name."""
    api_keys = api_keys or {}
    return [config.to_endpoint(api_keys.get(config.name)) for config in configs]


def load_proxy_configs(yaml_path: str) -> list[ProxyEndpointConfig]:
    """Parse a proxies YAML file into typed configs.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        The configured endpoints, or the built-in defaults when the file is
        missing, unreadable, or declares no valid endpoint.
    """
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Proxies file not found at %s, using built-in defaults", yaml_path)
        return list(DEFAULT_PROXY_CONFIGS)

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse proxies YAML at %s: %s", yaml_path, exc)
        return list(DEFAULT_PROXY_CONFIGS)

    if not isinstance(raw, dict) or not isinstance(raw.get("proxies"), list):
        logger.warning("Proxies YAML missing 'proxies' list, using built-in defaults")
        return list(DEFAULT_PROXY_CONFIGS)

    configs: list[ProxyEndpointConfig] = []
    names: set[str] = set()
    for index, entry in enumerate(raw["proxies"]):
        try:
            config = ProxyEndpointConfig.model_validate(entry)
        except Exception as exc:
            logger.error("Invalid proxy entry #%d: %s, skipping", index, exc)
            continue
        if config.name in names:
            logger.error("Duplicate proxy name '%s', skipping", config.name)
            continue
        names.add(config.name)
        configs.append(config)

    if not configs:
        logger.warning("Proxies YAML declared no valid endpoints, using built-in defaults")
        return list(DEFAULT_PROXY_CONFIGS)
    return configs
