"""Pydantic Settings for the feed relay service.

All environment variables use the FEEDRELAY_ prefix.
Example: FEEDRELAY_PORT=8002, FEEDRELAY_CACHE_TTL_SECONDS=300
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class FeedRelaySettings(BaseSettings):
    """Feed relay configuration validated from environment variables."""

    # Service
    port: int = 8002
    log_level: str = "INFO"

    # Storage / config files
    storage_dir: str = ".feedrelay"
    feeds_path: str = "feedrelay/config/feeds.yaml"
    proxies_path: str = "feedrelay/config/proxies.yaml"

    # Provider API keys (appended as query parameters when set)
    rss2json_api_key: str | None = None
    corsproxy_api_key: str | None = None

    # Smart cache
    cache_ttl_seconds: int = Field(default=600, ge=1)  # 10 minutes
    cache_swr_seconds: int = Field(default=7200, ge=1)  # 2 hours
    cache_max_entries: int = Field(default=100, ge=1)
    cache_cleanup_interval_seconds: int = Field(default=300, ge=1)
    cache_persistence: bool = True

    # Proxy registry
    proxy_failure_threshold: int = Field(default=3, ge=1)
    proxy_recovery_seconds: int = Field(default=300, ge=1)
    proxy_health_check_interval_seconds: int = Field(default=300, ge=1)
    proxy_max_response_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    preferred_proxy_ttl_seconds: int = Field(default=6 * 3600, ge=0)

    # Per-provider circuit breaker
    cb_window_size: int = Field(default=10, ge=1)
    cb_failure_threshold: int = Field(default=3, ge=1)
    cb_cooldown_seconds: int = Field(default=300, ge=1)

    # Fetch pipeline
    direct_fetch_enabled: bool = True
    direct_fetch_timeout_seconds: float = Field(default=8.0, gt=0)
    pipeline_max_retries: int = Field(default=2, ge=1)
    pipeline_retry_base_seconds: float = Field(default=1.0, ge=0)

    # Progressive loader
    loader_batch_size: int = Field(default=8, ge=1)
    loader_feed_timeout_seconds: float = Field(default=6.0, gt=0)
    loader_batch_delay_seconds: float = Field(default=0.5, ge=0)
    loader_problematic_window_days: int = Field(default=7, ge=0)
    load_on_startup: bool = True

    # Shutdown
    graceful_shutdown_seconds: int = Field(default=10, ge=0)

    model_config = {"env_prefix": "FEEDRELAY_"}
