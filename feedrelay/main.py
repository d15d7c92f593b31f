"""FastAPI application entry point with lifespan management.

Startup: load settings, configure logging, open storage, build the cache,
proxy registry, circuit breaker, pipeline, error history and loader, start the
cache cleanup and proxy recovery loops, optionally kick off a first load.
Shutdown: cancel the loader, stop the background loops, close the HTTP client.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from feedrelay.cache.smart_cache import SmartCache
from feedrelay.config.feed_sources import load_feed_sources
from feedrelay.config.proxy_endpoints import build_endpoints, load_proxy_configs
from feedrelay.config.settings import FeedRelaySettings
from feedrelay.logging_config import configure_logging
from feedrelay.middleware.error_handler import register_error_handlers
from feedrelay.parsing.secure_xml import XmlSecurityPolicy
from feedrelay.proxy.health import HealthTracker
from feedrelay.proxy.preferred import PreferredProxyStore
from feedrelay.proxy.registry import ProxyRegistry
from feedrelay.resilience.circuit_breaker import ProviderCircuitBreaker
from feedrelay.routers.feeds import create_feeds_router
from feedrelay.routers.health import create_health_router
from feedrelay.routers.proxies import create_proxies_router
from feedrelay.services.error_history import ErrorHistoryStore
from feedrelay.services.loader import ProgressiveFeedLoader
from feedrelay.services.pipeline import FeedPipeline
from feedrelay.storage.kv import JsonFileStore, KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)

# Shared state for the application, populated during lifespan startup
_state: dict = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    settings = FeedRelaySettings()

    configure_logging(settings.log_level)
    logger.info("Starting feed relay service on port %d", settings.port)

    # Storage
    store: KeyValueStore
    if settings.cache_persistence:
        store = JsonFileStore(settings.storage_dir)
    else:
        store = MemoryStore()

    http_client = httpx.AsyncClient()

    # Smart cache
    cache = SmartCache(
        store,
        ttl_seconds=settings.cache_ttl_seconds,
        swr_seconds=settings.cache_swr_seconds,
        max_entries=settings.cache_max_entries,
        cleanup_interval_seconds=settings.cache_cleanup_interval_seconds,
    )

    # Proxy registry
    endpoints = build_endpoints(
        load_proxy_configs(settings.proxies_path),
        {
            "RSS2JSON": settings.rss2json_api_key,
            "CorsProxy.io": settings.corsproxy_api_key,
        },
    )
    registry = ProxyRegistry(
        endpoints,
        http_client=http_client,
        health=HealthTracker(
            failure_threshold=settings.proxy_failure_threshold,
            recovery_seconds=settings.proxy_recovery_seconds,
        ),
        preferred=PreferredProxyStore(store, ttl_seconds=settings.preferred_proxy_ttl_seconds),
        max_response_bytes=settings.proxy_max_response_bytes,
        health_check_interval_seconds=settings.proxy_health_check_interval_seconds,
    )

    # Circuit breaker
    breaker = ProviderCircuitBreaker(
        window_size=settings.cb_window_size,
        failure_threshold=settings.cb_failure_threshold,
        cooldown_seconds=settings.cb_cooldown_seconds,
    )

    # Fetch pipeline
    pipeline = FeedPipeline(
        registry=registry,
        cache=cache,
        breaker=breaker,
        http_client=http_client,
        direct_fetch_enabled=settings.direct_fetch_enabled,
        direct_timeout_seconds=settings.direct_fetch_timeout_seconds,
        max_retries=settings.pipeline_max_retries,
        retry_base_seconds=settings.pipeline_retry_base_seconds,
        max_response_bytes=settings.proxy_max_response_bytes,
        xml_policy=XmlSecurityPolicy(max_bytes=settings.proxy_max_response_bytes),
    )

    # Error history + loader
    error_history = ErrorHistoryStore(
        store,
        problematic_window_seconds=settings.loader_problematic_window_days * 24 * 3600,
    )
    loader = ProgressiveFeedLoader(
        pipeline=pipeline,
        cache=cache,
        error_history=error_history,
        sources=load_feed_sources(settings.feeds_path),
        batch_size=settings.loader_batch_size,
        feed_timeout_seconds=settings.loader_feed_timeout_seconds,
        batch_delay_seconds=settings.loader_batch_delay_seconds,
    )

    # Background loops
    cache.start()
    registry.start()

    # Mount routers
    app.include_router(
        create_health_router(
            registry=registry,
            cache=cache,
            breaker=breaker,
            loader=loader,
            direct_fetch_enabled=settings.direct_fetch_enabled,
        )
    )
    app.include_router(
        create_feeds_router(loader=loader, pipeline=pipeline, error_history=error_history)
    )
    app.include_router(create_proxies_router(registry=registry, breaker=breaker))

    initial_load: asyncio.Task | None = None
    if settings.load_on_startup and loader.sources:
        initial_load = asyncio.create_task(loader.load())

    _state.update({
        "settings": settings,
        "cache": cache,
        "registry": registry,
        "breaker": breaker,
        "pipeline": pipeline,
        "loader": loader,
    })

    logger.info(
        "Feed relay service started with %d feeds and %d proxies",
        len(loader.sources),
        len(endpoints),
    )

    yield

    # --- Shutdown ---
    logger.info("Shutting down feed relay service…")

    try:
        await asyncio.wait_for(loader.shutdown(), timeout=settings.graceful_shutdown_seconds)
    except asyncio.TimeoutError:
        logger.warning("Loader did not stop within %ds", settings.graceful_shutdown_seconds)

    if initial_load is not None and not initial_load.done():
        initial_load.cancel()
        try:
            await initial_load
        except asyncio.CancelledError:
            pass

    await cache.shutdown()
    await registry.shutdown()
    await http_client.aclose()

    logger.info("Feed relay service shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Feed Relay Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_error_handlers(app)

    return app


app = create_app()
