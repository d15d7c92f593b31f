"""Fetch/parse pipeline: cache → direct fetch → proxy providers, with retries.

For one feed URL the pipeline:

1. returns a fresh cache hit straight away (unless ``skip_cache``); a stale
   hit is kept as a fallback while a refresh is attempted,
2. tries a direct fetch of the URL and its alternative URLs (hosts that
   resolve to private addresses are refused, on every redirect hop too),
3. walks the registry's candidates (preferred endpoint, then JSON
   aggregators, then raw-XML proxies), each gated by the per-provider
   circuit breaker and retried with exponential backoff,
4. writes any success through to the cache.

Only exhaustion of every path surfaces an error, as ``AllProvidersFailedError``
classified into the failure taxonomy. The pipeline never invents placeholder
articles.
"""

from __future__ import annotations

import logging
import time
from urllib.parse import urljoin, urlparse

import httpx

from feedrelay.cache.smart_cache import SmartCache
from feedrelay.middleware.error_handler import (
    AllProvidersFailedError,
    FeedFetchError,
    FeedNotFoundError,
    FeedTimeoutError,
    LoadCancelledError,
    NetworkError,
    NoHealthyProxiesError,
    SecurityValidationError,
)
from feedrelay.models.feeds import ParsedFeed
from feedrelay.parsing.feed_parser import parse_payload
from feedrelay.parsing.providers import decode_payload, validate_payload
from feedrelay.parsing.secure_xml import DEFAULT_POLICY, XmlSecurityPolicy
from feedrelay.proxy.registry import ProxyRegistry
from feedrelay.proxy.types import ProxyEndpoint, ResponseKind
from feedrelay.resilience.circuit_breaker import ProviderCircuitBreaker
from feedrelay.services.cancellation import CancellationToken, cancellable_sleep, run_with_deadline
from feedrelay.validators.url_validator import alternative_urls, validate_url

logger = logging.getLogger(__name__)

DIRECT_HEADERS = {
    "Accept": "application/rss+xml, application/atom+xml, application/rdf+xml, application/xml, text/xml;q=0.9, */*;q=0.8",
    "User-Agent": "Mozilla/5.0 (compatible; FeedRelay/1.0)",
}

# Failures that a retry through the same provider cannot fix
_NON_RETRYABLE = (SecurityValidationError, FeedNotFoundError)

MAX_DIRECT_REDIRECTS = 5
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def direct_provider_key(url: str) -> str:
    """Breaker key for direct fetches: one circuit per feed host."""
    return f"direct:{(urlparse(url).hostname or '').lower()}"


class FeedPipeline:
    """Acquires and parses a single feed through every available path.

    Args:
        registry: Proxy registry providing ordered candidates and fetches.
        cache: Smart cache consulted first and written through on success.
        breaker: Per-provider circuit breaker.
        http_client: Shared client for direct fetches.
        direct_fetch_enabled: Try the feed URL itself before any proxy.
        direct_timeout_seconds: Timeout for a direct fetch.
        max_retries: Attempts per provider before moving on.
        retry_base_seconds: Backoff base; attempt *n* waits ``base × 2^(n-1)``.
        max_response_bytes: Size ceiling for direct responses.
        xml_policy: Secure XML policy applied before parsing.
    """

    def __init__(
        self,
        *,
        registry: ProxyRegistry,
        cache: SmartCache,
        breaker: ProviderCircuitBreaker,
        http_client: httpx.AsyncClient,
        direct_fetch_enabled: bool = True,
        direct_timeout_seconds: float = 8.0,
        max_retries: int = 2,
        retry_base_seconds: float = 1.0,
        max_response_bytes: int = 10 * 1024 * 1024,
        xml_policy: XmlSecurityPolicy = DEFAULT_POLICY,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._breaker = breaker
        self._client = http_client
        self._direct_fetch_enabled = direct_fetch_enabled
        self._direct_timeout_seconds = direct_timeout_seconds
        self._max_retries = max(1, max_retries)
        self._retry_base_seconds = retry_base_seconds
        self._max_response_bytes = max_response_bytes
        self._xml_policy = xml_policy

    @property
    def direct_fetch_enabled(self) -> bool:
        return self._direct_fetch_enabled

    async def fetch(
        self,
        url: str,
        *,
        timeout: float | None = None,
        cancel_token: CancellationToken | None = None,
        skip_cache: bool = False,
    ) -> ParsedFeed:
        """Return the parsed feed for ``url``.

        Raises:
            AllProvidersFailedError: every acquisition path failed and no stale
                copy was available.
            NoHealthyProxiesError: direct fetching failed or is disabled and no
                proxy is currently eligible.
            LoadCancelledError: ``cancel_token`` fired.
            FeedTimeoutError: ``timeout`` elapsed.
        """
        stale = None
        if not skip_cache:
            hit = self._cache.get(url)
            if hit is not None and not hit.is_stale:
                return ParsedFeed(title=hit.title, articles=hit.articles, from_cache=True)
            stale = hit

        try:
            if timeout is not None:
                parsed = await run_with_deadline(
                    self._acquire(url, cancel_token), timeout=timeout, token=cancel_token
                )
            else:
                parsed = await self._acquire(url, cancel_token)
        except LoadCancelledError:
            raise
        except FeedFetchError as exc:
            if stale is not None:
                logger.warning(
                    "Refresh failed, serving stale copy: %s",
                    exc.message,
                    extra={"feed_url": url, "error_type": exc.error_type.value},
                )
                return ParsedFeed(
                    title=stale.title, articles=stale.articles, from_cache=True, stale=True
                )
            raise

        if parsed.articles:
            self._cache.set(url, parsed.articles, parsed.title)
        return parsed

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def _acquire(self, url: str, token: CancellationToken | None) -> ParsedFeed:
        errors: list[FeedFetchError] = []
        variants = alternative_urls(url)

        if self._direct_fetch_enabled:
            for variant in variants:
                if token is not None:
                    token.raise_if_cancelled()
                parsed = await self._try_direct(url, variant, errors)
                if parsed is not None:
                    return parsed

        for variant in variants:
            for endpoint in self._ordered_providers(variant):
                parsed = await self._try_provider(url, variant, endpoint, token, errors)
                if parsed is not None:
                    return parsed

        if not errors:
            raise NoHealthyProxiesError()
        last = errors[-1]
        raise AllProvidersFailedError(
            f"All proxies failed. Last error: {last.message}",
            error_type=last.error_type,
            attempts=len(errors),
        )

    def _ordered_providers(self, target_url: str) -> list[ProxyEndpoint]:
        """Preferred endpoint first, then JSON aggregators, then raw-XML proxies."""
        candidates = self._registry.candidates(target_url)
        preferred = self._registry.preferred_for(target_url)
        head = [e for e in candidates if e.name == preferred]
        rest = [e for e in candidates if e.name != preferred]
        json_first = [e for e in rest if e.response_kind.is_json_aggregator]
        raw = [e for e in rest if not e.response_kind.is_json_aggregator]
        return head + json_first + raw

    async def _get_direct(self, url: str) -> httpx.Response:
        """GET ``url``, following redirects by hand so every hop is re-validated."""
        for _ in range(MAX_DIRECT_REDIRECTS + 1):
            response = await self._client.get(
                url,
                headers=DIRECT_HEADERS,
                timeout=self._direct_timeout_seconds,
                follow_redirects=False,
            )
            location = (
                response.headers.get("location")
                if response.status_code in _REDIRECT_STATUSES
                else None
            )
            if not location:
                return response
            url = urljoin(url, location)
            if not await validate_url(url):
                raise SecurityValidationError(f"Refusing redirect to {url}")
        raise NetworkError(f"Too many redirects fetching {url}")

    async def _try_direct(
        self, feed_url: str, variant: str, errors: list[FeedFetchError]
    ) -> ParsedFeed | None:
        if not await validate_url(variant):
            errors.append(SecurityValidationError(f"Refusing direct fetch of {variant}"))
            return None
        key = direct_provider_key(variant)
        if not self._breaker.can_call(key):
            return None

        t0 = time.perf_counter()
        try:
            response = await self._get_direct(variant)
            if response.status_code in (404, 410):
                raise FeedNotFoundError(f"Direct fetch returned HTTP {response.status_code}")
            if response.status_code >= 400:
                raise NetworkError(f"Direct fetch returned HTTP {response.status_code}")
            content = validate_payload(response.text, self._max_response_bytes)
            parsed = parse_payload(
                decode_payload(ResponseKind.RAW, content), feed_url, self._xml_policy
            )
        except httpx.TimeoutException as exc:
            error: FeedFetchError = FeedTimeoutError(f"Direct fetch timed out: {exc}")
        except httpx.HTTPError as exc:
            error = NetworkError(f"Direct fetch network error: {exc}")
        except FeedFetchError as exc:
            error = exc
        else:
            self._breaker.record_success(key)
            logger.info(
                "Fetched feed directly",
                extra={
                    "feed_url": feed_url,
                    "provider": "direct",
                    "duration_ms": round((time.perf_counter() - t0) * 1000, 1),
                    "articles_count": len(parsed.articles),
                },
            )
            return parsed

        self._breaker.record_failure(key)
        errors.append(error)
        logger.debug(
            "Direct fetch failed: %s",
            error.message,
            extra={"feed_url": variant, "provider": "direct", "error_type": error.error_type.value},
        )
        return None

    async def _try_provider(
        self,
        feed_url: str,
        variant: str,
        endpoint: ProxyEndpoint,
        token: CancellationToken | None,
        errors: list[FeedFetchError],
    ) -> ParsedFeed | None:
        name = endpoint.name
        for attempt in range(1, self._max_retries + 1):
            if token is not None:
                token.raise_if_cancelled()
            if not self._breaker.can_call(name):
                return None

            t0 = time.perf_counter()
            try:
                content = await self._registry.fetch(endpoint, variant)
                parsed = parse_payload(
                    decode_payload(endpoint.response_kind, content), feed_url, self._xml_policy
                )
            except FeedFetchError as exc:
                self._breaker.record_failure(name)
                errors.append(exc)
                logger.info(
                    "Provider attempt %d/%d failed: %s",
                    attempt,
                    self._max_retries,
                    exc.message,
                    extra={
                        "feed_url": feed_url,
                        "provider": name,
                        "attempt": attempt,
                        "error_type": exc.error_type.value,
                    },
                )
                if isinstance(exc, _NON_RETRYABLE):
                    return None
                if attempt < self._max_retries:
                    delay = self._retry_base_seconds * (2 ** (attempt - 1))
                    await cancellable_sleep(delay, token)
                continue

            self._breaker.record_success(name)
            logger.info(
                "Fetched feed via proxy",
                extra={
                    "feed_url": feed_url,
                    "provider": name,
                    "attempt": attempt,
                    "duration_ms": round((time.perf_counter() - t0) * 1000, 1),
                    "articles_count": len(parsed.articles),
                },
            )
            return parsed
        return None
