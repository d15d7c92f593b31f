"""Progressive batch loader.

Loads every configured feed source in prioritized, fixed-size batches:

1. Cached articles are shown straight away when at least one source is fresh
   (the run is then a *background refresh*).
2. Sources are ordered into four groups using the error history:
   priority-category healthy, other healthy, priority-category problematic,
   other problematic.
3. Batches run sequentially; feeds inside a batch run concurrently, each
   raced against its own deadline and the loader's cancellation token.
4. Every settled feed is written into a URL-keyed result map and advances
   the progress counters; the article list is republished after each batch.
5. On completion the error history is updated and the state becomes
   ``success`` (or ``error`` when no feed could be loaded).

State is exposed as an immutable ``LoadingState`` that is replaced, never
mutated. A new ``load`` cancels the previous run; a superseded run can no
longer publish state or articles.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence
from urllib.parse import urlparse

from feedrelay.cache.smart_cache import SmartCache
from feedrelay.middleware.error_handler import (
    FeedFetchError,
    LoadCancelledError,
    UnknownFeedError,
    classify_error,
)
from feedrelay.models.feeds import Article, FeedError, FeedResult, FeedSource, sort_articles
from feedrelay.models.state import LoadingState, LoadStatus
from feedrelay.services.cancellation import CancellationToken, cancellable_sleep, run_with_deadline
from feedrelay.services.error_history import ErrorHistoryStore
from feedrelay.services.pipeline import FeedPipeline

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "all"


def placeholder_article(url: str, error: str | None = None) -> Article:
    """A visible "feed unavailable" notice a caller may show in place of a failed feed."""
    host = urlparse(url).hostname or url
    description = "This feed could not be loaded right now. It will be retried on the next refresh."
    if error:
        description = f"{description} ({error})"
    return Article(
        title="Feed Unavailable",
        link=url,
        pub_date=datetime.now(timezone.utc),
        description=description,
        source_title=host,
    )


def order_sources(
    sources: Sequence[FeedSource],
    priority_category_id: str | None,
    problematic: set[str],
) -> tuple[list[FeedSource], int]:
    """Order sources into the four priority groups.

    Returns the ordered list and the number of healthy sources (the first two
    groups), which is the point at which the priority phase is complete.
    """
    has_priority = bool(priority_category_id) and priority_category_id != ALL_CATEGORIES

    def is_priority(source: FeedSource) -> bool:
        return has_priority and source.category_id == priority_category_id

    groups: list[list[FeedSource]] = [[], [], [], []]
    for source in sources:
        bad = source.url in problematic
        groups[(2 if bad else 0) + (0 if is_priority(source) else 1)].append(source)

    ordered = [source for group in groups for source in group]
    return ordered, len(groups[0]) + len(groups[1])


def chunk(items: Sequence[FeedSource], size: int) -> list[list[FeedSource]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class ProgressiveFeedLoader:
    """Orchestrates loading of many feeds through the pipeline.

    Args:
        pipeline: Fetch/parse pipeline used for every feed.
        cache: Smart cache, read for the immediate display.
        error_history: Persistent failure history used to order sources.
        sources: Initial feed sources.
        batch_size: Feeds fetched concurrently per batch.
        feed_timeout_seconds: Deadline for a single feed.
        batch_delay_seconds: Pause between batches.
        clock: Wall-clock time source (epoch seconds) for error timestamps.
        on_state_change: Called with every new ``LoadingState``.
    """

    def __init__(
        self,
        *,
        pipeline: FeedPipeline,
        cache: SmartCache,
        error_history: ErrorHistoryStore,
        sources: Iterable[FeedSource] = (),
        batch_size: int = 8,
        feed_timeout_seconds: float = 6.0,
        batch_delay_seconds: float = 0.5,
        clock: Callable[[], float] = time.time,
        on_state_change: Callable[[LoadingState], None] | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._cache = cache
        self._history = error_history
        self._sources: list[FeedSource] = list(sources)
        self._batch_size = max(1, batch_size)
        self._feed_timeout_seconds = feed_timeout_seconds
        self._batch_delay_seconds = batch_delay_seconds
        self._clock = clock
        self._on_state_change = on_state_change

        self._state = LoadingState()
        self._articles: tuple[Article, ...] = ()
        self._results: dict[str, FeedResult] = {}
        self._in_flight: dict[str, tuple[CancellationToken, asyncio.Task[FeedResult]]] = {}
        self._token: CancellationToken | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoadingState:
        return self._state

    @property
    def articles(self) -> tuple[Article, ...]:
        return self._articles

    @property
    def feed_results(self) -> dict[str, FeedResult]:
        return dict(self._results)

    @property
    def sources(self) -> list[FeedSource]:
        return list(self._sources)

    @property
    def in_flight(self) -> list[str]:
        return [url for url, (_token, task) in self._in_flight.items() if not task.done()]

    def set_sources(self, sources: Iterable[FeedSource]) -> None:
        self._sources = list(sources)

    # ------------------------------------------------------------------
    # State publication
    # ------------------------------------------------------------------

    def _is_current(self, token: CancellationToken) -> bool:
        return self._token is token

    def _set_state(self, token: CancellationToken, state: LoadingState) -> None:
        if not self._is_current(token):
            return
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _update_state(self, token: CancellationToken, **changes: object) -> None:
        self._set_state(token, replace(self._state, **changes))

    def _publish_articles(self, token: CancellationToken, results: dict[str, FeedResult]) -> None:
        if not self._is_current(token):
            return
        merged: list[Article] = []
        for result in results.values():
            if result.success:
                merged.extend(result.articles)
        self._articles = tuple(sort_articles(merged))

    # ------------------------------------------------------------------
    # Single feed
    # ------------------------------------------------------------------

    async def _fetch_one(
        self, source: FeedSource, token: CancellationToken, skip_cache: bool
    ) -> FeedResult:
        url = source.url
        try:
            parsed = await run_with_deadline(
                self._pipeline.fetch(url, cancel_token=token, skip_cache=skip_cache),
                timeout=self._feed_timeout_seconds,
                token=token,
            )
        except FeedFetchError as exc:
            return FeedResult(url=url, success=False, error=exc.message, error_type=exc.error_type)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error loading feed", extra={"feed_url": url})
            return FeedResult(url=url, success=False, error=str(exc), error_type=classify_error(exc))

        articles = parsed.articles
        title = source.custom_title or parsed.title
        if source.custom_title:
            articles = tuple(replace(a, source_title=source.custom_title) for a in articles)
        return FeedResult(
            url=url, success=True, articles=articles, title=title, from_cache=parsed.from_cache
        )

    def _start(self, source: FeedSource, token: CancellationToken, skip_cache: bool) -> asyncio.Task[FeedResult]:
        """Start (or join) the in-flight fetch for a source, keyed by its URL.

        Only a fetch started under a live token is joined; one left over from a
        superseded run would settle as cancelled.
        """
        existing = self._in_flight.get(source.url)
        if existing is not None:
            owner, running = existing
            if not running.done() and not owner.cancelled:
                return running

        task = asyncio.create_task(self._fetch_one(source, token, skip_cache))
        self._in_flight[source.url] = (token, task)

        def _forget(done: asyncio.Task[FeedResult], url: str = source.url) -> None:
            current = self._in_flight.get(url)
            if current is not None and current[1] is done:
                del self._in_flight[url]

        task.add_done_callback(_forget)
        return task

    def _settle(
        self,
        token: CancellationToken,
        results: dict[str, FeedResult],
        errors: list[FeedError],
        source: FeedSource,
        result: FeedResult,
    ) -> bool:
        """Record one settled feed. Returns False when the run was cancelled."""
        if token.cancelled:
            return False

        previous = results.get(source.url)
        if result.success or previous is None or not previous.success:
            results[source.url] = result
        if not result.success:
            errors.append(
                FeedError(
                    url=source.url,
                    error=result.error or "Unknown error",
                    error_type=result.error_type or classify_error(result.error or ""),
                    timestamp=self._clock(),
                    feed_title=source.custom_title,
                )
            )
            logger.info(
                "Feed failed: %s",
                result.error,
                extra={"feed_url": source.url, "error_type": result.error_type.value if result.error_type else None},
            )
        return True

    async def _run_group(
        self,
        token: CancellationToken,
        sources: list[FeedSource],
        results: dict[str, FeedResult],
        errors: list[FeedError],
        skip_cache: bool,
        on_settled: Callable[[], None],
        semaphore: asyncio.Semaphore | None = None,
    ) -> None:
        """Fetch ``sources`` concurrently, settling each as it completes."""

        async def run(source: FeedSource) -> tuple[FeedSource, FeedResult]:
            if semaphore is None:
                return source, await asyncio.shield(self._start(source, token, skip_cache))
            async with semaphore:
                return source, await asyncio.shield(self._start(source, token, skip_cache))

        tasks = [asyncio.ensure_future(run(source)) for source in sources]
        try:
            for next_done in asyncio.as_completed(tasks):
                source, result = await next_done
                if self._settle(token, results, errors, source, result):
                    on_settled()
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def _cancel_current(self, reason: str) -> None:
        if self._token is not None and not self._token.cancelled:
            self._token.cancel(reason)

    async def load(
        self,
        force_refresh: bool = False,
        priority_category_id: str | None = None,
    ) -> LoadingState:
        """Load every source; returns the final state of this run."""
        self._cancel_current("Superseded by a new load")
        token = CancellationToken()
        self._token = token
        sources = list(self._sources)

        if not sources:
            self._results = {}
            self._articles = ()
            self._set_state(
                token,
                LoadingState(status=LoadStatus.SUCCESS, progress=100.0, current_action="No feeds configured"),
            )
            return self._state

        results: dict[str, FeedResult] = {}
        self._results = results
        background = False
        if not force_refresh and any(self._cache.is_fresh(s.url) for s in sources):
            for source in sources:
                hit = self._cache.get_stale(source.url)
                if hit is not None:
                    results[source.url] = FeedResult(
                        url=source.url,
                        success=True,
                        articles=hit.articles,
                        title=source.custom_title or hit.title,
                        from_cache=True,
                    )
            background = True
            self._publish_articles(token, results)

        ordered, healthy_count = order_sources(
            sources, priority_category_id, self._history.problematic_urls()
        )
        total = len(ordered)
        batches = chunk(ordered, self._batch_size)
        errors: list[FeedError] = []
        loaded = 0

        self._set_state(
            token,
            LoadingState(
                status=LoadStatus.LOADING,
                total_count=total,
                is_background_refresh=background,
                current_action="Refreshing feeds in background" if background else "Loading feeds",
            ),
        )

        def on_settled() -> None:
            nonlocal loaded
            loaded += 1
            self._update_state(
                token,
                loaded_count=loaded,
                progress=round(loaded / total * 100, 2),
                priority_complete=loaded >= healthy_count,
                errors=tuple(errors),
            )

        try:
            for index, batch in enumerate(batches):
                if token.cancelled:
                    break
                self._update_state(
                    token, current_action=f"Loading batch {index + 1} of {len(batches)}"
                )
                logger.debug(
                    "Starting batch %d/%d (%d feeds)",
                    index + 1,
                    len(batches),
                    len(batch),
                    extra={"batch_index": index},
                )
                await self._run_group(token, batch, results, errors, force_refresh, on_settled)
                self._publish_articles(token, results)

                if index < len(batches) - 1 and self._batch_delay_seconds > 0:
                    try:
                        await cancellable_sleep(self._batch_delay_seconds, token)
                    except LoadCancelledError:
                        break
        except asyncio.CancelledError:
            token.cancel("Load task cancelled")
            self._update_state(token, status=LoadStatus.IDLE, current_action="Cancelled")
            raise
        except Exception:
            logger.exception("Feed load aborted")
            self._update_state(token, status=LoadStatus.ERROR, current_action="Load failed")
            return self._state

        if token.cancelled:
            logger.info("Feed load cancelled after %d/%d feeds", loaded, total)
            self._update_state(token, status=LoadStatus.IDLE, current_action="Cancelled")
            return self._state

        self._publish_articles(token, results)
        failed_urls = {e.url for e in errors}
        succeeded = [
            url for url, r in results.items() if r.success and url not in failed_urls
        ]
        self._history.record_run(succeeded, errors)

        any_success = any(r.success for r in results.values())
        status = LoadStatus.SUCCESS if any_success else LoadStatus.ERROR
        self._update_state(
            token,
            status=status,
            progress=100.0,
            loaded_count=loaded,
            priority_complete=True,
            errors=tuple(errors),
            current_action="Done",
        )
        logger.info(
            "Feed load finished: %d ok, %d failed",
            total - len(errors),
            len(errors),
            extra={"articles_count": len(self._articles)},
        )
        return self._state

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def retry_failed_feeds(self) -> LoadingState:
        """Retry every feed listed in the current state's errors."""
        return await self._retry([e.url for e in self._state.errors])

    async def retry_selected_feeds(self, urls: Iterable[str]) -> LoadingState:
        """Retry the given feeds.

        Raises:
            UnknownFeedError: a URL is not a configured source.
        """
        known = {s.url for s in self._sources}
        urls = list(dict.fromkeys(urls))
        unknown = [u for u in urls if u not in known]
        if unknown:
            raise UnknownFeedError(urls=unknown)
        return await self._retry(urls)

    async def _retry(self, urls: list[str]) -> LoadingState:
        if not urls:
            return self._state

        if self._token is None or self._token.cancelled:
            self._token = CancellationToken()
        token = self._token

        by_url = {s.url: s for s in self._sources}
        sources = [by_url[u] for u in urls if u in by_url]
        retried = {s.url for s in sources}
        results = self._results
        errors = [e for e in self._state.errors if e.url not in retried]
        total = len(sources)
        loaded = 0

        self._update_state(
            token,
            status=LoadStatus.LOADING,
            progress=0.0,
            loaded_count=0,
            total_count=total,
            errors=tuple(errors),
            current_action=f"Retrying {total} feeds",
        )

        def on_settled() -> None:
            nonlocal loaded
            loaded += 1
            self._update_state(
                token,
                loaded_count=loaded,
                progress=round(loaded / total * 100, 2),
                errors=tuple(errors),
            )

        await self._run_group(
            token,
            sources,
            results,
            errors,
            skip_cache=True,
            on_settled=on_settled,
            semaphore=asyncio.Semaphore(self._batch_size),
        )

        if token.cancelled:
            self._update_state(token, status=LoadStatus.IDLE, current_action="Cancelled")
            return self._state

        self._publish_articles(token, results)
        self._update_state(
            token,
            status=LoadStatus.SUCCESS,
            progress=100.0,
            errors=tuple(errors),
            current_action="Done",
        )
        return self._state

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_loading(self) -> None:
        """Abort the current run; in-flight feeds settle as failed and the state goes idle."""
        token = self._token
        if token is None:
            return
        token.cancel()
        self._set_state(token, replace(self._state, status=LoadStatus.IDLE, current_action="Cancelled"))

    async def shutdown(self) -> None:
        self.cancel_loading()
        pending = [task for _token, task in self._in_flight.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
