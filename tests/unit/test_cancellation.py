"""Unit tests for cancellation tokens and per-fetch deadlines."""

from __future__ import annotations

import asyncio

import pytest

from feedrelay.middleware.error_handler import FeedTimeoutError, LoadCancelledError
from feedrelay.services.cancellation import (
    CancellationToken,
    cancellable_sleep,
    run_with_deadline,
)


class TestCancellationToken:
    def test_initial_state(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_with_reason(self):
        token = CancellationToken()
        token.cancel("Superseded")
        assert token.cancelled is True
        with pytest.raises(LoadCancelledError, match="Superseded"):
            token.raise_if_cancelled()

    def test_default_reason(self):
        token = CancellationToken()
        token.cancel()
        assert token.reason == "Request was cancelled"


class TestRunWithDeadline:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work():
            return 42

        assert await run_with_deadline(work(), timeout=1.0, token=CancellationToken()) == 42

    @pytest.mark.asyncio
    async def test_propagates_errors(self):
        async def work():
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            await run_with_deadline(work(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_deadline_cancels_the_work(self):
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(FeedTimeoutError):
            await run_with_deadline(slow(), timeout=0.01)
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_token_stops_the_work(self):
        token = CancellationToken()

        async def slow():
            await asyncio.sleep(10)

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel("Stopped by user")

        asyncio.ensure_future(cancel_soon())
        with pytest.raises(LoadCancelledError, match="Stopped by user"):
            await run_with_deadline(slow(), timeout=5.0, token=token)

    @pytest.mark.asyncio
    async def test_already_cancelled_token_never_starts_the_work(self):
        token = CancellationToken()
        token.cancel()
        started = []

        async def work():
            started.append(True)

        with pytest.raises(LoadCancelledError):
            await run_with_deadline(work(), timeout=1.0, token=token)
        assert started == []

    @pytest.mark.asyncio
    async def test_sibling_fetches_are_independent(self):
        async def slow():
            await asyncio.sleep(10)

        async def fast():
            return "ok"

        results = await asyncio.gather(
            run_with_deadline(slow(), timeout=0.01),
            run_with_deadline(fast(), timeout=1.0),
            return_exceptions=True,
        )
        assert isinstance(results[0], FeedTimeoutError)
        assert results[1] == "ok"


class TestCancellableSleep:
    @pytest.mark.asyncio
    async def test_sleeps_without_token(self):
        await cancellable_sleep(0.001)

    @pytest.mark.asyncio
    async def test_completes_when_not_cancelled(self):
        await cancellable_sleep(0.001, CancellationToken())

    @pytest.mark.asyncio
    async def test_wakes_early_on_cancel(self):
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)

        started = loop.time()
        with pytest.raises(LoadCancelledError):
            await cancellable_sleep(5.0, token)
        assert loop.time() - started < 1.0
