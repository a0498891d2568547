"""Tests for batch fetching across sources."""

import asyncio
import pytest

from marketfeed.config.constants import OFFLINE_LATENCY_MS, SourceStatus
from marketfeed.ingestion.batch import BatchFetcher
from marketfeed.ingestion.errors import SourceUnavailable
from marketfeed.ingestion.rate_limiter import RateLimitedQueue
from marketfeed.tasks.cancellation import CancellationToken


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def fallback(source: str) -> dict:
    return {"name": source, "block": 0}


class TestBatchFetcher:
    """Tests for BatchFetcher."""

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_every_source(self):
        """Test that M failing sources of N still yield N results."""
        failing = {"b", "d"}

        async def fetch(source: str) -> dict:
            if source in failing:
                raise ConnectionError("refused")
            return {"name": source, "block": 42}

        fetcher = BatchFetcher(fetch, fallback)
        results = await fetcher.run(["a", "b", "c", "d", "e"])

        assert [r.source for r in results] == ["a", "b", "c", "d", "e"]
        offline = [r for r in results if r.status == SourceStatus.OFFLINE]
        assert {r.source for r in offline} == failing
        for r in offline:
            assert r.value == fallback(r.source)
            assert r.latency_ms == OFFLINE_LATENCY_MS
            assert r.error == "refused"
        assert all(r.value["block"] == 42 for r in results if not r.is_offline)

    @pytest.mark.asyncio
    async def test_all_sources_failing(self):
        """Test that a fully failed batch still returns one result per source."""

        async def fetch(source: str) -> dict:
            raise RuntimeError()

        results = await BatchFetcher(fetch, fallback).run(["a", "b"])

        assert len(results) == 2
        assert all(r.is_offline for r in results)
        assert results[0].error == "RuntimeError"

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        """Test a batch without sources."""

        async def fetch(source: str) -> dict:
            return {}

        assert await BatchFetcher(fetch, fallback).run([]) == []

    @pytest.mark.asyncio
    async def test_degraded_when_slow(self):
        """Test that slow but correct responses are degraded, not offline."""
        clock = FakeClock()

        async def fetch(source: str) -> dict:
            clock.now += 3.5 if source == "slow" else 0.25
            return {"name": source, "block": 1}

        fetcher = BatchFetcher(fetch, fallback, timeout=None, clock=clock, degraded_after_ms=3000)
        fast, slow = await fetcher.run(["fast", "slow"])

        assert fast.status == SourceStatus.ONLINE
        assert slow.status == SourceStatus.DEGRADED
        assert slow.value == {"name": "slow", "block": 1}
        assert slow.latency_ms >= 3500

    @pytest.mark.asyncio
    async def test_unavailable_keeps_measured_latency(self):
        """Test that a non-success response records its latency."""

        async def fetch(source: str) -> dict:
            raise SourceUnavailable("HTTP 503", latency_ms=120)

        (result,) = await BatchFetcher(fetch, fallback).run(["a"])

        assert result.is_offline
        assert result.latency_ms == 120
        assert result.error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_timeout_is_offline(self):
        """Test that a source exceeding the timeout goes offline."""

        async def fetch(source: str) -> dict:
            if source == "hang":
                await asyncio.sleep(10)
            return {"name": source, "block": 7}

        fetcher = BatchFetcher(fetch, fallback, timeout=0.05)
        ok, hung = await fetcher.run(["ok", "hang"])

        assert ok.status == SourceStatus.ONLINE
        assert hung.is_offline
        assert hung.error == "timeout"
        assert hung.latency_ms == OFFLINE_LATENCY_MS

    @pytest.mark.asyncio
    async def test_through_queue(self):
        """Test that requests pass through the upstream queue."""
        queue = RateLimitedQueue(max_concurrent=1, min_interval=0)
        running = 0
        peak = 0

        async def fetch(source: str) -> dict:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return {"name": source}

        results = await BatchFetcher(fetch, fallback, queue=queue).run(["a", "b", "c"])

        assert peak == 1
        assert [r.status for r in results] == [SourceStatus.ONLINE] * 3

    @pytest.mark.asyncio
    async def test_cancelled_round_raises(self):
        """Test that a cancelled token aborts the round instead of returning."""
        token = CancellationToken()

        async def fetch(source: str) -> dict:
            token.cancel()
            return {"name": source}

        with pytest.raises(asyncio.CancelledError):
            await BatchFetcher(fetch, fallback).run(["a"], token)
