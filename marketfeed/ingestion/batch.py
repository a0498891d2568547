"""Batch fetching across independent upstream sources."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from marketfeed.config.constants import SourceStatus
from marketfeed.config.settings import settings
from marketfeed.ingestion.base import SourceResult
from marketfeed.ingestion.errors import SourceUnavailable
from marketfeed.ingestion.rate_limiter import RateLimitedQueue
from marketfeed.tasks.cancellation import CancellationToken

logger = logging.getLogger(__name__)

S = TypeVar("S")
T = TypeVar("T")


class BatchFetcher(Generic[S, T]):
    """Runs one round of requests against N independent sources.

    Every source yields exactly one ``SourceResult``: a failure, timeout or
    non-success response turns that source's result offline (carrying its
    fallback value) and never aborts the rest of the batch.
    """

    def __init__(
        self,
        fetch_one: Callable[[S], Awaitable[T]],
        fallback: Callable[[S], T],
        name_of: Callable[[S], str] = str,
        queue: RateLimitedQueue | None = None,
        timeout: float | None = settings.source_timeout,
        degraded_after_ms: int = settings.degraded_latency_ms,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch_one = fetch_one
        self._fallback = fallback
        self._name_of = name_of
        self.queue = queue
        self.timeout = timeout
        self.degraded_after_ms = degraded_after_ms
        self._clock = clock

    async def run(
        self,
        sources: Sequence[S],
        token: CancellationToken | None = None,
    ) -> list[SourceResult[T]]:
        """Fetch every source concurrently.

        Raises:
            asyncio.CancelledError: If the round's token was invalidated
        """
        results = await asyncio.gather(
            *(self._guarded(source) for source in sources),
            return_exceptions=True,
        )

        if token is not None and token.cancelled:
            raise asyncio.CancelledError()

        collected: list[SourceResult[T]] = []
        for source, result in zip(sources, results):
            if isinstance(result, SourceResult):
                collected.append(result)
            else:
                # Cancelled individually, outside of round cancellation
                collected.append(self._offline(source, error=repr(result)))
        return collected

    async def _guarded(self, source: S) -> SourceResult[T]:
        name = self._name_of(source)
        started = self._clock()

        async def _call() -> T:
            nonlocal started
            started = self._clock()
            if self.timeout is None:
                return await self._fetch_one(source)
            return await asyncio.wait_for(self._fetch_one(source), self.timeout)

        try:
            if self.queue is None:
                value = await _call()
            else:
                value = await self.queue.enqueue(_call)
        except SourceUnavailable as e:
            logger.warning(f"{name} unavailable: {e}")
            return self._offline(source, latency_ms=e.latency_ms, error=str(e))
        except asyncio.TimeoutError:
            logger.warning(f"{name} timed out after {self.timeout}s")
            return self._offline(source, error="timeout")
        except Exception as e:
            logger.warning(f"{name} failed: {e}")
            return self._offline(source, error=str(e) or type(e).__name__)

        latency_ms = int(round((self._clock() - started) * 1000))
        status = SourceStatus.DEGRADED if latency_ms > self.degraded_after_ms else SourceStatus.ONLINE
        return SourceResult(source=name, value=value, status=status, latency_ms=latency_ms)

    def _offline(
        self,
        source: S,
        latency_ms: int | None = None,
        error: str | None = None,
    ) -> SourceResult[T]:
        return SourceResult.offline(
            self._name_of(source),
            self._fallback(source),
            latency_ms=latency_ms,
            error=error,
        )
