"""Concurrency and pacing limiter for upstream API calls."""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

from marketfeed.config.constants import QUEUE_BINANCE, QUEUE_COINGECKO
from marketfeed.config.settings import settings
from marketfeed.ingestion.errors import QueueClosedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

QueueTask = Callable[[], Awaitable[T]]


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking call in a worker thread.

    The thread cannot be interrupted, so cancellation waits for it to
    return before propagating. A queue slot running this call therefore
    stays occupied for as long as the upstream request is in flight.
    """
    call = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
    try:
        return await asyncio.shield(call)
    except asyncio.CancelledError:
        await asyncio.wait({call})
        if not call.cancelled():
            call.exception()
        raise


class RateLimitedQueue:
    """FIFO task queue bounding concurrency and spacing per upstream.

    At most ``max_concurrent`` tasks run at once. After a task finishes its
    concurrency slot stays occupied for ``min_interval`` seconds, so the next
    task on that slot starts no sooner than the interval after the previous
    one finished.

    Attributes:
        name: Upstream family served by this queue
        max_concurrent: Maximum simultaneously running tasks
        min_interval: Seconds a slot is held after its task finishes
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        min_interval: float = 0.2,
        name: str = "default",
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.name = name
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self._pending: deque[tuple[QueueTask[Any], asyncio.Future[Any]]] = deque()
        self._active = 0
        self._draining = False
        self._closed = False
        self._runners: dict[asyncio.Task[None], asyncio.Future[Any]] = {}

    @property
    def active(self) -> int:
        """Number of occupied concurrency slots."""
        return self._active

    @property
    def pending(self) -> int:
        """Number of tasks waiting for a slot."""
        return len(self._pending)

    async def enqueue(self, task: QueueTask[T]) -> T:
        """Submit a task and wait for its result.

        The task's own exception is re-raised here and nowhere else.
        """
        if self._closed:
            raise QueueClosedError(f"Queue {self.name} is closed")

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._pending.append((task, future))
        self._drain()
        return await future

    def _drain(self) -> None:
        """Start pending tasks while capacity remains."""
        if self._draining:
            return
        self._draining = True
        try:
            while self._active < self.max_concurrent and self._pending:
                task, future = self._pending.popleft()
                if future.done():
                    # Caller stopped waiting before the task got a slot
                    continue
                self._active += 1
                runner = asyncio.create_task(self._run(task, future))
                self._runners[runner] = future
                runner.add_done_callback(self._forget)
        finally:
            self._draining = False

    def _forget(self, runner: asyncio.Task[None]) -> None:
        self._runners.pop(runner, None)

    async def _run(self, task: QueueTask[Any], future: asyncio.Future[Any]) -> None:
        try:
            await self._settle(task, future)
            await asyncio.sleep(self.min_interval)
        finally:
            self._active -= 1
            if not self._closed:
                self._drain()

    @staticmethod
    async def _settle(task: QueueTask[Any], future: asyncio.Future[Any]) -> None:
        call = asyncio.ensure_future(task())

        def _abandon(f: asyncio.Future[Any]) -> None:
            if f.cancelled():
                call.cancel()

        future.add_done_callback(_abandon)
        try:
            result = await call
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)

    def close(self) -> None:
        """Reject pending and running tasks, then cancel the running ones.

        Every caller still waiting receives ``QueueClosedError``.
        """
        self._closed = True
        while self._pending:
            _, future = self._pending.popleft()
            if not future.done():
                future.set_exception(QueueClosedError(f"Queue {self.name} closed"))
        for runner, future in list(self._runners.items()):
            if not future.done():
                future.set_exception(QueueClosedError(f"Queue {self.name} closed"))
            runner.cancel()
        logger.debug(f"Queue {self.name} closed")


class QueueRegistry:
    """Registry handing out one queue per upstream family."""

    _queues: dict[str, RateLimitedQueue] = {}

    _defaults: dict[str, tuple[int, float]] = {
        QUEUE_BINANCE: (settings.binance_max_concurrent, settings.binance_min_interval),
        QUEUE_COINGECKO: (settings.coingecko_max_concurrent, settings.coingecko_min_interval),
    }

    @classmethod
    def get(
        cls,
        name: str,
        max_concurrent: int | None = None,
        min_interval: float | None = None,
    ) -> RateLimitedQueue:
        """Get or create a queue by name."""
        if name not in cls._queues:
            default_concurrent, default_interval = cls._defaults.get(name, (3, 0.2))
            cls._queues[name] = RateLimitedQueue(
                max_concurrent=max_concurrent or default_concurrent,
                min_interval=default_interval if min_interval is None else min_interval,
                name=name,
            )
        return cls._queues[name]

    @classmethod
    def reset(cls, name: str | None = None) -> None:
        """Close and forget one or all queues."""
        if name:
            queue = cls._queues.pop(name, None)
            if queue:
                queue.close()
        else:
            for queue in cls._queues.values():
                queue.close()
            cls._queues.clear()
