"""Base classes for data ingestion."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Generic, TypeVar

from marketfeed.config.constants import OFFLINE_LATENCY_MS, SourceStatus
from marketfeed.ingestion.rate_limiter import QueueRegistry, RateLimitedQueue
from marketfeed.tasks.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SourceResult(Generic[T]):
    """Outcome of one upstream within a batch round.

    Attributes:
        source: Name of the upstream
        value: Fetched value, or the source's fallback when offline
        status: online, degraded or offline
        latency_ms: Measured round trip, or the offline sentinel
        timestamp: When the result was produced
        error: Short failure description for offline sources
    """

    source: str
    value: T
    status: SourceStatus
    latency_ms: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    error: str | None = None

    @classmethod
    def offline(
        cls,
        source: str,
        fallback: T,
        latency_ms: int | None = None,
        error: str | None = None,
    ) -> "SourceResult[T]":
        return cls(
            source=source,
            value=fallback,
            status=SourceStatus.OFFLINE,
            latency_ms=OFFLINE_LATENCY_MS if latency_ms is None else latency_ms,
            error=error,
        )

    @property
    def is_offline(self) -> bool:
        return self.status == SourceStatus.OFFLINE

    def to_dict(self) -> dict[str, Any]:
        value = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        return {
            "source": self.source,
            "value": value,
            "status": self.status.value,
            "latency_ms": self.latency_ms,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


class DataSource(ABC, Generic[T]):
    """Abstract base class for data sources.

    Provides the upstream queue and logging infrastructure.
    """

    source_name: str = "base"
    queue_name: str | None = None

    def __init__(self, queue: RateLimitedQueue | None = None) -> None:
        if queue is None and self.queue_name:
            queue = QueueRegistry.get(self.queue_name)
        self.queue = queue
        self.logger = logging.getLogger(f"datasource.{self.source_name}")

    async def _with_queue(self, method: str, fetch_func: Callable[[], Awaitable[Any]]) -> Any:
        """Execute through the upstream queue when one applies.

        Args:
            method: Method name for logging
            fetch_func: Async function to fetch data

        Returns:
            Freshly fetched data
        """
        try:
            if self.queue is None:
                return await fetch_func()
            return await self.queue.enqueue(fetch_func)
        except Exception as e:
            self.logger.warning(f"Fetch error for {method}: {e}")
            raise

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if data source is available."""
        ...

    @abstractmethod
    async def fetch_latest(self, token: CancellationToken | None = None) -> T:
        """Fetch one round of data from source."""
        ...
