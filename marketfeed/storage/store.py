"""In-memory publish/subscribe store for shared market state."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Generic, TypeVar

from marketfeed.ingestion.errors import SliceOwnershipError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[str, Any], None]


@dataclass(frozen=True)
class RefreshState(Generic[T]):
    """State of one periodically refreshed feed.

    ``loading`` is only true between a round's start and its settle, and
    ``error`` only carries whole-round failures.
    """

    data: T
    loading: bool = False
    error: str | None = None
    last_updated: datetime | None = None

    def evolve(self, **changes: Any) -> "RefreshState[T]":
        return replace(self, **changes)


@dataclass(frozen=True)
class RefreshSnapshot(Generic[T]):
    """Read-only view handed to the presentation layer."""

    data: T
    loading: bool
    error: str | None
    last_updated: datetime | None
    refetch: Callable[[], None] = field(repr=False, compare=False)


class SliceWriter:
    """Write handle for a single store slice."""

    def __init__(self, store: "MarketStateStore", key: str, owner: str) -> None:
        self._store = store
        self.key = key
        self.owner = owner
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def publish(self, value: Any) -> None:
        if self._released:
            logger.debug(f"Dropped write to {self.key} from released writer {self.owner}")
            return
        self._store._publish(self.key, value)

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._store._release(self.key, self)


class MarketStateStore:
    """Single-writer, many-reader state store.

    Each slice (networks, tokens, transport, ...) is claimed by exactly one
    writer; readers only ``get``, ``snapshot`` and ``subscribe``.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._writers: dict[str, SliceWriter] = {}
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def claim(self, key: str, owner: str) -> SliceWriter:
        """Claim the write handle for a slice.

        Raises:
            SliceOwnershipError: If another owner currently holds the slice
        """
        current = self._writers.get(key)
        if current is not None and current.owner != owner:
            raise SliceOwnershipError(f"Slice {key} is owned by {current.owner}")
        if current is not None:
            current._released = True
        writer = SliceWriter(self, key, owner)
        self._writers[key] = writer
        return writer

    def owner_of(self, key: str) -> str | None:
        writer = self._writers.get(key)
        return writer.owner if writer else None

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def snapshot(self) -> dict[str, Any]:
        """Shallow copy of every published slice."""
        return dict(self._values)

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for a slice; returns an unsubscribe function."""
        self._subscribers[key].append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers[key].remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def _publish(self, key: str, value: Any) -> None:
        self._values[key] = value
        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(key, value)
            except Exception:
                logger.exception(f"Subscriber for {key} failed")

    def _release(self, key: str, writer: SliceWriter) -> None:
        if self._writers.get(key) is writer:
            del self._writers[key]
