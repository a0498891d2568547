"""Live price feed over a transport channel with reconnect backoff."""

import asyncio
import logging
from types import MappingProxyType
from typing import Mapping

from marketfeed.config.constants import SLICE_PRICES, SLICE_TRANSPORT, TransportStatus
from marketfeed.config.settings import settings
from marketfeed.ingestion.market_data.ticker_client import (
    PriceTick,
    TickerClient,
    parse_stream_message,
    stream_url,
)
from marketfeed.storage.store import MarketStateStore, SliceWriter
from marketfeed.tasks.cancellation import CancellationToken
from marketfeed.transport.channel import TransportChannel
from marketfeed.transport.connectors import Connector

logger = logging.getLogger(__name__)


class ExponentialBackoff:
    """Exponential backoff for reconnection."""

    def __init__(self, min_seconds: float = 1.0, max_seconds: float = 30.0) -> None:
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self._current = min_seconds

    def reset(self) -> None:
        """Reset backoff to minimum."""
        self._current = self.min_seconds

    def next(self) -> float:
        """Get next backoff duration and increase for next time."""
        current = self._current
        self._current = min(self._current * 2, self.max_seconds)
        return current


class PriceFeed:
    """Streams ticker updates into the ``prices`` slice.

    Prices are seeded from the REST snapshot, then every stream tick
    replaces its symbol's entry with a direction relative to the last price.
    When the channel closes or errors the feed reconnects with exponential
    backoff, giving up after ``max_attempts`` consecutive failures.
    """

    def __init__(
        self,
        store: MarketStateStore,
        symbols: tuple[str, ...] = tuple(settings.price_symbols),
        ticker_client: TickerClient | None = None,
        url: str = settings.transport_url,
        fallback_url: str = settings.transport_fallback_url,
        connectors: tuple[Connector, ...] | None = None,
        ready_timeout: float = settings.transport_ready_timeout,
        max_attempts: int = settings.price_reconnect_attempts,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self.store = store
        self.symbols = tuple(s.lower() for s in symbols)
        self.ticker_client = ticker_client or TickerClient(symbols=self.symbols)
        self.max_attempts = max_attempts
        self.backoff = backoff or ExponentialBackoff(max_seconds=settings.price_reconnect_max_delay)
        self.attempts = 0

        self._prices: dict[str, PriceTick] = {}
        self._token: CancellationToken | None = None
        self._reconnect: asyncio.TimerHandle | None = None
        self._connecting: asyncio.Task[None] | None = None
        self._writer: SliceWriter | None = None
        self._transport_writer: SliceWriter | None = None

        self.channel = TransportChannel(
            url=url,
            on_message=self._handle_message,
            on_connected=self._handle_connected,
            on_status=self._handle_status,
            fallback_url=stream_url(fallback_url, self.symbols) if fallback_url else None,
            ready_timeout=ready_timeout,
            connectors=connectors,
        )

    @property
    def prices(self) -> Mapping[str, PriceTick]:
        return MappingProxyType(self._prices)

    @property
    def active(self) -> bool:
        return self._token is not None and self._token.alive

    async def start(self) -> None:
        """Seed from REST, then open the live channel."""
        if self.active:
            return
        token = CancellationToken()
        self._token = token
        self._writer = self.store.claim(SLICE_PRICES, owner="price_feed")
        self._transport_writer = self.store.claim(SLICE_TRANSPORT, owner="price_feed")
        self.channel.bind(self._transport_writer)

        try:
            seed = await self.ticker_client.fetch_latest(token)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Price seed failed, waiting for stream: {e}")
            seed = {}

        if not token.alive:
            return
        for tick in seed.values():
            self.apply(tick)
        self._publish(token)
        await self.channel.connect()

    async def stop(self) -> None:
        """Disconnect and cancel any pending reconnect."""
        if self._token is not None:
            self._token.cancel()
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None
        if self._connecting is not None and not self._connecting.done():
            self._connecting.cancel()
        await self.channel.disconnect()

        self.channel.bind(None)
        for writer in (self._writer, self._transport_writer):
            if writer is not None:
                writer.release()
        self._writer = None
        self._transport_writer = None

    def apply(self, tick: PriceTick) -> PriceTick:
        """Record a tick, computing its direction against the last price."""
        directed = tick.following(self._prices.get(tick.symbol))
        self._prices[tick.symbol] = directed
        return directed

    def _publish(self, token: CancellationToken) -> None:
        if token.alive and self._writer is not None:
            self._writer.publish(MappingProxyType(dict(self._prices)))

    def _handle_message(self, data: bytes) -> None:
        token = self._token
        if token is None or not token.alive:
            return
        tick = parse_stream_message(data)
        if tick is None or (self.symbols and tick.symbol not in self.symbols):
            return
        self.apply(tick)
        self._publish(token)

    def _handle_connected(self) -> None:
        self.attempts = 0
        self.backoff.reset()

    def _handle_status(self, status: TransportStatus) -> None:
        token = self._token
        if token is None or not token.alive:
            return
        if status in (TransportStatus.CLOSED, TransportStatus.ERROR):
            self._schedule_reconnect(token)

    def _schedule_reconnect(self, token: CancellationToken) -> None:
        if self._reconnect is not None:
            return
        if self.attempts >= self.max_attempts:
            logger.error(f"Price feed giving up after {self.attempts} reconnect attempts")
            return
        self.attempts += 1
        delay = self.backoff.next()
        logger.info(f"Price feed reconnecting in {delay:g}s (attempt {self.attempts}/{self.max_attempts})")
        loop = asyncio.get_running_loop()
        self._reconnect = loop.call_later(delay, self._reconnect_now, token)

    def _reconnect_now(self, token: CancellationToken) -> None:
        self._reconnect = None
        if token.alive:
            self._connecting = asyncio.create_task(self.channel.connect())
