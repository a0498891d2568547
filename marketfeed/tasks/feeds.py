"""Standard market feeds wired to the shared store."""

import asyncio
import logging
from typing import Any

from marketfeed.config.constants import SLICE_NETWORKS, SLICE_OVERVIEW, SLICE_TOKENS
from marketfeed.config.settings import Settings, settings as default_settings
from marketfeed.ingestion.aggregator import TokensSnapshot
from marketfeed.ingestion.market_data import ChainClient, CryptoClient, TickerClient
from marketfeed.ingestion.rate_limiter import QueueRegistry
from marketfeed.storage.store import MarketStateStore, RefreshSnapshot
from marketfeed.tasks.price_feed import PriceFeed
from marketfeed.tasks.scheduler import RefreshScheduler

logger = logging.getLogger(__name__)


class MarketFeeds:
    """Owns the refresh schedulers and the live price feed.

    One instance per consumer: ``start()`` on activation, ``stop()`` before
    the consumer goes away.
    """

    def __init__(
        self,
        store: MarketStateStore | None = None,
        chain_client: ChainClient | None = None,
        crypto_client: CryptoClient | None = None,
        price_feed: PriceFeed | None = None,
        config: Settings = default_settings,
    ) -> None:
        self.store = store or MarketStateStore()
        self.chain_client = chain_client or ChainClient()
        self.crypto_client = crypto_client or CryptoClient()
        self.price_feed = price_feed or PriceFeed(
            self.store,
            symbols=tuple(config.price_symbols),
            ticker_client=TickerClient(symbols=config.price_symbols),
        )

        self._price_start: asyncio.Task[None] | None = None

        self.schedulers: dict[str, RefreshScheduler[Any]] = {
            SLICE_NETWORKS: RefreshScheduler(
                SLICE_NETWORKS,
                self.chain_client.fetch_latest,
                interval=config.refresh_interval_networks,
                initial=[],
                store=self.store,
            ),
            SLICE_TOKENS: RefreshScheduler(
                SLICE_TOKENS,
                self.crypto_client.fetch_latest,
                interval=config.refresh_interval_tokens,
                initial=TokensSnapshot(),
                store=self.store,
            ),
            SLICE_OVERVIEW: RefreshScheduler(
                SLICE_OVERVIEW,
                self.crypto_client.get_market_overview,
                interval=config.refresh_interval_overview,
                initial=None,
                store=self.store,
            ),
        }

    async def start(self, with_prices: bool = True) -> None:
        """Activate every scheduler and, optionally, the live price feed.

        The price feed seeds and connects in the background; this returns
        without waiting on the REST snapshot or transport readiness.
        """
        for scheduler in self.schedulers.values():
            scheduler.start()
        if with_prices and self._price_start is None:
            self._price_start = asyncio.create_task(self.price_feed.start())
            self._price_start.add_done_callback(self._price_feed_started)
        logger.info(f"Market feeds started: {', '.join(self.schedulers)}")

    @staticmethod
    def _price_feed_started(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Price feed failed to start: {error}", exc_info=error)

    async def stop(self) -> None:
        """Deactivate everything; no state changes after this returns."""
        for scheduler in self.schedulers.values():
            scheduler.stop()
        starting, self._price_start = self._price_start, None
        if starting is not None and not starting.done():
            starting.cancel()
            await asyncio.wait({starting})
        await self.price_feed.stop()
        logger.info("Market feeds stopped")

    def snapshot(self, name: str) -> RefreshSnapshot[Any]:
        """Consumption view of one feed.

        Raises:
            KeyError: If no feed has that name
        """
        return self.schedulers[name].snapshot()

    def refetch(self, name: str) -> None:
        self.schedulers[name].refetch()

    @staticmethod
    def shutdown_queues() -> None:
        """Settle every outstanding queued request."""
        QueueRegistry.reset()
