"""CoinGecko cryptocurrency data client."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pycoingecko import CoinGeckoAPI

from marketfeed.config.constants import QUEUE_COINGECKO
from marketfeed.config.settings import settings
from marketfeed.ingestion.aggregator import (
    TokensSnapshot,
    rank_trending,
    top_movers,
    trending_ids,
)
from marketfeed.ingestion.base import DataSource
from marketfeed.ingestion.errors import RoundFailedError
from marketfeed.ingestion.parsing import safe_float, safe_int
from marketfeed.ingestion.rate_limiter import RateLimitedQueue, run_blocking
from marketfeed.tasks.cancellation import CancellationToken


@dataclass(frozen=True)
class MarketOverview:
    """Overall crypto market data."""

    total_market_cap: float
    total_volume: float
    btc_dominance: float
    eth_dominance: float
    market_cap_change_24h: float
    active_cryptocurrencies: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_market_cap": self.total_market_cap,
            "total_volume": self.total_volume,
            "btc_dominance": self.btc_dominance,
            "eth_dominance": self.eth_dominance,
            "market_cap_change_24h": self.market_cap_change_24h,
            "active_cryptocurrencies": self.active_cryptocurrencies,
            "timestamp": self.timestamp.isoformat(),
        }


def _check(token: CancellationToken | None) -> None:
    if token is not None and token.cancelled:
        raise asyncio.CancelledError()


class CryptoClient(DataSource[TokensSnapshot]):
    """CoinGecko API client for trending tokens and market rankings."""

    source_name = "crypto"
    queue_name = QUEUE_COINGECKO

    def __init__(
        self,
        client: Any = None,
        queue: RateLimitedQueue | None = None,
        vs_currency: str = settings.vs_currency,
        trending_limit: int = settings.trending_limit,
        movers_limit: int = settings.movers_limit,
    ) -> None:
        super().__init__(queue=queue)
        self._client = client or CoinGeckoAPI()
        self.vs_currency = vs_currency
        self.trending_limit = trending_limit
        self.movers_limit = movers_limit

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Run a blocking pycoingecko call through the queue."""
        func = getattr(self._client, method)
        return await self._with_queue(method, lambda: run_blocking(func, *args, **kwargs))

    async def health_check(self) -> bool:
        """Check CoinGecko API availability."""
        try:
            await self._call("ping")
            return True
        except Exception as e:
            self.logger.error(f"CoinGecko health check failed: {e}")
            return False

    async def get_trending_ids(self) -> list[tuple[str, int]]:
        """Top trending coin ids with their 1-based rank."""
        data = await self._call("get_search_trending")
        return trending_ids(data, self.trending_limit)

    async def get_markets(
        self,
        ids: list[str] | None = None,
        per_page: int = 100,
        page: int = 1,
    ) -> list[dict[str, Any]]:
        """Market records ordered by market cap, with a 7d change window."""
        params: dict[str, Any] = {
            "vs_currency": self.vs_currency,
            "order": "market_cap_desc",
            "per_page": per_page,
            "page": page,
            "sparkline": False,
            "price_change_percentage": "7d",
        }
        if ids:
            params["ids"] = ",".join(ids)

        data = await self._call("get_coins_markets", **params)
        if not isinstance(data, list):
            raise RoundFailedError(f"Unexpected markets payload: {type(data).__name__}")
        return [coin for coin in data if isinstance(coin, dict)]

    async def fetch_latest(self, token: CancellationToken | None = None) -> TokensSnapshot:
        """Trending list plus gainers and losers from the top 100.

        The three requests depend on each other, so any failure fails the
        whole round.
        """
        ranks = await self.get_trending_ids()
        _check(token)

        trending_markets: list[dict[str, Any]] = []
        if ranks:
            trending_markets = await self.get_markets(ids=[coin_id for coin_id, _ in ranks], per_page=50)
            _check(token)

        top_markets = await self.get_markets(per_page=100)
        _check(token)

        gainers, losers = top_movers(top_markets, self.movers_limit)
        return TokensSnapshot(
            trending=rank_trending(trending_markets, ranks),
            gainers=gainers,
            losers=losers,
        )

    async def get_market_overview(self, token: CancellationToken | None = None) -> MarketOverview:
        """Get overall crypto market statistics."""
        raw = await self._call("get_global")
        _check(token)

        market_data = raw.get("data", raw) if isinstance(raw, dict) else None
        if not isinstance(market_data, dict):
            raise RoundFailedError("Unexpected global payload")

        total_market_cap = market_data.get("total_market_cap") or {}
        total_volume = market_data.get("total_volume") or {}
        dominance = market_data.get("market_cap_percentage") or {}

        return MarketOverview(
            total_market_cap=safe_float(total_market_cap.get(self.vs_currency)),
            total_volume=safe_float(total_volume.get(self.vs_currency)),
            btc_dominance=safe_float(dominance.get("btc")),
            eth_dominance=safe_float(dominance.get("eth")),
            market_cap_change_24h=safe_float(market_data.get("market_cap_change_percentage_24h_usd")),
            active_cryptocurrencies=safe_int(market_data.get("active_cryptocurrencies"), 0) or 0,
        )
