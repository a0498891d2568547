"""Pytest configuration and fixtures."""

import pytest

from marketfeed.ingestion.rate_limiter import QueueRegistry, RateLimitedQueue
from marketfeed.storage.store import MarketStateStore


@pytest.fixture(autouse=True)
def reset_queues():
    """Every test starts without registered upstream queues."""
    QueueRegistry.reset()
    yield
    QueueRegistry.reset()


@pytest.fixture
def store() -> MarketStateStore:
    return MarketStateStore()


@pytest.fixture
def fast_queue() -> RateLimitedQueue:
    """Queue without pacing, for tests that don't measure time."""
    return RateLimitedQueue(max_concurrent=4, min_interval=0, name="test")


@pytest.fixture
def sample_markets() -> list[dict]:
    """/coins/markets records as returned by CoinGecko."""

    def coin(coin_id: str, symbol: str, rank: int, change_24h, price: float = 1.0) -> dict:
        return {
            "id": coin_id,
            "symbol": symbol,
            "name": coin_id.title(),
            "image": f"https://assets.example/{coin_id}.png",
            "market_cap_rank": rank,
            "current_price": price,
            "price_change_percentage_24h": change_24h,
            "price_change_percentage_7d_in_currency": 1.5,
            "total_volume": 1_000_000,
            "market_cap": 10_000_000 * (20 - rank),
        }

    return [
        coin("bitcoin", "btc", 1, 2.5, 65000.0),
        coin("ethereum", "eth", 2, -1.2, 3200.0),
        coin("solana", "sol", 5, 8.4, 150.0),
        coin("dogecoin", "doge", 8, -6.3, 0.12),
        coin("chainlink", "link", 12, 0.0, 14.0),
        coin("pepe", "pepe", 19, None, 0.00001),
    ]


@pytest.fixture
def sample_trending() -> dict:
    """/search/trending payload."""
    return {
        "coins": [
            {"item": {"id": "pepe", "score": 0}},
            {"item": {"id": "solana", "score": 1}},
            {"item": {"id": "dogecoin", "score": 2}},
        ]
    }
