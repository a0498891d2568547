"""Market data clients - chain RPC, CoinGecko, Binance tickers."""

from .chain_client import ChainClient, ChainStats
from .crypto_client import CryptoClient, MarketOverview
from .ticker_client import PriceTick, TickerClient

__all__ = [
    "ChainClient",
    "ChainStats",
    "CryptoClient",
    "MarketOverview",
    "PriceTick",
    "TickerClient",
]
