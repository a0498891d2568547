"""Binance 24h ticker snapshot and stream message parsing."""

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence

import httpx

from marketfeed.config.constants import QUEUE_BINANCE, PriceDirection
from marketfeed.config.settings import settings
from marketfeed.ingestion.base import DataSource
from marketfeed.ingestion.errors import SourceUnavailable
from marketfeed.ingestion.parsing import safe_float
from marketfeed.ingestion.rate_limiter import RateLimitedQueue
from marketfeed.tasks.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceTick:
    """Latest 24h ticker for one symbol."""

    symbol: str
    price: float
    change_24h: float
    high_24h: float
    low_24h: float
    volume_24h: float
    direction: PriceDirection = PriceDirection.NEUTRAL

    def following(self, previous: "PriceTick | None") -> "PriceTick":
        """Copy of this tick with direction relative to ``previous``."""
        if previous is None or self.price == previous.price:
            direction = PriceDirection.NEUTRAL
        elif self.price > previous.price:
            direction = PriceDirection.UP
        else:
            direction = PriceDirection.DOWN
        return replace(self, direction=direction)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change_24h": self.change_24h,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "volume_24h": self.volume_24h,
            "direction": self.direction.value,
        }


def stream_url(base_url: str, symbols: Sequence[str]) -> str:
    """Combined-stream URL subscribing to each symbol's ticker."""
    streams = "/".join(f"{s.lower()}@ticker" for s in symbols)
    return f"{base_url}?streams={streams}"


def _tick_from_rest(record: Mapping[str, Any]) -> PriceTick | None:
    symbol = record.get("symbol")
    if not isinstance(symbol, str) or not symbol:
        return None
    return PriceTick(
        symbol=symbol.lower(),
        price=safe_float(record.get("lastPrice")),
        change_24h=safe_float(record.get("priceChangePercent")),
        high_24h=safe_float(record.get("highPrice")),
        low_24h=safe_float(record.get("lowPrice")),
        volume_24h=safe_float(record.get("volume")),
    )


def parse_stream_message(raw: bytes | str) -> PriceTick | None:
    """Parse a combined-stream ticker message; anything else yields None."""
    try:
        message = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        logger.debug("Ignoring non-JSON stream message")
        return None

    data = message.get("data") if isinstance(message, dict) else None
    if not isinstance(data, dict) or not isinstance(data.get("s"), str):
        return None

    return PriceTick(
        symbol=data["s"].lower(),
        price=safe_float(data.get("c")),
        change_24h=safe_float(data.get("P")),
        high_24h=safe_float(data.get("h")),
        low_24h=safe_float(data.get("l")),
        volume_24h=safe_float(data.get("v")),
    )


class TickerClient(DataSource[dict[str, PriceTick]]):
    """Binance public REST client for 24h ticker snapshots."""

    source_name = "ticker"
    queue_name = QUEUE_BINANCE

    def __init__(
        self,
        symbols: Sequence[str] = tuple(settings.price_symbols),
        base_url: str = settings.binance_rest_url,
        transport: httpx.AsyncBaseTransport | None = None,
        queue: RateLimitedQueue | None = None,
        timeout: float = settings.http_timeout,
    ) -> None:
        super().__init__(queue=queue)
        self.symbols = tuple(s.lower() for s in symbols)
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        async def _fetch() -> Any:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}{path}", params=params)
            if not resp.is_success:
                raise SourceUnavailable(f"Binance {path} returned {resp.status_code}")
            return resp.json()

        return await self._with_queue(path, _fetch)

    async def health_check(self) -> bool:
        """Check Binance REST availability."""
        try:
            await self._get("/api/v3/ping")
            return True
        except Exception as e:
            self.logger.error(f"Binance health check failed: {e}")
            return False

    async def fetch_latest(self, token: CancellationToken | None = None) -> dict[str, PriceTick]:
        """24h tickers for the configured symbols, keyed by lowercase symbol."""
        symbols = json.dumps([s.upper() for s in self.symbols], separators=(",", ":"))
        data = await self._get("/api/v3/ticker/24hr", params={"symbols": symbols})

        ticks: dict[str, PriceTick] = {}
        for record in data if isinstance(data, list) else []:
            tick = _tick_from_rest(record) if isinstance(record, dict) else None
            if tick is not None:
                ticks[tick.symbol] = tick
        return ticks
