"""Pure cross-source aggregation over collected round results."""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from marketfeed.config.constants import UNRANKED, SourceStatus
from marketfeed.ingestion.base import SourceResult
from marketfeed.ingestion.parsing import safe_float, safe_int


@dataclass(frozen=True)
class TokenQuote:
    """Market data for one token."""

    id: str
    symbol: str
    name: str
    image: str
    market_cap_rank: int | None
    price: float
    price_change_24h: float
    price_change_7d: float
    volume_24h: float
    market_cap: float
    trending_rank: int = UNRANKED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "image": self.image,
            "market_cap_rank": self.market_cap_rank,
            "price": self.price,
            "price_change_24h": self.price_change_24h,
            "price_change_7d": self.price_change_7d,
            "volume_24h": self.volume_24h,
            "market_cap": self.market_cap,
            "trending_rank": self.trending_rank,
        }


@dataclass(frozen=True)
class TokensSnapshot:
    """Trending tokens with top movers."""

    trending: tuple[TokenQuote, ...] = field(default=())
    gainers: tuple[TokenQuote, ...] = field(default=())
    losers: tuple[TokenQuote, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "trending": [t.to_dict() for t in self.trending],
            "gainers": [t.to_dict() for t in self.gainers],
            "losers": [t.to_dict() for t in self.losers],
        }


def to_token(coin: Mapping[str, Any], trending_rank: int | None = None) -> TokenQuote:
    """Convert a /coins/markets record; missing fields become neutral values."""
    return TokenQuote(
        id=str(coin.get("id") or ""),
        symbol=str(coin.get("symbol") or "").upper(),
        name=str(coin.get("name") or ""),
        image=str(coin.get("image") or ""),
        market_cap_rank=safe_int(coin.get("market_cap_rank")),
        price=safe_float(coin.get("current_price")),
        price_change_24h=safe_float(coin.get("price_change_percentage_24h")),
        price_change_7d=safe_float(coin.get("price_change_percentage_7d_in_currency")),
        volume_24h=safe_float(coin.get("total_volume")),
        market_cap=safe_float(coin.get("market_cap")),
        trending_rank=UNRANKED if trending_rank is None else trending_rank,
    )


def trending_ids(payload: Any, limit: int) -> list[tuple[str, int]]:
    """Extract (coin id, 1-based rank) pairs from a /search/trending payload."""
    coins = payload.get("coins") if isinstance(payload, Mapping) else None
    if not isinstance(coins, list):
        return []

    ranked = []
    for position, coin in enumerate(coins[:limit], start=1):
        item = coin.get("item") if isinstance(coin, Mapping) else None
        coin_id = item.get("id") if isinstance(item, Mapping) else None
        if coin_id:
            ranked.append((str(coin_id), position))
    return ranked


def rank_trending(
    markets: Iterable[Mapping[str, Any]],
    ranks: Sequence[tuple[str, int]],
) -> tuple[TokenQuote, ...]:
    """Market records for trending coins, ordered by trending rank."""
    rank_map = dict(ranks)
    tokens = [to_token(coin, rank_map.get(str(coin.get("id")))) for coin in markets]
    return tuple(sorted(tokens, key=lambda t: t.trending_rank))


def top_movers(
    markets: Iterable[Mapping[str, Any]],
    limit: int,
) -> tuple[tuple[TokenQuote, ...], tuple[TokenQuote, ...]]:
    """Top gainers and losers by 24h change.

    Ties keep the input order, so identical input always gives identical
    output.
    """
    tokens = [to_token(coin) for coin in markets]
    ordered = sorted(tokens, key=lambda t: t.price_change_24h, reverse=True)
    gainers = tuple(ordered[:limit])
    losers = tuple(reversed(ordered[-limit:])) if limit > 0 else ()
    return gainers, losers


def summarize_sources(results: Sequence[SourceResult[Any]]) -> dict[str, Any]:
    """Counts per status and mean latency of the sources that responded."""
    counts = {status.value: 0 for status in SourceStatus}
    for result in results:
        counts[result.status.value] += 1

    responding = [r.latency_ms for r in results if not r.is_offline]
    avg_latency = round(sum(responding) / len(responding)) if responding else None

    return {
        "total": len(results),
        "counts": counts,
        "avg_latency_ms": avg_latency,
    }
