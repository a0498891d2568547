"""Market data API endpoints, read straight from the shared store."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from marketfeed.api.deps import get_feeds
from marketfeed.config.constants import (
    SLICE_NETWORKS,
    SLICE_OVERVIEW,
    SLICE_PRICES,
    SLICE_TOKENS,
    SLICE_TRANSPORT,
)
from marketfeed.ingestion.aggregator import summarize_sources
from marketfeed.storage.store import RefreshSnapshot
from marketfeed.tasks.feeds import MarketFeeds

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


def _feed_response(feeds: MarketFeeds, name: str) -> dict[str, Any]:
    snapshot: RefreshSnapshot[Any] | None = feeds.store.get(name)
    if snapshot is None:
        raise HTTPException(status_code=503, detail=f"Feed {name} is not running")
    return {
        "feed": name,
        "timestamp": datetime.now(UTC).isoformat(),
        "loading": snapshot.loading,
        "error": snapshot.error,
        "last_updated": snapshot.last_updated.isoformat() if snapshot.last_updated else None,
        "data": _serialize(snapshot.data),
    }


@router.get("/networks")
async def get_networks(feeds: MarketFeeds = Depends(get_feeds)) -> dict[str, Any]:
    """Per-chain stats with the health summary of the last round."""
    response = _feed_response(feeds, SLICE_NETWORKS)
    snapshot = feeds.store.get(SLICE_NETWORKS)
    response["summary"] = summarize_sources(snapshot.data)
    return response


@router.get("/tokens")
async def get_tokens(feeds: MarketFeeds = Depends(get_feeds)) -> dict[str, Any]:
    """Trending tokens with top gainers and losers."""
    return _feed_response(feeds, SLICE_TOKENS)


@router.get("/overview")
async def get_overview(feeds: MarketFeeds = Depends(get_feeds)) -> dict[str, Any]:
    """Global market statistics."""
    return _feed_response(feeds, SLICE_OVERVIEW)


@router.get("/prices")
async def get_prices(feeds: MarketFeeds = Depends(get_feeds)) -> dict[str, Any]:
    """Latest live price per symbol."""
    prices = feeds.store.get(SLICE_PRICES) or {}
    return {
        "timestamp": datetime.now(UTC).isoformat(),
        "data": {symbol: tick.to_dict() for symbol, tick in prices.items()},
    }


@router.get("/transport")
async def get_transport(feeds: MarketFeeds = Depends(get_feeds)) -> dict[str, Any]:
    """Connection state of the live price channel."""
    transport = feeds.store.get(SLICE_TRANSPORT)
    return {
        "timestamp": datetime.now(UTC).isoformat(),
        "data": transport.to_dict() if transport is not None else None,
        "capabilities": [
            {"kind": c.kind, "available": c.available, "reason": c.reason}
            for c in feeds.price_feed.channel.probe()
        ],
    }


@router.post("/{feed}/refetch", status_code=202)
async def refetch(feed: str, feeds: MarketFeeds = Depends(get_feeds)) -> dict[str, Any]:
    """Run a round of ``feed`` now, outside the normal cadence."""
    if feed not in feeds.schedulers:
        raise HTTPException(status_code=404, detail=f"Unknown feed: {feed}")
    logger.info(f"Manual refetch requested for {feed}")
    feeds.refetch(feed)
    return {"feed": feed, "status": "accepted"}
