"""Shared request dependencies."""

from fastapi import HTTPException, Request

from marketfeed.tasks.feeds import MarketFeeds


def get_feeds(request: Request) -> MarketFeeds:
    """The feeds started by the application lifespan."""
    feeds = getattr(request.app.state, "feeds", None)
    if feeds is None:
        raise HTTPException(status_code=503, detail="Market feeds not started")
    return feeds
