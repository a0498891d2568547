"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketfeed.config.settings import settings
from marketfeed.tasks.feeds import MarketFeeds

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("Starting MarketFeed API...")

    feeds = MarketFeeds()
    app.state.feeds = feeds
    # Returns once the schedulers are armed; the price feed connects in the background
    await feeds.start()

    yield

    # Shutdown
    logger.info("Shutting down MarketFeed API...")
    await feeds.stop()
    MarketFeeds.shutdown_queues()
    logger.info("MarketFeed API shut down")


app = FastAPI(
    title="MarketFeed API",
    description="Real-time crypto market data feeds",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else ["http://localhost:8501"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and include routers
from marketfeed.api.routers import health, market

app.include_router(health.router, tags=["Health"])
app.include_router(market.router, prefix="/api/v1/market", tags=["Market Data"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "name": "MarketFeed API",
        "version": "1.0.0",
        "docs": "/docs" if settings.debug else "disabled",
    }
