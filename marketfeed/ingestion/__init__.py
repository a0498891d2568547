"""Data ingestion module for marketfeed."""

from .base import DataSource, SourceResult
from .batch import BatchFetcher
from .rate_limiter import QueueRegistry, RateLimitedQueue

__all__ = ["DataSource", "SourceResult", "BatchFetcher", "QueueRegistry", "RateLimitedQueue"]
