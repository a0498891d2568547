"""API routers module."""

from . import health, market

__all__ = ["health", "market"]
