"""Shared market state storage module."""

from .store import MarketStateStore, RefreshSnapshot, RefreshState, SliceWriter

__all__ = ["MarketStateStore", "RefreshSnapshot", "RefreshState", "SliceWriter"]
