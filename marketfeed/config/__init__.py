"""Configuration module for marketfeed."""

from .settings import settings
from .constants import SourceStatus, TransportStatus, PriceDirection

__all__ = ["settings", "SourceStatus", "TransportStatus", "PriceDirection"]
