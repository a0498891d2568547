"""Custom exceptions for marketfeed."""


class MarketFeedError(Exception):
    """Base exception for marketfeed errors."""
    pass


class SourceUnavailable(MarketFeedError):
    """Raised when an upstream answers with a non-success response.

    Carries the measured round-trip time so the failed source still reports
    a real latency.
    """

    def __init__(self, message: str, latency_ms: int | None = None) -> None:
        super().__init__(message)
        self.latency_ms = latency_ms


class RoundFailedError(MarketFeedError):
    """Raised when a whole refresh round could not produce data."""
    pass


class QueueClosedError(MarketFeedError):
    """Raised to callers whose tasks were pending when a queue closed."""
    pass


class SliceOwnershipError(MarketFeedError):
    """Raised when a second writer tries to claim a store slice."""
    pass
