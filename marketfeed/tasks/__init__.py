"""Refresh orchestration: cancellation, schedulers and live feeds.

Only the token is re-exported here; the ingestion layer imports it, and
the scheduler modules depend on storage.
"""

from .cancellation import CancellationToken

__all__ = ["CancellationToken"]
