"""Repeat-after-completion refresh loop bound to a consumer's lifetime."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Awaitable, Callable, Generic, TypeVar

from marketfeed.storage.store import MarketStateStore, RefreshSnapshot, RefreshState, SliceWriter
from marketfeed.tasks.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

RoundFunc = Callable[[CancellationToken], Awaitable[T]]


class RefreshScheduler(Generic[T]):
    """Polls a round function, publishing each result into the store.

    ``start()`` runs the first round immediately; every settled round arms a
    single-shot timer for the next one. Each round runs under a child of the
    activation token and a newer round invalidates the older one, so the
    state always reflects the most recently started round. No write happens
    once ``stop()`` has been called.
    """

    def __init__(
        self,
        name: str,
        fetch_round: RoundFunc[T],
        interval: float,
        initial: T,
        store: MarketStateStore | None = None,
    ) -> None:
        self.name = name
        self.interval = interval
        self._fetch_round = fetch_round
        self._store = store
        self._state: RefreshState[T] = RefreshState(data=initial)
        self._writer: SliceWriter | None = None
        self._activation: CancellationToken | None = None
        self._round_token: CancellationToken | None = None
        self._round: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self.rounds_started = 0

    @property
    def state(self) -> RefreshState[T]:
        return self._state

    @property
    def active(self) -> bool:
        return self._activation is not None and self._activation.alive

    def snapshot(self) -> RefreshSnapshot[T]:
        """Read-only view with a manual refresh hook."""
        state = self._state
        return RefreshSnapshot(
            data=state.data,
            loading=state.loading,
            error=state.error,
            last_updated=state.last_updated,
            refetch=self.refetch,
        )

    def start(self) -> None:
        """Bind to the consumer and run round 1 now."""
        if self.active:
            return
        self._activation = CancellationToken()
        if self._store is not None:
            self._writer = self._store.claim(self.name, owner=f"scheduler:{self.name}")
            self._writer.publish(self.snapshot())
        logger.info(f"Refresh scheduler {self.name} started (every {self.interval:g}s)")
        self._launch_round()

    def stop(self) -> None:
        """Cancel the timer and in-flight round; no state writes afterwards."""
        if self._activation is not None:
            self._activation.cancel()
        self._cancel_timer()
        self._cancel_round()
        if self._writer is not None:
            self._writer.release()
            self._writer = None
        logger.info(f"Refresh scheduler {self.name} stopped")

    def refetch(self) -> None:
        """Run a round now, outside the normal cadence."""
        if not self.active:
            logger.debug(f"Ignoring refetch on inactive scheduler {self.name}")
            return
        self._cancel_timer()
        self._launch_round()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_round(self) -> None:
        if self._round_token is not None:
            self._round_token.cancel()
        if self._round is not None and not self._round.done():
            self._round.cancel()
        self._round = None

    def _launch_round(self) -> None:
        # The previous round is cancelled before the next is issued.
        self._cancel_round()
        token = self._activation.child()
        self._round_token = token
        self.rounds_started += 1
        self._round = asyncio.create_task(self._run_round(token))

    def _write(self, token: CancellationToken, **changes) -> None:
        if not token.alive:
            return
        self._state = self._state.evolve(**changes)
        if self._writer is not None:
            self._writer.publish(self.snapshot())

    async def _run_round(self, token: CancellationToken) -> None:
        self._write(token, loading=True)
        try:
            data = await self._fetch_round(token)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not token.alive or (current is not None and current.cancelling()):
                return
            # Cancelled from below (an upstream call, a closed queue); the
            # round still failed and the loop keeps polling.
            logger.error(f"Refresh round for {self.name} was cancelled upstream")
            self._write(token, loading=False, error="Fetch cancelled")
        except Exception as e:
            if token.alive:
                logger.error(f"Refresh round for {self.name} failed: {e}")
            self._write(token, loading=False, error=str(e) or "Fetch failed")
        else:
            self._write(
                token,
                data=data,
                loading=False,
                error=None,
                last_updated=datetime.now(UTC),
            )

        if token.alive:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.interval, self._on_timer, token)

    def _on_timer(self, token: CancellationToken) -> None:
        self._timer = None
        if token.alive:
            self._launch_round()
