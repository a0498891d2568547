"""Cancellation tokens for rounds, activations and connections."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """Liveness flag shared by every continuation of one operation.

    A token is created per activation (or per round, as a child of the
    activation token) and invalidated exactly once. Code that is about to
    mutate shared state checks ``alive`` first; once the token is cancelled
    the write is skipped.
    """

    def __init__(self, parent: "CancellationToken | None" = None) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []
        self._parent = parent
        if parent is not None:
            parent.on_cancel(self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def alive(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        """Invalidate the token and run cancellation callbacks once."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._parent is not None:
            # Superseded children must not pile up on a long-lived parent
            self._parent._discard(self.cancel)
            self._parent = None
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def _discard(self, callback: Callable[[], None]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def child(self) -> "CancellationToken":
        """Create a token that is cancelled together with this one."""
        return CancellationToken(parent=self)

    def __repr__(self) -> str:
        return f"CancellationToken(alive={self.alive})"
