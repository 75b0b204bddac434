"""Cooperative cancellation token for a single responding period."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .exceptions import GenerationCancelled

logger = logging.getLogger("silicon_chat.cancellation")


class CancellationToken:
    """Request cooperative termination of one in-flight unit of work.

    A token is allocated when a request starts responding and invalidated when
    that period ends. Cancelling an invalidated token does nothing, so a late
    stop action can never leak into the next request.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._valid = True
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def valid(self) -> bool:
        return self._valid

    def cancel(self) -> bool:
        """Signal cancellation. Returns ``True`` if this call had an effect."""
        if not self._valid or self._event.is_set():
            return False
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("[SiliconChat] Cancellation callback failed.", exc_info=True)
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run *callback* on cancellation (immediately if already cancelled)."""
        if self._event.is_set():
            callback()
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled()

    def invalidate(self) -> None:
        """End the token's responding period."""
        self._valid = False
        self._callbacks.clear()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, valid={self.valid})"
