"""
Debounced callback scheduling.

A single shared timer on an asyncio event loop. Each ``schedule()``
re-arms the timer from now, so a burst of calls collapses into one
callback once the loop has been quiet for ``interval`` seconds.

States:
    idle    no timer armed
    armed   timer armed, callback pending
    firing  callback running
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Callable

logger = logging.getLogger("persona_registry.personas.debounce")


class DebounceState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    FIRING = "firing"


class Debouncer:
    """
    Trailing-edge debounce of a zero-argument callback.

    Usage:
        debouncer = Debouncer(save_if_dirty, interval=5.0)
        debouncer.schedule()   # (re)arm
        debouncer.cancel()     # drop the pending call
    """

    def __init__(
        self,
        callback: Callable[[], None],
        interval: float,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        if interval < 0:
            raise ValueError("Debounce interval must be >= 0")
        self.callback = callback
        self.interval = interval
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._state = DebounceState.IDLE

    @property
    def state(self) -> DebounceState:
        return self._state

    @property
    def pending(self) -> bool:
        """True while a callback is armed and hasn't fired yet."""
        return self._state == DebounceState.ARMED

    def schedule(self) -> bool:
        """
        (Re)arm the timer at now + interval.

        Returns False when no event loop is available; the callback is then
        never run and the caller is responsible for persisting explicitly.
        """
        loop = self._resolve_loop()
        if loop is None:
            logger.debug("No running event loop; debounced call not scheduled")
            return False

        self._cancel_handle()
        self._handle = loop.call_later(self.interval, self._fire)
        self._state = DebounceState.ARMED
        return True

    def cancel(self) -> None:
        """Cancel a pending call. Safe to call when idle."""
        self._cancel_handle()
        if self._state == DebounceState.ARMED:
            self._state = DebounceState.IDLE

    def _resolve_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        if self._loop is not None:
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._state = DebounceState.FIRING
        try:
            self.callback()
        finally:
            # The callback may have re-armed us
            if self._state == DebounceState.FIRING:
                self._state = DebounceState.IDLE
