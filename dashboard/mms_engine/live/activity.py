"""
Activity monitor: turns visibility and user-activity input into
DISCONNECT / RECONNECT signals for registered observers.

The monitor is owned by the composition root. Observers register explicitly
and receive a handle they use to unregister; there is no module-level
registry.

Invariants:
    - DISCONNECT is emitted once the client has been hidden for the whole
      inactivity delay
    - RECONNECT is emitted only after a DISCONNECT, on the next visibility or
      activity input
    - An observer raising never prevents delivery to the others

How to change safely:
    - Timers run on the running asyncio loop; inputs must be fed from it
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_DELAY = 10 * 60.0


class ActivitySignal(str, Enum):
    DISCONNECT = "disconnect"
    RECONNECT = "reconnect"


ActivityObserver = Callable[[ActivitySignal], None]


@dataclass
class ObserverHandle:
    """Registration handle returned by ActivityMonitor.register()."""

    observer_id: int
    _monitor: Optional[ActivityMonitor] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._monitor is not None and self._monitor.is_registered(self)

    def unregister(self) -> None:
        """Stop receiving signals. Safe to call twice."""
        if self._monitor is not None:
            self._monitor.unregister(self)
            self._monitor = None


class ActivityMonitor:
    """Observer registry with an inactivity timer.

    Example:
        >>> monitor = ActivityMonitor(inactivity_delay=600)
        >>> handle = monitor.register(subscriptions.on_activity)
        >>> monitor.set_visible(False)   # timer starts
        >>> monitor.record_activity()    # reconnects if it had fired
        >>> handle.unregister()
    """

    def __init__(self, inactivity_delay: float = DEFAULT_INACTIVITY_DELAY) -> None:
        self.inactivity_delay = inactivity_delay
        self.visible = True
        self.inactive = False
        self._observers: Dict[int, ActivityObserver] = {}
        self._ids = itertools.count(1)
        self._timer: Optional[asyncio.TimerHandle] = None

    def register(self, observer: ActivityObserver) -> ObserverHandle:
        handle = ObserverHandle(next(self._ids), self)
        self._observers[handle.observer_id] = observer
        return handle

    def unregister(self, handle: ObserverHandle) -> None:
        self._observers.pop(handle.observer_id, None)

    def is_registered(self, handle: ObserverHandle) -> bool:
        return handle.observer_id in self._observers

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def set_visible(self, visible: bool) -> None:
        """Visibility input. Hiding starts the timer; showing cancels it."""
        self.visible = visible
        if not visible:
            logger.debug(f"Hidden, disconnecting in {self.inactivity_delay}s unless active")
            self._start_timer()
            return

        self._cancel_timer()
        if self.inactive:
            self._reconnect()

    def record_activity(self) -> None:
        """User activity input (pointer, keyboard, touch, scroll)."""
        if self.inactive:
            logger.info("Activity detected, reconnecting")
            self._reconnect()
        if not self.visible:
            self._start_timer()

    def notify(self, signal: ActivitySignal) -> None:
        """Deliver a signal to every registered observer."""
        for observer_id, observer in list(self._observers.items()):
            try:
                observer(signal)
            except Exception:
                logger.exception(
                    "Activity observer raised",
                    extra={"observer_id": observer_id, "signal": signal.value},
                )

    def close(self) -> None:
        """Cancel the timer and drop every observer."""
        self._cancel_timer()
        self._observers.clear()

    def _start_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.inactivity_delay, self._on_inactive)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_inactive(self) -> None:
        self._timer = None
        self.inactive = True
        logger.info(
            "Inactive, disconnecting live queries",
            extra={"inactivity_delay": self.inactivity_delay, "observers": len(self._observers)},
        )
        self.notify(ActivitySignal.DISCONNECT)

    def _reconnect(self) -> None:
        self.inactive = False
        self.notify(ActivitySignal.RECONNECT)
