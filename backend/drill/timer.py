"""Per-item countdown timer.

A timer counts down whole units. When it reaches zero it emits one
``EXPIRED`` event, shows the time-up state for ``grace_units`` more units
and then emits ``AUTO_ADVANCE``. Each presented item owns a fresh timer;
a cancelled timer never emits again.

The timer can be stepped by hand with ``tick()`` or driven by an asyncio
task started with ``start()``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class TimerEvent(Enum):
    TICK = "tick"
    EXPIRED = "expired"
    AUTO_ADVANCE = "auto_advance"


class TimerPhase(Enum):
    RUNNING = "running"
    GRACE = "grace"  # reached zero, time-up still on screen
    DONE = "done"
    CANCELLED = "cancelled"


TimerListener = Callable[["CountdownTimer", TimerEvent], None]


class CountdownTimer:
    """Countdown bound to one session item."""

    def __init__(
        self,
        item_index: int,
        duration_units: int,
        grace_units: int = 1,
        listener: TimerListener | None = None,
    ) -> None:
        if duration_units < 1:
            raise ValueError(f"duration_units must be positive, got {duration_units}")
        if grace_units < 0:
            raise ValueError(f"grace_units must not be negative, got {grace_units}")
        self.item_index = item_index
        self.duration_units = duration_units
        self.grace_units = grace_units
        self.remaining = duration_units
        self.phase = TimerPhase.RUNNING
        self._grace_left = grace_units
        self._cancelled = False
        self._listener = listener
        self._task: asyncio.Task | None = None

    @property
    def elapsed(self) -> int:
        """Units counted down so far (capped at the duration)."""
        return self.duration_units - self.remaining

    @property
    def expired(self) -> bool:
        return self.remaining == 0

    @property
    def active(self) -> bool:
        return self.phase in (TimerPhase.RUNNING, TimerPhase.GRACE)

    def tick(self) -> list[TimerEvent]:
        """Advance one unit and return the events it produced."""
        if not self.active:
            return []

        events: list[TimerEvent] = []
        if self.phase is TimerPhase.RUNNING:
            self.remaining -= 1
            events.append(TimerEvent.TICK)
            if self.remaining == 0:
                events.append(TimerEvent.EXPIRED)
                self.phase = TimerPhase.GRACE
                if self._grace_left == 0:
                    self.phase = TimerPhase.DONE
                    events.append(TimerEvent.AUTO_ADVANCE)
        else:
            self._grace_left -= 1
            if self._grace_left <= 0:
                self.phase = TimerPhase.DONE
                events.append(TimerEvent.AUTO_ADVANCE)

        fired: list[TimerEvent] = []
        for event in events:
            # The listener may cancel this timer while handling an event
            if self._cancelled:
                break
            fired.append(event)
            if self._listener is not None:
                self._listener(self, event)
        return fired

    def cancel(self) -> None:
        """Discard every pending event. Idempotent."""
        self._cancelled = True
        if self.phase is not TimerPhase.DONE:
            self.phase = TimerPhase.CANCELLED
        if self._task is not None and not self._task.done():
            # Never cancel the task from inside itself; the loop exits on its own
            if self._task is not _current_task():
                self._task.cancel()
        self._task = None

    def start(self, unit_seconds: float) -> asyncio.Task:
        """Drive the timer from the running event loop, one tick per unit."""
        if self._task is not None:
            raise RuntimeError("timer already started")
        self._task = asyncio.get_running_loop().create_task(self._run(unit_seconds))
        return self._task

    async def _run(self, unit_seconds: float) -> None:
        while self.active:
            await asyncio.sleep(unit_seconds)
            self.tick()
        logger.debug("Timer for item %d stopped in phase %s", self.item_index, self.phase.value)

    def __repr__(self) -> str:
        return (
            f"CountdownTimer(item={self.item_index}, remaining={self.remaining}, "
            f"phase={self.phase.value})"
        )


def _current_task() -> asyncio.Task | None:
    with contextlib.suppress(RuntimeError):
        return asyncio.current_task()
    return None
