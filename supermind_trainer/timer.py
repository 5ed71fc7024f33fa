from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass

from .clock import Clock

TickCallback = Callable[[int], None]
CompleteCallback = Callable[[], None]


@dataclass(frozen=True, slots=True)
class TimerStatus:
    is_running: bool
    remaining_s: int
    elapsed_s: float
    duration_s: int


class CountdownTimer:
    """Cooperative countdown with one-second ticks.

    Nothing runs in the background: the owner calls :meth:`update` from its
    loop and the timer fires ``on_tick(remaining)`` whenever the whole-second
    remaining value changes, then ``on_complete()`` once when it reaches zero.

    ``start`` cancels and replaces any running countdown.  Callbacks that
    restart or stop the timer end the current dispatch, so a superseded run
    can never deliver a late callback.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._duration_s = 0
        self._started_at: float | None = None
        self._on_tick: TickCallback | None = None
        self._on_complete: CompleteCallback | None = None
        self._running = False
        self._last_reported: int | None = None
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def duration_s(self) -> int:
        return self._duration_s

    @property
    def remaining_s(self) -> int:
        if not self._running or self._started_at is None:
            return self._duration_s if self._started_at is None else 0
        elapsed = int(math.floor(self._clock.now() - self._started_at))
        return max(0, self._duration_s - elapsed)

    @property
    def elapsed_s(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, self._clock.now() - self._started_at)

    def start(
        self,
        duration_s: float,
        on_tick: TickCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> None:
        if duration_s < 0:
            raise ValueError("duration_s must be >= 0")
        self.stop()
        self._generation += 1
        self._duration_s = int(duration_s)
        self._started_at = self._clock.now()
        self._on_tick = on_tick
        self._on_complete = on_complete
        self._running = True
        self._last_reported = None
        self.update()

    def stop(self) -> None:
        self._running = False
        self._on_tick = None
        self._on_complete = None

    def reset(self) -> None:
        self.stop()
        self._started_at = None
        self._duration_s = 0

    def update(self) -> None:
        if not self._running:
            return
        generation = self._generation
        remaining = self.remaining_s

        if remaining != self._last_reported:
            self._last_reported = remaining
            if self._on_tick is not None:
                self._on_tick(remaining)
            if generation != self._generation or not self._running:
                return

        if remaining <= 0:
            on_complete = self._on_complete
            self.stop()
            if on_complete is not None:
                on_complete()

    def status(self) -> TimerStatus:
        return TimerStatus(
            is_running=self._running,
            remaining_s=self.remaining_s,
            elapsed_s=self.elapsed_s,
            duration_s=self._duration_s,
        )
