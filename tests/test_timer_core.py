from __future__ import annotations

from dataclasses import dataclass

import pytest

from supermind_trainer.timer import CountdownTimer


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def test_ticks_once_per_second_and_completes_once() -> None:
    clock = FakeClock()
    timer = CountdownTimer(clock)
    ticks: list[int] = []
    done: list[bool] = []

    timer.start(3, on_tick=ticks.append, on_complete=lambda: done.append(True))
    assert ticks == [3]
    assert timer.is_running

    for _ in range(12):
        clock.advance(0.25)
        timer.update()

    assert ticks == [3, 2, 1, 0]
    assert done == [True]
    assert timer.is_running is False

    clock.advance(5.0)
    timer.update()
    assert done == [True]


def test_remaining_uses_whole_seconds() -> None:
    clock = FakeClock()
    timer = CountdownTimer(clock)
    timer.start(10)

    clock.advance(2.9)
    assert timer.remaining_s == 8
    assert timer.elapsed_s == pytest.approx(2.9)
    status = timer.status()
    assert status.is_running and status.duration_s == 10 and status.remaining_s == 8


def test_restart_cancels_previous_countdown() -> None:
    clock = FakeClock()
    timer = CountdownTimer(clock)
    first: list[str] = []
    second: list[str] = []

    timer.start(2, on_complete=lambda: first.append("done"))
    clock.advance(1.5)
    timer.update()
    timer.start(2, on_complete=lambda: second.append("done"))

    clock.advance(1.0)
    timer.update()
    assert first == [] and second == []

    clock.advance(1.0)
    timer.update()
    assert first == []
    assert second == ["done"]


def test_stop_suppresses_callbacks() -> None:
    clock = FakeClock()
    timer = CountdownTimer(clock)
    fired: list[int] = []
    timer.start(1, on_tick=fired.append, on_complete=lambda: fired.append(-1))
    timer.stop()

    clock.advance(3.0)
    timer.update()
    assert fired == [1]
    assert timer.remaining_s == 0


def test_restart_from_tick_callback_ends_old_dispatch() -> None:
    clock = FakeClock()
    timer = CountdownTimer(clock)
    completions: list[str] = []

    def on_tick(remaining: int) -> None:
        if remaining == 0:
            timer.start(5, on_complete=lambda: completions.append("new"))

    timer.start(1, on_tick=on_tick, on_complete=lambda: completions.append("old"))
    clock.advance(1.0)
    timer.update()

    assert completions == []
    assert timer.is_running
    assert timer.duration_s == 5


def test_zero_duration_completes_on_start_and_negative_is_rejected() -> None:
    clock = FakeClock()
    timer = CountdownTimer(clock)
    done: list[bool] = []
    timer.start(0, on_complete=lambda: done.append(True))
    assert done == [True]

    with pytest.raises(ValueError):
        timer.start(-1)


def test_reset_clears_duration() -> None:
    clock = FakeClock()
    timer = CountdownTimer(clock)
    timer.start(30)
    timer.reset()
    assert timer.is_running is False
    assert timer.duration_s == 0
    assert timer.remaining_s == 0
