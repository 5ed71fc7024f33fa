from __future__ import annotations

from dataclasses import dataclass

import pytest

from supermind_trainer.drill_core import TimerMode
from supermind_trainer.drill_core import TestMode as Mode
from supermind_trainer.exam_session import NavigableExamSession
from supermind_trainer.persistence import MemoryStore
from supermind_trainer.question_generator import Question, QuestionGenerator
from supermind_trainer.records import TrainerRecords
from supermind_trainer.session import QuestionState, SessionState
from supermind_trainer.settings import SessionSettings


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def _exam(clock: FakeClock, **kwargs: object) -> NavigableExamSession:
    return NavigableExamSession(QuestionGenerator(seed=42), clock=clock, **kwargs)  # type: ignore[arg-type]


def _wrong_index(q: Question) -> int:
    return (q.correct_index + 1) % len(q.options)


def test_practice_settings_are_run_as_exam() -> None:
    session = _exam(FakeClock())
    session.start(SessionSettings(question_count=3, test_mode=Mode.PRACTICE))
    assert session.settings.test_mode is Mode.EXAM


def test_free_navigation_keeps_selections_until_finalised() -> None:
    clock = FakeClock()
    session = _exam(clock)
    session.start(SessionSettings(question_count=4))
    qs = session.questions

    assert session.can_go_back is False
    assert session.select(_wrong_index(qs[0])) is True
    clock.advance(1.0)
    assert session.next() is True
    assert session.select(qs[1].correct_index) is True
    assert session.answers == ()

    clock.advance(1.0)
    assert session.previous() is True
    assert session.current_index == 0
    assert session.selected_index == _wrong_index(qs[0])
    assert session.question_state is QuestionState.SELECTED
    assert session.select(qs[0].correct_index) is True

    clock.advance(1.0)
    assert session.go_to(3) is True
    assert session.question_state is QuestionState.AWAITING_SELECTION
    assert session.select(qs[3].correct_index) is True

    clock.advance(1.0)
    assert session.next() is True
    assert session.state is SessionState.COMPLETED

    result = session.result
    assert result is not None
    assert len(result.answers) == 4
    assert [a.question_index for a in result.answers] == [0, 1, 2, 3]
    assert result.correct_count == 3
    assert result.incorrect_count == 0
    assert result.skipped_count == 1
    assert result.answers[2].skipped is True
    assert result.score_percentage == 75


def test_time_accumulates_across_revisits() -> None:
    clock = FakeClock()
    session = _exam(clock)
    session.start(SessionSettings(question_count=3))

    clock.advance(2.0)
    session.next()
    clock.advance(1.0)
    session.previous()
    clock.advance(3.0)
    assert session.time_spent_on(0) == pytest.approx(5.0)
    session.go_to(2)
    clock.advance(0.5)

    result = session.end_exam()
    assert result is not None
    assert [a.time_spent_s for a in result.answers] == pytest.approx([5.0, 1.0, 0.5])
    assert result.total_time_s == pytest.approx(6.5)


def test_per_question_timeout_locks_and_moves_forward() -> None:
    clock = FakeClock()
    session = _exam(clock)
    session.start(SessionSettings(question_count=3, timer_mode=TimerMode.PER_QUESTION, timer_duration_s=5))
    qs = session.questions

    session.select(qs[0].correct_index)
    for _ in range(5):
        clock.advance(1.0)
        session.update()

    assert session.current_index == 1
    assert session.locked_indices == frozenset({0})
    assert session.time_remaining_s == 5

    clock.advance(0.25)
    assert session.previous() is True
    assert session.is_locked
    assert session.question_state is QuestionState.LOCKED
    assert session.select(_wrong_index(qs[0])) is False
    assert session.skip() is False
    assert session.time_remaining_s == 0

    clock.advance(0.25)
    assert session.next() is True
    for _ in range(5):
        clock.advance(1.0)
        session.update()
    assert session.current_index == 2
    assert session.locked_indices == frozenset({0, 1})

    for _ in range(5):
        clock.advance(1.0)
        session.update()

    assert session.state is SessionState.COMPLETED
    result = session.result
    assert result is not None
    assert result.correct_count == 1
    assert result.skipped_count == 2
    assert result.answers[0].timed_out is False
    assert result.answers[1].timed_out and result.answers[2].timed_out


def test_skip_clears_selection_and_moves_on() -> None:
    clock = FakeClock()
    session = _exam(clock)
    session.start(SessionSettings(question_count=2))

    session.select(0)
    assert session.skip() is True
    assert session.current_index == 1
    assert 0 not in session.selections

    no_skip = _exam(clock)
    no_skip.start(SessionSettings(question_count=2, allow_skip=False))
    assert no_skip.skip() is False


def test_clear_selection() -> None:
    session = _exam(FakeClock())
    session.start(SessionSettings(question_count=2))
    assert session.clear_selection() is False
    session.select(2)
    assert session.clear_selection() is True
    assert session.selected_index is None
    assert session.question_state is QuestionState.AWAITING_SELECTION


def test_navigation_cooldown_and_bounds() -> None:
    clock = FakeClock()
    session = _exam(clock, nav_cooldown_s=0.1)
    session.start(SessionSettings(question_count=5))

    assert session.next() is True
    assert session.next() is False
    assert session.previous() is False
    clock.advance(0.1)
    assert session.previous() is True
    assert session.previous() is False

    clock.advance(0.1)
    assert session.go_to(0) is False
    with pytest.raises(IndexError):
        session.go_to(5)


def test_total_time_expiry_finalises_with_one_record_per_question() -> None:
    clock = FakeClock()
    store = MemoryStore()
    session = _exam(clock, records=TrainerRecords(store))
    session.start(SessionSettings(question_count=6, timer_mode=TimerMode.TOTAL_TIME, timer_duration_s=5))
    qs = session.questions

    session.select(qs[0].correct_index)
    clock.advance(1.0)
    session.next()
    session.select(_wrong_index(qs[1]))

    clock.advance(4.0)
    session.update()

    assert session.state is SessionState.COMPLETED
    result = session.result
    assert result is not None
    assert len(result.answers) == 6
    assert (result.correct_count, result.incorrect_count, result.skipped_count) == (1, 1, 4)
    assert TrainerRecords(store).stats().total_tests == 1

    assert session.end() is result
    assert session.next() is False


def test_snapshot_for_navigable_exam() -> None:
    clock = FakeClock()
    session = _exam(clock)
    session.start(SessionSettings(question_count=3))
    session.select(1)
    clock.advance(1.0)
    session.next()

    snap = session.snapshot()
    assert snap.index == 1
    assert snap.answered == 1
    assert snap.can_go_back is True
    assert snap.selected_index is None
    assert snap.test_mode is Mode.EXAM


def test_duplicate_next_does_not_finalise_from_the_last_question() -> None:
    clock = FakeClock()
    session = _exam(clock, nav_cooldown_s=0.1)
    session.start(SessionSettings(question_count=2))

    assert session.next() is True
    assert session.next() is False
    assert session.state is SessionState.RUNNING
    assert session.current_index == 1

    clock.advance(0.1)
    assert session.next() is True
    assert session.state is SessionState.COMPLETED
