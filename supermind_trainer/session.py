"""Session state machines for multiplication drills.

A session walks a fixed sequence of generated questions:

    IDLE -> RUNNING(index) -> COMPLETED

and each shown question moves through

    AWAITING_SELECTION -> SELECTED -> (LOCKED | ADVANCING)

Everything is driven synchronously by user intents (``select``, ``advance``,
``skip``) and by :meth:`update`, which the owner calls from its loop to let
the countdown timer and the practice auto-advance fire.  Time comes only
from the injected ``Clock``.

``LinearSession`` is the answer-then-forward flow used for practice and for
linear exams.  The free-navigation exam lives in ``exam_session``.

Policies of the linear flow:

* A per-question timeout locks the question and records a null answer when
  the user advances; it never advances on its own.
* In exam mode the selection can be changed until ``advance``.  In practice
  mode with ``auto_advance`` the first selection reveals feedback, locks the
  choice and advances after ``feedback_delay_s``.
* A total-time timeout ends the session at once; questions never reached
  count as incorrect (skipped in exam mode).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .clock import Clock
from .drill_core import TestMode, TimerMode
from .question_generator import Question, QuestionGenerator
from .records import TrainerRecords
from .results import AnswerRecord, TestResult, compute_result
from .settings import SessionSettings
from .timer import CountdownTimer

logger = logging.getLogger(__name__)

DEFAULT_FEEDBACK_DELAY_S = 1.0
DEFAULT_NAV_COOLDOWN_S = 0.1


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


class QuestionState(str, Enum):
    AWAITING_SELECTION = "awaiting_selection"
    SELECTED = "selected"
    LOCKED = "locked"
    ADVANCING = "advancing"


class SessionView(Protocol):
    """Presentation collaborator. Receives plain data only."""

    def update_question(self, question: Question, number: int, total: int) -> None: ...
    def update_progress(self, index: int, total: int) -> None: ...
    def update_timer(self, remaining_s: int) -> None: ...
    def update_results(self, result: TestResult) -> None: ...


class NullView:
    def update_question(self, question: Question, number: int, total: int) -> None:
        pass

    def update_progress(self, index: int, total: int) -> None:
        pass

    def update_timer(self, remaining_s: int) -> None:
        pass

    def update_results(self, result: TestResult) -> None:
        pass


@dataclass(frozen=True, slots=True)
class Feedback:
    is_correct: bool
    selected_value: int
    correct_answer: int

    @property
    def explanation(self) -> str:
        return f"= {self.correct_answer}"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    state: SessionState
    question_state: QuestionState | None
    test_mode: TestMode
    timer_mode: TimerMode
    index: int
    total: int
    question: Question | None
    selected_index: int | None
    locked: bool
    can_advance: bool
    can_go_back: bool
    can_skip: bool
    time_remaining_s: int | None
    answered: int
    correct: int
    feedback: Feedback | None = None


class BaseSession:
    """Shared lifecycle, timing and persistence for both session variants."""

    def __init__(
        self,
        generator: QuestionGenerator,
        *,
        clock: Clock,
        timer: CountdownTimer | None = None,
        records: TrainerRecords | None = None,
        view: SessionView | None = None,
        nav_cooldown_s: float = DEFAULT_NAV_COOLDOWN_S,
    ) -> None:
        self._generator = generator
        self._clock = clock
        self._timer = timer if timer is not None else CountdownTimer(clock)
        self._records = records
        self._view: SessionView = view if view is not None else NullView()
        self._nav_cooldown_s = float(nav_cooldown_s)

        self._settings = SessionSettings()
        self._state = SessionState.IDLE
        self._question_state: QuestionState | None = None
        self._questions: list[Question] = []
        self._answers: list[AnswerRecord] = []
        self._index = 0
        self._started_at: float | None = None
        self._shown_at: float | None = None
        self._result: TestResult | None = None

        self._navigating = False
        self._nav_ready_at = 0.0
        self._reset_question_scratch()

    # -- Read API -----------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def question_state(self) -> QuestionState | None:
        return self._question_state

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    @property
    def questions(self) -> tuple[Question, ...]:
        return tuple(self._questions)

    @property
    def answers(self) -> tuple[AnswerRecord, ...]:
        return tuple(self._answers)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_question(self) -> Question | None:
        if self._state is not SessionState.RUNNING or self._index >= len(self._questions):
            return None
        return self._questions[self._index]

    @property
    def result(self) -> TestResult | None:
        return self._result

    @property
    def is_navigating(self) -> bool:
        return self._navigating

    @property
    def time_remaining_s(self) -> int | None:
        if self._state is not SessionState.RUNNING or self._settings.timer_mode is TimerMode.OFF:
            return None
        if not self._timer.is_running:
            # A stopped countdown only reads as expired on a locked question.
            return 0 if self._question_state is QuestionState.LOCKED else None
        return self._timer.remaining_s

    def set_view(self, view: SessionView | None) -> None:
        self._view = view if view is not None else NullView()

    # -- Lifecycle ----------------------------------------------------------
    def start(self, settings: SessionSettings) -> None:
        settings = self._prepare_settings(settings.validate())
        self.cleanup()

        self._settings = settings
        self._questions = self._generator.generate_questions(
            settings.question_count,
            difficulty=settings.difficulty,
            rule=settings.rule,
            avoid_duplicates=True,
        )
        self._answers = []
        self._index = 0
        self._result = None
        self._started_at = self._clock.now()
        self._state = SessionState.RUNNING
        self._reset_question_scratch()
        logger.info(
            "session started: %d questions, %s, timer=%s",
            len(self._questions),
            settings.test_mode.value,
            settings.timer_mode.value,
        )

        if settings.timer_mode is TimerMode.TOTAL_TIME:
            self._timer.start(settings.timer_duration_s, self._on_timer_tick, self._on_total_timeout)
        self._show_current()

    def update(self) -> None:
        if self._state is not SessionState.RUNNING:
            return
        self._timer.update()

    def end(self) -> TestResult | None:
        """Complete the session. Calling it again returns the same result."""

        if self._state is SessionState.COMPLETED:
            return self._result
        if self._state is not SessionState.RUNNING:
            return None
        self._before_finish()
        return self._finish()

    def cleanup(self) -> None:
        self._timer.stop()
        self._state = SessionState.IDLE
        self._question_state = None
        self._questions = []
        self._answers = []
        self._index = 0
        self._started_at = None
        self._shown_at = None
        self._result = None
        self._navigating = False
        self._nav_ready_at = 0.0
        self._reset_question_scratch()

    # -- Hooks --------------------------------------------------------------
    def _prepare_settings(self, settings: SessionSettings) -> SessionSettings:
        return settings

    def _reset_question_scratch(self) -> None:
        pass

    def _before_finish(self) -> None:
        pass

    def _track_skips(self) -> bool:
        return self._settings.test_mode is TestMode.EXAM

    def _on_question_timeout(self) -> None:
        raise NotImplementedError

    def _on_total_timeout(self) -> None:
        if self._state is SessionState.RUNNING:
            logger.info("total time expired at question %d/%d", self._index + 1, len(self._questions))
            self.end()

    # -- Internals ----------------------------------------------------------
    def _show_current(self) -> None:
        question = self._questions[self._index]
        self._shown_at = self._clock.now()
        self._enter_question()
        self._notify("update_question", question, self._index + 1, len(self._questions))
        self._notify("update_progress", self._index, len(self._questions))

    def _enter_question(self) -> None:
        self._question_state = QuestionState.AWAITING_SELECTION
        self._restart_question_timer()

    def _restart_question_timer(self) -> None:
        if self._settings.timer_mode is TimerMode.PER_QUESTION:
            self._timer.start(self._settings.timer_duration_s, self._on_timer_tick, self._on_question_timeout)

    def _on_timer_tick(self, remaining_s: int) -> None:
        self._notify("update_timer", remaining_s)

    def _begin_navigation(self, *, force: bool = False) -> bool:
        if self._navigating:
            return False
        if not force and self._clock.now() < self._nav_ready_at:
            return False
        self._navigating = True
        return True

    def _end_navigation(self) -> None:
        self._navigating = False
        self._nav_ready_at = self._clock.now() + self._nav_cooldown_s

    def _finish(self) -> TestResult:
        self._timer.stop()
        assert self._started_at is not None
        result = compute_result(
            self._questions,
            self._answers,
            started_at_s=self._started_at,
            ended_at_s=self._clock.now(),
            settings=self._settings,
            track_skips=self._track_skips(),
        )
        self._result = result
        self._state = SessionState.COMPLETED
        self._question_state = None
        logger.info(
            "session completed: %d/%d correct (%d%%) in %.1fs",
            result.correct_count,
            result.total_questions,
            result.score_percentage,
            result.total_time_s,
        )
        self._persist(result)
        self._notify("update_results", result)
        return result

    def _persist(self, result: TestResult) -> None:
        if self._records is None:
            return
        try:
            self._records.save_result(result)
        except Exception:
            logger.exception("failed to persist session result; keeping in-memory result only")

    def _notify(self, method: str, *args: object) -> None:
        try:
            getattr(self._view, method)(*args)
        except Exception:
            logger.exception("view.%s failed", method)


class LinearSession(BaseSession):
    """Answer-then-forward flow for practice and linear exams."""

    def __init__(
        self,
        generator: QuestionGenerator,
        *,
        clock: Clock,
        timer: CountdownTimer | None = None,
        records: TrainerRecords | None = None,
        view: SessionView | None = None,
        nav_cooldown_s: float = DEFAULT_NAV_COOLDOWN_S,
        feedback_delay_s: float = DEFAULT_FEEDBACK_DELAY_S,
    ) -> None:
        self._feedback_delay_s = float(feedback_delay_s)
        super().__init__(
            generator,
            clock=clock,
            timer=timer,
            records=records,
            view=view,
            nav_cooldown_s=nav_cooldown_s,
        )

    @property
    def selected_index(self) -> int | None:
        return self._selected

    @property
    def feedback(self) -> Feedback | None:
        return self._feedback

    @property
    def is_locked(self) -> bool:
        return self._question_state is QuestionState.LOCKED

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    @property
    def can_advance(self) -> bool:
        if self._state is not SessionState.RUNNING or self._navigating:
            return False
        return self._selected is not None or self._timed_out

    @property
    def can_skip(self) -> bool:
        return (
            self._state is SessionState.RUNNING
            and self._settings.test_mode is TestMode.EXAM
            and self._settings.allow_skip
            and not self._navigating
        )

    @property
    def auto_advance_pending(self) -> bool:
        return self._auto_advance_at is not None

    def _uses_auto_advance(self) -> bool:
        return self._settings.test_mode is TestMode.PRACTICE and self._settings.auto_advance

    # -- Intents ------------------------------------------------------------
    def select(self, answer_index: int) -> bool:
        if self._state is not SessionState.RUNNING or self._navigating:
            return False
        if self._question_state not in (QuestionState.AWAITING_SELECTION, QuestionState.SELECTED):
            return False
        question = self._questions[self._index]
        option = question.option_at(answer_index)

        if self._uses_auto_advance():
            if self._selected is not None:
                return False
            self._selected = answer_index
            self._feedback = Feedback(
                is_correct=option.value == question.correct_answer,
                selected_value=option.value,
                correct_answer=question.correct_answer,
            )
            # Committed answer; a per-question countdown must not void it.
            if self._settings.timer_mode is TimerMode.PER_QUESTION:
                self._timer.stop()
            self._auto_advance_at = self._clock.now() + self._feedback_delay_s
        else:
            self._selected = answer_index

        self._question_state = QuestionState.SELECTED
        return True

    def advance(self) -> bool:
        if not self.can_advance:
            return False
        if not self._begin_navigation():
            return False
        try:
            self._record_current(skipped=False)
            self._move_forward()
        finally:
            self._end_navigation()
        return True

    def next(self) -> bool:
        return self.advance()

    def skip(self) -> bool:
        if not self.can_skip:
            return False
        if not self._begin_navigation():
            return False
        try:
            self._record_current(skipped=True)
            self._move_forward()
        finally:
            self._end_navigation()
        return True

    def update(self) -> None:
        super().update()
        if self._state is not SessionState.RUNNING or self._auto_advance_at is None:
            return
        if self._clock.now() >= self._auto_advance_at:
            self._auto_advance_at = None
            self.advance()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            question_state=self._question_state,
            test_mode=self._settings.test_mode,
            timer_mode=self._settings.timer_mode,
            index=self._index,
            total=len(self._questions),
            question=self.current_question,
            selected_index=self._selected,
            locked=self.is_locked,
            can_advance=self.can_advance,
            can_go_back=False,
            can_skip=self.can_skip,
            time_remaining_s=self.time_remaining_s,
            answered=len(self._answers),
            correct=sum(1 for a in self._answers if a.is_correct),
            feedback=self._feedback,
        )

    # -- Internals ----------------------------------------------------------
    def _reset_question_scratch(self) -> None:
        self._selected: int | None = None
        self._timed_out = False
        self._feedback: Feedback | None = None
        self._auto_advance_at: float | None = None

    def _enter_question(self) -> None:
        self._reset_question_scratch()
        super()._enter_question()

    def _on_question_timeout(self) -> None:
        if self._state is not SessionState.RUNNING or self._question_state is QuestionState.ADVANCING:
            return
        self._timed_out = True
        self._question_state = QuestionState.LOCKED
        self._auto_advance_at = None
        logger.debug("question %d timed out", self._index + 1)

    def _record_current(self, *, skipped: bool) -> None:
        self._question_state = QuestionState.ADVANCING
        question = self._questions[self._index]
        assert self._shown_at is not None
        time_spent = max(0.0, self._clock.now() - self._shown_at)

        value: int | None = None
        correct = False
        if not skipped and not self._timed_out and self._selected is not None:
            value = question.option_at(self._selected).value
            correct = value == question.correct_answer

        self._answers.append(
            AnswerRecord(
                question_index=self._index,
                question_id=question.id,
                selected_value=value,
                is_correct=correct,
                time_spent_s=time_spent,
                skipped=skipped,
                timed_out=self._timed_out,
            )
        )
        question.user_answer = value
        question.is_correct = correct
        question.time_spent_s = time_spent

    def _move_forward(self) -> None:
        self._index += 1
        if self._index >= len(self._questions):
            self._reset_question_scratch()
            self._finish()
        else:
            self._show_current()
