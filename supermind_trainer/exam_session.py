"""Exam with free navigation between questions.

Selections live in a scratch buffer keyed by question index and only become
answer records when the exam is finalised, so the answer log always has one
entry per question.  Time on each question accumulates across visits.

With a per-question timer, running out locks that question (its selection,
if any, is kept and can no longer change) and moves forward; on the last
question it finalises the exam.  Revisiting a locked question shows it
read-only and does not restart its countdown.
"""

from __future__ import annotations

import logging

from .drill_core import TestMode, TimerMode
from .results import AnswerRecord, TestResult
from .session import BaseSession, QuestionState, SessionSnapshot, SessionState
from .settings import SessionSettings

logger = logging.getLogger(__name__)


class NavigableExamSession(BaseSession):
    def _reset_question_scratch(self) -> None:
        self._selections: dict[int, int] = {}
        self._time_spent: dict[int, float] = {}
        self._locked: set[int] = set()

    def _prepare_settings(self, settings: SessionSettings) -> SessionSettings:
        return settings.with_changes(test_mode=TestMode.EXAM)

    def _track_skips(self) -> bool:
        return True

    # -- Read API -----------------------------------------------------------
    @property
    def selected_index(self) -> int | None:
        return self._selections.get(self._index)

    @property
    def selections(self) -> dict[int, int]:
        return dict(self._selections)

    @property
    def locked_indices(self) -> frozenset[int]:
        return frozenset(self._locked)

    @property
    def is_locked(self) -> bool:
        return self._index in self._locked

    @property
    def can_go_back(self) -> bool:
        return self._state is SessionState.RUNNING and self._index > 0 and not self._navigating

    @property
    def can_advance(self) -> bool:
        return self._state is SessionState.RUNNING and not self._navigating

    @property
    def can_skip(self) -> bool:
        return self.can_advance and self._settings.allow_skip and not self.is_locked

    @property
    def answered_count(self) -> int:
        return len(self._selections)

    def time_spent_on(self, index: int) -> float:
        spent = self._time_spent.get(index, 0.0)
        if self._state is SessionState.RUNNING and index == self._index and self._shown_at is not None:
            spent += max(0.0, self._clock.now() - self._shown_at)
        return spent

    # -- Intents ------------------------------------------------------------
    def select(self, answer_index: int) -> bool:
        if self._state is not SessionState.RUNNING or self._navigating or self.is_locked:
            return False
        self._questions[self._index].option_at(answer_index)
        self._selections[self._index] = answer_index
        self._question_state = QuestionState.SELECTED
        return True

    def clear_selection(self) -> bool:
        if self._state is not SessionState.RUNNING or self.is_locked:
            return False
        if self._selections.pop(self._index, None) is None:
            return False
        self._question_state = QuestionState.AWAITING_SELECTION
        return True

    def next(self) -> bool:
        """Move forward; on the last question this finalises the exam."""

        if self._state is not SessionState.RUNNING:
            return False
        if self._index >= len(self._questions) - 1:
            if not self._begin_navigation():
                return False
            try:
                self.end_exam()
            finally:
                self._end_navigation()
            return True
        return self._navigate(self._index + 1)

    def advance(self) -> bool:
        return self.next()

    def previous(self) -> bool:
        if not self.can_go_back:
            return False
        return self._navigate(self._index - 1)

    def go_to(self, index: int) -> bool:
        if self._state is not SessionState.RUNNING:
            return False
        if not 0 <= index < len(self._questions):
            raise IndexError(f"question index out of range: {index}")
        if index == self._index:
            return False
        return self._navigate(index)

    def skip(self) -> bool:
        if not self.can_skip:
            return False
        self._selections.pop(self._index, None)
        return self.next()

    def end_exam(self) -> TestResult | None:
        return self.end()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            question_state=self._question_state,
            test_mode=self._settings.test_mode,
            timer_mode=self._settings.timer_mode,
            index=self._index,
            total=len(self._questions),
            question=self.current_question,
            selected_index=self.selected_index,
            locked=self.is_locked,
            can_advance=self.can_advance,
            can_go_back=self.can_go_back,
            can_skip=self.can_skip,
            time_remaining_s=self.time_remaining_s,
            answered=self.answered_count,
            correct=0,
        )

    # -- Internals ----------------------------------------------------------
    def _navigate(self, target: int, *, force: bool = False) -> bool:
        if not self._begin_navigation(force=force):
            return False
        try:
            self._question_state = QuestionState.ADVANCING
            self._capture_time()
            self._index = target
            self._show_current()
        finally:
            self._end_navigation()
        return True

    def _capture_time(self) -> None:
        if self._shown_at is None:
            return
        now = self._clock.now()
        self._time_spent[self._index] = self._time_spent.get(self._index, 0.0) + max(0.0, now - self._shown_at)
        self._shown_at = now

    def _enter_question(self) -> None:
        if self._index in self._locked:
            self._question_state = QuestionState.LOCKED
            if self._settings.timer_mode is TimerMode.PER_QUESTION:
                self._timer.stop()
            return
        if self._index in self._selections:
            self._question_state = QuestionState.SELECTED
        else:
            self._question_state = QuestionState.AWAITING_SELECTION
        self._restart_question_timer()

    def _on_question_timeout(self) -> None:
        if self._state is not SessionState.RUNNING:
            return
        self._locked.add(self._index)
        self._question_state = QuestionState.LOCKED
        logger.debug("exam question %d timed out", self._index + 1)
        if self._index >= len(self._questions) - 1:
            self.end()
            return
        # Bypass the cooldown; a timeout must always move on.
        self._navigate(self._index + 1, force=True)

    def _before_finish(self) -> None:
        self._capture_time()
        self._answers = self._build_answers()

    def _build_answers(self) -> list[AnswerRecord]:
        answers: list[AnswerRecord] = []
        for i, question in enumerate(self._questions):
            choice = self._selections.get(i)
            value = None if choice is None else question.option_at(choice).value
            correct = value is not None and value == question.correct_answer
            spent = self._time_spent.get(i, 0.0)
            answers.append(
                AnswerRecord(
                    question_index=i,
                    question_id=question.id,
                    selected_value=value,
                    is_correct=correct,
                    time_spent_s=spent,
                    skipped=choice is None and i not in self._locked,
                    timed_out=choice is None and i in self._locked,
                )
            )
            question.user_answer = value
            question.is_correct = correct
            question.time_spent_s = spent
        return answers
