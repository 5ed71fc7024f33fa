from __future__ import annotations

import csv
import io
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .clock import utc_now_iso
from .drill_core import Difficulty, TestMode, TimerMode, percentage, round_half_up
from .question_generator import Question
from .settings import SessionSettings


@dataclass(frozen=True, slots=True)
class AnswerRecord:
    """One answer-log entry, written when a question is answered, skipped or timed out."""

    question_index: int
    question_id: str
    selected_value: int | None
    is_correct: bool
    time_spent_s: float
    skipped: bool = False
    timed_out: bool = False

    @property
    def answered(self) -> bool:
        return self.selected_value is not None and not self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionIndex": self.question_index,
            "questionId": self.question_id,
            "userAnswer": self.selected_value,
            "isCorrect": self.is_correct,
            "timeSpent": round(self.time_spent_s, 3),
            "skipped": self.skipped,
            "timedOut": self.timed_out,
        }


@dataclass(frozen=True, slots=True)
class TestResult:
    """Read-only summary of a completed session."""

    __test__ = False

    total_questions: int
    correct_count: int
    incorrect_count: int
    skipped_count: int
    score_percentage: int
    total_time_s: float
    average_response_time_s: float
    test_mode: TestMode
    timer_mode: TimerMode
    difficulty: Difficulty
    questions: tuple[Question, ...]
    answers: tuple[AnswerRecord, ...]
    completed_at_utc: str = field(default_factory=utc_now_iso)

    @property
    def answered_count(self) -> int:
        return sum(1 for a in self.answers if a.answered)


@dataclass(frozen=True, slots=True)
class RunningStats:
    total_tests: int = 0
    total_questions: int = 0
    correct_answers: int = 0
    best_score: int = 0
    average_score: int = 0
    total_time_s: float = 0.0
    last_test_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalTests": self.total_tests,
            "totalQuestions": self.total_questions,
            "correctAnswers": self.correct_answers,
            "bestScore": self.best_score,
            "averageScore": self.average_score,
            "totalTime": self.total_time_s,
            "lastTestDate": self.last_test_date,
        }

    @classmethod
    def from_dict(cls, data: object) -> "RunningStats":
        if not isinstance(data, dict):
            return cls()
        try:
            return cls(
                total_tests=int(data.get("totalTests", 0)),
                total_questions=int(data.get("totalQuestions", 0)),
                correct_answers=int(data.get("correctAnswers", 0)),
                best_score=int(data.get("bestScore", 0)),
                average_score=int(data.get("averageScore", 0)),
                total_time_s=float(data.get("totalTime", 0.0)),
                last_test_date=data.get("lastTestDate"),
            )
        except (TypeError, ValueError):
            return cls()


RESULT_ROW_HEADERS = (
    "Question Number",
    "Factor A",
    "Factor B",
    "Correct Answer",
    "User Answer",
    "Is Correct",
    "Response Time (seconds)",
    "Skipped",
)


@dataclass(frozen=True, slots=True)
class ResultRow:
    number: int
    factor_a: int
    factor_b: int
    correct_answer: int
    user_answer: int | None
    is_correct: bool
    time_spent_s: float
    skipped: bool

    def as_tuple(self) -> tuple[object, ...]:
        return (
            self.number,
            self.factor_a,
            self.factor_b,
            self.correct_answer,
            "" if self.user_answer is None else self.user_answer,
            "Yes" if self.is_correct else "No",
            int(self.time_spent_s),
            "Yes" if self.skipped else "No",
        )


def compute_result(
    questions: Sequence[Question],
    answers: Sequence[AnswerRecord],
    *,
    started_at_s: float,
    ended_at_s: float,
    settings: SessionSettings,
    track_skips: bool,
) -> TestResult:
    """Score a finished session.

    Questions with no log entry (the total timer ran out first) count as
    incorrect, or as skipped when ``track_skips`` is set.  Total time is
    wall-clock time since the start, not the sum of per-question times.
    """

    total = len(questions)
    correct = sum(1 for a in answers if a.is_correct)
    if track_skips:
        logged = {a.question_index for a in answers}
        unanswered = sum(1 for i in range(total) if i not in logged)
        skipped = sum(1 for a in answers if a.skipped or a.timed_out) + unanswered
        incorrect = sum(1 for a in answers if not a.is_correct and not (a.skipped or a.timed_out))
    else:
        skipped = 0
        incorrect = total - correct

    answered = [a for a in answers if a.answered]
    mean_rt = sum(a.time_spent_s for a in answered) / len(answered) if answered else 0.0

    return TestResult(
        total_questions=total,
        correct_count=correct,
        incorrect_count=incorrect,
        skipped_count=skipped,
        score_percentage=percentage(correct, total),
        total_time_s=max(0.0, ended_at_s - started_at_s),
        average_response_time_s=mean_rt,
        test_mode=settings.test_mode,
        timer_mode=settings.timer_mode,
        difficulty=settings.difficulty,
        questions=tuple(questions),
        answers=tuple(answers),
    )


def update_running_stats(stats: RunningStats, result: TestResult) -> RunningStats:
    total_score = stats.average_score * stats.total_tests + result.score_percentage
    return RunningStats(
        total_tests=stats.total_tests + 1,
        total_questions=stats.total_questions + result.total_questions,
        correct_answers=stats.correct_answers + result.correct_count,
        best_score=max(stats.best_score, result.score_percentage),
        average_score=round_half_up(total_score / (stats.total_tests + 1)),
        total_time_s=stats.total_time_s + result.total_time_s,
        last_test_date=result.completed_at_utc,
    )


def result_rows(result: TestResult) -> list[ResultRow]:
    by_index = {a.question_index: a for a in result.answers}
    rows: list[ResultRow] = []
    for i, q in enumerate(result.questions):
        answer = by_index.get(i)
        rows.append(
            ResultRow(
                number=i + 1,
                factor_a=q.factor_a,
                factor_b=q.factor_b,
                correct_answer=q.correct_answer,
                user_answer=None if answer is None else answer.selected_value,
                is_correct=False if answer is None else answer.is_correct,
                time_spent_s=0.0 if answer is None else answer.time_spent_s,
                skipped=answer is None or answer.skipped or answer.timed_out,
            )
        )
    return rows


def rows_to_csv(rows: Sequence[ResultRow]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(RESULT_ROW_HEADERS)
    for row in rows:
        writer.writerow(row.as_tuple())
    return buf.getvalue()


def result_to_dict(result: TestResult) -> dict[str, Any]:
    rows = result_rows(result)
    return {
        "type": result.test_mode.value,
        "totalQuestions": result.total_questions,
        "correctCount": result.correct_count,
        "incorrectCount": result.incorrect_count,
        "skippedCount": result.skipped_count,
        "scorePercentage": result.score_percentage,
        "totalTime": round(result.total_time_s, 3),
        "averageResponseTime": round(result.average_response_time_s, 3),
        "difficulty": result.difficulty.value,
        "timerMode": result.timer_mode.value,
        "timestamp": result.completed_at_utc,
        "questions": [
            {
                "id": q.id,
                "factorA": row.factor_a,
                "factorB": row.factor_b,
                "correctAnswer": row.correct_answer,
                "userAnswer": row.user_answer,
                "isCorrect": row.is_correct,
                "responseTime": round(row.time_spent_s, 3),
                "skipped": row.skipped,
            }
            for q, row in zip(result.questions, rows)
        ],
    }
